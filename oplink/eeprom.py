"""Byte-addressed EEPROM holding a slave's persistent configuration."""

from collections.abc import Iterable
from typing import Optional

EEPROM_START_ADDR = 0x4000
EEPROM_END_ADDR = 0x407F

MODE_ADDR = 0x4000  # Operation mode: 0 = not configured, 1 = no UID, 2 = has UID
SEED_ADDR = 0x4001  # 4 bytes of random seed
UID_ADDR = 0x4005  # 12 bytes of unique identifier


class Eeprom:
    """EEPROM contents mapped at ``EEPROM_START_ADDR``..``EEPROM_END_ADDR``."""

    def __init__(self, contents: Optional[Iterable[int]] = None) -> None:
        size = EEPROM_END_ADDR - EEPROM_START_ADDR + 1
        self._memory = bytearray(size)
        if contents is not None:
            data = bytes(contents)
            if len(data) > size:
                raise ValueError(f"EEPROM holds at most {size} bytes")
            self._memory[: len(data)] = data

    def _offset(self, addr: int, length: int = 1) -> int:
        if length < 0:
            raise ValueError("length must not be negative")
        if addr < EEPROM_START_ADDR or addr + length - 1 > EEPROM_END_ADDR:
            raise IndexError(f"EEPROM access at 0x{addr:04X} (+{length}) is out of range")
        return addr - EEPROM_START_ADDR

    def read_uint8(self, addr: int) -> int:
        """Read one byte."""
        return self._memory[self._offset(addr)]

    def write_uint8(self, addr: int, data: int) -> None:
        """Write one byte."""
        if not 0 <= data <= 0xFF:
            raise ValueError(f"{data!r} is not a byte")
        self._memory[self._offset(addr)] = data

    def read_uint32(self, addr: int) -> int:
        """Read a big-endian 32-bit value."""
        start = self._offset(addr, 4)
        return int.from_bytes(self._memory[start : start + 4], "big")

    def write_uint32(self, addr: int, data: int) -> None:
        """Write a big-endian 32-bit value."""
        if not 0 <= data <= 0xFFFFFFFF:
            raise ValueError(f"{data!r} does not fit in 32 bits")
        start = self._offset(addr, 4)
        self._memory[start : start + 4] = data.to_bytes(4, "big")

    def read_string(self, addr: int, length: int) -> bytes:
        """Read ``length`` raw bytes."""
        start = self._offset(addr, length)
        return bytes(self._memory[start : start + length])

    def write_string(self, addr: int, data: bytes) -> None:
        """Write raw bytes starting at ``addr``."""
        data = bytes(data)
        start = self._offset(addr, len(data))
        self._memory[start : start + len(data)] = data