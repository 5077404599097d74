"""CRC-16/CCITT-FALSE used to protect link frames."""

from collections.abc import Iterable

CRC_POLY = 0x1021
CRC_INIT = 0xFFFF


def update_crc16(crc: int, byte: int) -> int:
    """Feed one byte into a running CRC and return the new value."""
    crc &= 0xFFFF
    byte &= 0xFF
    for _ in range(8):
        if ((crc & 0x8000) >> 8) ^ (byte & 0x80):
            crc = ((crc << 1) ^ CRC_POLY) & 0xFFFF
        else:
            crc = (crc << 1) & 0xFFFF
        byte = (byte << 1) & 0xFF
    return crc


def crc16(data: Iterable[int], crc: int = CRC_INIT) -> int:
    """Compute the CRC of a byte sequence, starting from ``crc``."""
    for byte in data:
        crc = update_crc16(crc, byte)
    return crc