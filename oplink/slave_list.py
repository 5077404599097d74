"""Registry of the slaves known to the master, with their ping bookkeeping."""

from collections.abc import Iterator
from dataclasses import dataclass

from .common import MAX_SLAVES, UID_SIZE

MAX_PING_ERROR = 3
PING_PERIOD = 30  # seconds
_NO_PING = 0xFF


@dataclass
class SlaveEntry:
    """One slot of the slave table; an address of 0 marks a free slot."""

    addr: int = 0
    uid: bytes = b""
    ping_count: int = _NO_PING
    ping_error: int = 0

    @property
    def occupied(self) -> bool:
        """True when a slave is registered in this slot."""
        return self.addr != 0


class SlaveList:
    """Fixed table of ``MAX_SLAVES`` slots; slave addresses start at 1."""

    def __init__(self) -> None:
        self.slots = [SlaveEntry() for _ in range(MAX_SLAVES)]
        self._ping_flag = False
        self._last = 0

    def __len__(self) -> int:
        return sum(1 for slot in self.slots if slot.occupied)

    def __iter__(self) -> Iterator[SlaveEntry]:
        return (slot for slot in self.slots if slot.occupied)

    @staticmethod
    def _index(addr: int) -> int:
        if not 1 <= addr <= MAX_SLAVES:
            raise ValueError(f"slave address {addr!r} is outside 1..{MAX_SLAVES}")
        return addr - 1

    def available(self) -> int:
        """Return the lowest free address, or 0 if the table is full."""
        return next((i + 1 for i, slot in enumerate(self.slots) if not slot.occupied), 0)

    def add(self, addr: int, uid: bytes) -> bool:
        """Register ``uid`` at ``addr``, dropping any older entry for the same UID.

        Returns False if the slot for ``addr`` is taken by another slave.
        """
        uid = bytes(uid)
        if len(uid) > UID_SIZE:
            raise ValueError(f"UID of {len(uid)} bytes exceeds {UID_SIZE}")
        index = self._index(addr)
        old = self.map_uid_to_addr(uid)
        if old:
            self.clear_slot(old - 1)
        if self.slots[index].occupied:
            return False
        self.slots[index] = SlaveEntry(addr=addr, uid=uid.split(b"\0", 1)[0])
        return True

    def clear_slot(self, index: int) -> None:
        """Free the slot at table position ``index`` (0-based)."""
        if not 0 <= index < MAX_SLAVES:
            raise IndexError(f"slot index {index!r} is outside 0..{MAX_SLAVES - 1}")
        self.slots[index] = SlaveEntry()

    def ping_error(self, addr: int) -> None:
        """Count a missed ping; the slave is dropped after ``MAX_PING_ERROR`` misses."""
        index = self._index(addr)
        slot = self.slots[index]
        slot.ping_error += 1
        if slot.ping_error == MAX_PING_ERROR:
            self.clear_slot(index)

    def set_ping_period(self, addr: int, ticks: int) -> None:
        """Schedule the next ping ``ticks`` seconds ahead and reset the miss count."""
        index = self._index(addr)
        if not 0 <= ticks <= 0xFF:
            raise ValueError(f"ping period {ticks!r} does not fit in a byte")
        if ticks:
            self.slots[index].ping_count = ticks
            self.slots[index].ping_error = 0

    def ping_tick(self) -> None:
        """Count one second down for every registered slave."""
        for slot in self.slots:
            if slot.occupied and slot.ping_count > 0:
                slot.ping_count -= 1
                if slot.ping_count == 0:
                    self._ping_flag = True

    def next_ping(self) -> int:
        """Return the next address due for a ping, round robin, or 0 if none."""
        if not self._ping_flag:
            return 0
        start = self._last
        for index in [*range(start, MAX_SLAVES), *range(start)]:
            if self.slots[index].ping_count == 0:
                self._last = index + 1
                return index + 1
        self._last = start
        self._ping_flag = False
        return 0

    def uids(self) -> list[bytes]:
        """UIDs of the registered slaves, in address order."""
        return [slot.uid for slot in self.slots if slot.occupied]

    def map_uid_to_addr(self, uid: bytes) -> int:
        """Return the address of the slave whose UID ``uid`` starts with, or 0."""
        uid = bytes(uid)
        for slot in self.slots:
            if slot.occupied and slot.uid and uid.startswith(slot.uid):
                return slot.addr
        return 0