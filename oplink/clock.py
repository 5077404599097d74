"""Millisecond time source driven explicitly by the caller."""

_MASK32 = 0xFFFFFFFF


class ManualClock:
    """A 32-bit millisecond counter advanced by hand instead of a timer interrupt."""

    def __init__(self, start: int = 0) -> None:
        self._millis = start & _MASK32

    def millis(self) -> int:
        """Return the elapsed milliseconds, wrapping at 32 bits."""
        return self._millis

    def advance(self, ms: int) -> int:
        """Move the clock forward by ``ms`` milliseconds and return the new time."""
        if ms < 0:
            raise ValueError("a clock cannot run backwards")
        self._millis = (self._millis + ms) & _MASK32
        return self._millis

    def tick(self) -> int:
        """Advance by one millisecond, as the periodic timer interrupt does."""
        return self.advance(1)