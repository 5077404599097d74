"""Simulated 9-bit multidrop UART with a receive FIFO and address wake-up."""

from collections import deque
from collections.abc import Callable
from typing import Optional

UART_BUFFER_SIZE = 128
_FIFO_CAPACITY = UART_BUFFER_SIZE - 1  # one slot stays free in the ring

RxCallback = Callable[[int], None]


class Bus:
    """A shared half-duplex line: every byte sent reaches every attached UART.

    The sender hears its own bytes too, as on a LIN bus, unless its
    receiver is disabled.
    """

    def __init__(self) -> None:
        self.uarts: list["Uart"] = []
        self.history: list[tuple[int, bool]] = []
        self.breaks = 0
        self.connected = True

    def attach(self, uart: "Uart") -> "Uart":
        """Connect a UART to the bus and return it."""
        if uart not in self.uarts:
            self.uarts.append(uart)
        uart.bus = self
        return uart

    def transmit(self, sender: "Uart", byte: int, is_addr: bool = False) -> None:
        """Put one 9-bit symbol on the line."""
        byte &= 0xFF
        self.history.append((byte, is_addr))
        for uart in list(self.uarts):
            uart.receive(byte, is_addr)

    def _deliver_break(self, sender: "Uart") -> None:
        self.breaks += 1
        for uart in list(self.uarts):
            uart.receive(0x00, False, framing_error=True)


class Uart:
    """One node's UART: address filtering, mute mode and a receive FIFO."""

    def __init__(self, bus: Optional[Bus] = None) -> None:
        self.bus: Optional[Bus] = None
        self.busy = False
        self.muted = True
        self.is_addr = False
        self.default_addr = 0
        self.addr = 0
        self.rx_enabled = False
        self.tx_enabled = False
        self.transceiver_enabled = True
        self.callback: Optional[RxCallback] = None
        self._fifo: deque[int] = deque()
        if bus is not None:
            bus.attach(self)

    def __len__(self) -> int:
        return len(self._fifo)

    @property
    def rx_pin_high(self) -> bool:
        """Level of the RX line: high while the bus is connected."""
        return self.bus is not None and self.bus.connected

    def init(self, default_addr: int, callback: Optional[RxCallback] = None) -> None:
        """Reset the UART to muted 9-bit mode listening on ``default_addr``."""
        self.rx_enabled = False
        self.tx_enabled = False
        self.muted = True
        self.default_addr = default_addr & 0x0F
        self.addr = default_addr & 0x0F
        self.busy = False
        self.flush_rx()
        self.callback = callback
        self.rx_enabled = True
        self.tx_enabled = True

    def set_addr(self, addr: int) -> None:
        """Change the node address; values above 0x0F are ignored."""
        if 0 <= addr <= 0x0F:
            self.addr = addr

    def mute(self) -> None:
        """Ignore data until the next matching address byte."""
        self.muted = True

    def receive(self, byte: int, is_addr: bool = False, framing_error: bool = False) -> None:
        """Handle one incoming symbol, as the receive interrupt does."""
        if not self.rx_enabled:
            return
        self.busy = True
        if framing_error:
            return
        byte &= 0xFF
        self.is_addr = is_addr
        if is_addr:
            target = byte & 0x0F
            if target in (self.addr, self.default_addr):
                self.muted = False
                self._fifo.clear()
            else:
                self.muted = True
        if not self.muted and len(self._fifo) < _FIFO_CAPACITY:
            self._fifo.append(byte)
            if self.callback is not None:
                self.callback(byte)

    def clear_busy(self) -> None:
        """Reset the bus activity flag."""
        self.busy = False

    def read_byte(self) -> int:
        """Pop the oldest received byte, or return 0 if the FIFO is empty."""
        return self._fifo.popleft() if self._fifo else 0

    def _send(self, byte: int, is_addr: bool) -> None:
        if self.bus is not None and self.tx_enabled and self.transceiver_enabled:
            self.bus.transmit(self, byte & 0xFF, is_addr)

    def write(self, byte: int) -> None:
        """Send a data byte (9th bit clear)."""
        self._send(byte, False)

    def write_addr(self, addr: int) -> None:
        """Send an address byte (9th bit set)."""
        self._send(addr, True)

    def write_break(self) -> None:
        """Send a break, which listeners see as a framing error."""
        if self.bus is not None and self.tx_enabled and self.transceiver_enabled:
            self.bus._deliver_break(self)

    def flush_rx(self) -> None:
        """Discard everything in the receive FIFO."""
        self._fifo.clear()

    def enable_rx(self) -> None:
        """Turn the receiver on."""
        self.rx_enabled = True

    def disable_rx(self) -> None:
        """Turn the receiver off; incoming symbols are then ignored."""
        self.rx_enabled = False