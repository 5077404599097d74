"""Frame-level link layer: framing, CRC checking, reply tracking and a request queue."""

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from .common import (
    CMD_MAX_LEN,
    CRC_LEN,
    NO_BYTES,
    OPL_PAYLOAD_MAX_LEN,
    OVERHEAD,
    RX_NOT_READY,
    SYNC_BYTE,
    CoreCommand,
    FrameMode,
)
from .crc16 import CRC_INIT, update_crc16
from .uart import Uart

LOOP_TIME = 50  # milliseconds between keep-alive cycles
SEND_REPLY_TIMEOUT = 2
RECEIVE_REPLY_TIMEOUT = 3  # Smaller than SEND_REPLY_TIMEOUT
MAX_REQUESTS = 5  # Ring size; one slot always stays free

RouteCommand = Callable[[bytes], None]
BusWait = Callable[[], int]


class NodeState(IntEnum):
    """Outcome of one housekeeping cycle."""

    NODE_OK = 0
    SEND_TIMEOUT_ERROR = 1
    RECEIVE_TIMEOUT_ERROR = 2


class _RxState(Enum):
    EMPTY = "empty"
    READY = "ready"
    PROCESSING = "processing"


class _ReplyState(Enum):
    NONE = "none"
    PENDING = "pending"
    RECEIVED = "received"


@dataclass(frozen=True)
class ReadResult:
    """Bytes read from the current frame and whether its CRC was verified."""

    data: bytes
    crc_ok: bool

    def __bool__(self) -> bool:
        return self.crc_ok


@dataclass
class _RxFrame:
    state: _RxState = _RxState.EMPTY
    busy_time: int = SEND_REPLY_TIMEOUT
    src: int = 0
    dest: int = 0
    mode: FrameMode = FrameMode.DATA
    length: int = 0
    crc: int = CRC_INIT


@dataclass
class _LastRequest:
    reply_state: _ReplyState = _ReplyState.NONE
    busy_time: int = RECEIVE_REPLY_TIMEOUT
    dest: int = 0xFF
    cmd: int = 0xFF


@dataclass(frozen=True)
class _Request:
    dest: int
    data: bytes
    wait_reply: bool


def _check_payload(data: bytes) -> bytes:
    data = bytes(data)
    if len(data) > OPL_PAYLOAD_MAX_LEN:
        raise ValueError(f"payload of {len(data)} bytes exceeds {OPL_PAYLOAD_MAX_LEN}")
    return data


class Link:
    """One node's view of the shared bus.

    ``route_command`` receives the body of every CMD frame whose CRC is
    correct.  ``bus_wait`` gives the number of cycles to keep considering
    the bus busy after activity was seen; ``lin_control`` drives the
    transceiver's transmit enable only while a frame is being written.
    """

    def __init__(
        self,
        uart: Uart,
        route_command: Optional[RouteCommand] = None,
        bus_wait: Optional[BusWait] = None,
        lin_control: bool = False,
    ) -> None:
        self.uart = uart
        self.route_command = route_command
        self.bus_wait: BusWait = bus_wait if bus_wait is not None else (lambda: 0)
        self.lin_control = lin_control
        self.addr = 0x00
        self.bus_busy = True
        self._rx = _RxFrame()
        self._last = _LastRequest()
        self._queue: deque[_Request] = deque()
        self._rx_len = 0xFF
        self._rx_count = 0
        self._busy_count = 0

    # Inspection -----------------------------------------------------------

    @property
    def last_dest(self) -> int:
        """Destination of the last request that expected a reply."""
        return self._last.dest

    @property
    def last_cmd(self) -> int:
        """Command of the last request that expected a reply."""
        return self._last.cmd

    @property
    def waiting_reply(self) -> bool:
        """True while a reply to the last request is outstanding."""
        return self._last.reply_state is _ReplyState.PENDING

    @property
    def frame_pending(self) -> bool:
        """True while a received frame is waiting or being processed."""
        return self._rx.state is not _RxState.EMPTY

    @property
    def pending_requests(self) -> int:
        """Number of queued requests not yet sent."""
        return len(self._queue)

    # Low level ------------------------------------------------------------

    def set_addr(self, addr: int) -> None:
        """Set the node address (lower four bits only)."""
        addr &= 0x0F
        self.addr = addr
        self.uart.set_addr(addr)

    def on_rx_byte(self, byte: int) -> None:
        """Track frame boundaries as bytes arrive; pass this to the UART."""
        if self.uart.is_addr:
            self._rx_len = 0xFF
            self._rx_count = 1
            return
        self._rx_count = (self._rx_count + 1) & 0xFF
        if self._rx_count == 2:
            self._rx_len = (byte & 0x7F) + OVERHEAD
        elif self._rx_count == self._rx_len:
            self.uart.mute()
            self.uart.disable_rx()  # Only one frame at a time is processed
            self._rx.state = _RxState.READY
            self._rx.busy_time = SEND_REPLY_TIMEOUT

    def _read_bytes(self, crc: int, count: int) -> tuple[int, bytes]:
        data = bytes(self.uart.read_byte() for _ in range(count))
        for byte in data:
            crc = update_crc16(crc, byte)
        return crc, data

    def send_bytes(self, dest: int, mode: FrameMode, data: bytes, force_write: bool = False) -> bool:
        """Write one frame; unless forced, only when no bus activity was seen."""
        data = _check_payload(data)
        addr = ((self.addr << 4) & 0xF0) | (dest & 0x0F)
        meta = (int(mode) << 7) | len(data)
        sent = False

        if self.lin_control:
            self.uart.transceiver_enabled = True

        if force_write or not self.uart.busy:
            self.uart.disable_rx()  # Do not hear our own frame
            self.uart.write_break()
            self.uart.write(SYNC_BYTE)

            crc = update_crc16(CRC_INIT, addr)
            self.uart.write_addr(addr)
            crc = update_crc16(crc, meta)
            self.uart.write(meta)
            for byte in data:
                crc = update_crc16(crc, byte)
                self.uart.write(byte)

            self.uart.write(crc >> 8)
            self.uart.write(crc & 0xFF)
            sent = True

        if self.lin_control:
            self.uart.transceiver_enabled = False

        self.uart.enable_rx()
        self._rx.state = _RxState.EMPTY
        return sent

    # Housekeeping ---------------------------------------------------------

    def update_node_state(self) -> NodeState:
        """Run one cycle of timeouts and bus activity tracking."""
        result = NodeState.NODE_OK

        if self._rx.state is not _RxState.EMPTY:
            self._rx.busy_time = (self._rx.busy_time - 1) & 0xFF
            if self._rx.busy_time == 0:
                self.uart.enable_rx()
                self._rx.state = _RxState.EMPTY
                result = NodeState.SEND_TIMEOUT_ERROR

        if self._last.reply_state is _ReplyState.PENDING:
            self._last.busy_time = (self._last.busy_time - 1) & 0xFF
            if self._last.busy_time == 0:
                self._last.reply_state = _ReplyState.NONE
                result = NodeState.RECEIVE_TIMEOUT_ERROR  # Higher priority

        if self._busy_count == 0:
            self.bus_busy = self.uart.busy
            if self.bus_busy:
                self.uart.clear_busy()
                self._busy_count = self.bus_wait()
        else:
            self._busy_count -= 1

        return result

    def safe_to_send(self) -> bool:
        """True when no frame is pending, no reply is awaited and the bus is idle."""
        return (
            self._rx.state is _RxState.EMPTY
            and self._last.reply_state is _ReplyState.NONE
            and not self.bus_busy
        )

    def _await_reply(self, dest: int, cmd: int) -> None:
        self._last.reply_state = _ReplyState.PENDING
        self._last.busy_time = RECEIVE_REPLY_TIMEOUT
        self._last.dest = dest
        self._last.cmd = cmd

    def send_cmd(
        self,
        addr: int,
        cmd: int,
        args: Optional[bytes] = None,
        wait_reply: bool = False,
        force_write: bool = False,
    ) -> bool:
        """Send a command frame; returns False if the bus was busy."""
        args = bytes(args or b"")
        if len(args) > CMD_MAX_LEN - 1:
            raise ValueError(f"command arguments exceed {CMD_MAX_LEN - 1} bytes")
        if not self.send_bytes(addr, FrameMode.CMD, bytes([cmd & 0xFF]) + args, force_write):
            return False
        if wait_reply:
            self._await_reply(addr & 0x0F, cmd)
        return True

    # High level -----------------------------------------------------------

    def parse(self) -> int:
        """Parse the header of a ready frame and return its data length.

        Command frames are read and routed here, and 0 is returned for them.
        """
        if self._rx.state is not _RxState.READY:
            return RX_NOT_READY
        self._rx.state = _RxState.PROCESSING

        crc, header = self._read_bytes(CRC_INIT, 1)
        self._rx.crc = crc
        self._rx.src = header[0] >> 4
        self._rx.dest = header[0] & 0x0F

        if self._last.reply_state is _ReplyState.PENDING:
            if self._last.dest != self._rx.src:
                self.uart.enable_rx()
                self._rx.state = _RxState.EMPTY
                return RX_NOT_READY
            self._last.reply_state = _ReplyState.RECEIVED
        elif self._last.reply_state is not _ReplyState.NONE:
            return RX_NOT_READY

        self._rx.crc, meta = self._read_bytes(self._rx.crc, 1)
        self._rx.mode = FrameMode(meta[0] >> 7)
        self._rx.length = meta[0] & 0x7F

        if self._rx.length > 0 and self._rx.mode is FrameMode.CMD:
            result = self.read(self._rx.length)
            if result.crc_ok and self.route_command is not None:
                self.route_command(result.data)
            return NO_BYTES
        return self._rx.length

    def read(self, length: int) -> ReadResult:
        """Read up to ``length`` data bytes; the CRC is checked after the last one."""
        length = min(max(length, 0), self._rx.length)
        self._rx.crc, data = self._read_bytes(self._rx.crc, length)
        self._rx.length -= length

        crc_ok = False
        if self._rx.length == 0:
            residue, _ = self._read_bytes(self._rx.crc, CRC_LEN)
            crc_ok = residue == 0x0000
            if not crc_ok or self._last.reply_state is _ReplyState.RECEIVED:
                self._last.reply_state = _ReplyState.NONE
                self.uart.enable_rx()
                self._rx.state = _RxState.EMPTY
        return ReadResult(data, crc_ok)

    def send_reply(self, data: bytes) -> bool:
        """Answer the DATA frame being processed; False if there is none."""
        if self._rx.state is not _RxState.PROCESSING or self._rx.mode is not FrameMode.DATA:
            return False
        self.send_bytes(self._rx.src, FrameMode.DATA, data, True)
        return True

    # Request queue --------------------------------------------------------

    def push_request(self, dest: int, data: bytes, wait_reply: bool = False) -> bool:
        """Queue a DATA frame for later dispatch; False if the queue is full."""
        data = _check_payload(data)
        if len(self._queue) >= MAX_REQUESTS - 1:
            return False
        self._queue.append(_Request(dest, data, wait_reply))
        return True

    def dispatch_request(self) -> None:
        """Send the oldest queued request if the bus allows it."""
        if not self._queue:
            return
        request = self._queue[0]
        if self.send_bytes(request.dest, FrameMode.DATA, request.data, False):
            if request.wait_reply:
                self._await_reply(request.dest, CoreCommand.EXT)
            self._queue.popleft()