"""Master node: admits new slaves, pings them and dispatches queued requests."""

from typing import Optional, Protocol

from .com import LOOP_TIME, Link, NodeState
from .common import DEFAULT_ADDR, HSK_VER, MASTER_ADDR, UID_SIZE, CoreCommand
from .slave_list import PING_PERIOD, SlaveList
from .uart import Uart

CYCLES_PER_SECOND = 1000 // LOOP_TIME
_MASK32 = 0xFFFFFFFF


class Clock(Protocol):
    def millis(self) -> int: ...


class Master:
    """The bus master, reachable at ``MASTER_ADDR``.

    Applications read incoming DATA frames through ``link.parse`` and
    ``link.read`` and must call ``keep_alive`` regularly.
    """

    def __init__(self, uart: Uart, clock: Clock, slaves: Optional[SlaveList] = None) -> None:
        self.uart = uart
        self.clock = clock
        self.slaves = slaves if slaves is not None else SlaveList()
        self.link = Link(uart, route_command=self.route_command)
        self._new_slave_addr = 0
        self._old_millis = 0
        self._seconds = 0

        uart.transceiver_enabled = True  # The master always drives the line
        self.link.set_addr(MASTER_ADDR)
        uart.init(MASTER_ADDR, self.link.on_rx_byte)

    def push_request(self, uid: bytes, data: bytes) -> bool:
        """Queue ``data`` for the slave with ``uid``; False if unknown or queue full."""
        dest = self.slaves.map_uid_to_addr(uid)
        if dest == 0:
            return False
        return self.link.push_request(dest, data, True)

    def push_broadcast(self, data: bytes) -> bool:
        """Queue ``data`` for every node; no reply is awaited."""
        return self.link.push_request(0x00, data, False)

    def _handle_new_slave(self, args: bytes) -> None:
        self._new_slave_addr = self.slaves.available()
        if not self._new_slave_addr or len(args) < 5:
            return
        if args[0] == HSK_VER:
            nonce = args[1:5]
            self.link.send_cmd(
                DEFAULT_ADDR,
                CoreCommand.FIND,
                nonce + bytes([self._new_slave_addr]),
                True,
                True,
            )

    def _handle_ack(self, args: bytes) -> None:
        last_cmd = self.link.last_cmd
        if last_cmd == CoreCommand.PING:
            self.slaves.set_ping_period(self.link.last_dest, PING_PERIOD)
            return
        addr = self._new_slave_addr
        if not addr:
            return
        if last_cmd == CoreCommand.FIND:
            self.link.send_cmd(addr, CoreCommand.GET_UID, None, True, True)
        elif last_cmd == CoreCommand.GET_UID and len(args) <= UID_SIZE:
            uid = args if args else bytes([addr + ord("0")])
            self.slaves.add(addr, uid)
            self.link.send_cmd(addr, CoreCommand.PING, None, True, True)

    def route_command(self, buf: bytes) -> None:
        """Handle an internal command frame received from a slave."""
        if not buf:
            return
        cmd, args = buf[0], bytes(buf[1:])
        if cmd == CoreCommand.SIGNAL:
            self._handle_new_slave(args)
        elif cmd == CoreCommand.ACK:
            self._handle_ack(args)

    def keep_alive(self) -> bool:
        """Run one housekeeping cycle if a loop period has passed; True if it ran."""
        now = self.clock.millis()
        if (now - self._old_millis) & _MASK32 <= LOOP_TIME:
            return False
        self._old_millis = now

        if self._seconds == CYCLES_PER_SECOND:
            self._seconds = 0
            self.slaves.ping_tick()
        else:
            self._seconds += 1

        if self.link.update_node_state() is NodeState.RECEIVE_TIMEOUT_ERROR:
            if self.link.last_cmd == CoreCommand.PING:
                self.slaves.ping_error(self.link.last_dest)

        if self.link.safe_to_send():
            ping_addr = self.slaves.next_ping()
            if ping_addr > 0:
                self.link.send_cmd(ping_addr, CoreCommand.PING, None, True, False)
            else:
                self.link.dispatch_request()
        return True