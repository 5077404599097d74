"""Slave node: joins the bus, takes part in the handshake and answers pings."""

import random
from dataclasses import dataclass
from enum import Enum, auto
from typing import Protocol

from .com import LOOP_TIME, Link
from .common import (
    DEFAULT_ADDR,
    HSK_VER,
    MASTER_ADDR,
    UID_SIZE,
    CoreCommand,
    LoadState,
    SlaveMode,
)
from .eeprom import MODE_ADDR, SEED_ADDR, UID_ADDR, Eeprom
from .uart import Uart

PLUG_IN_MAX_COUNT = 20  # 20 * 50 ms = 1 s of line presence before joining
DISCONNECT_MAX_COUNT = 10  # 10 * 50 ms = 0.5 s of silence before resetting
NO_CONFIG_MAX_COUNT = 40  # 40 * 50 ms = 2 s for the whole handshake
NO_PING_MAX_COUNT = 1200  # 1200 * 50 ms = 60 s without a ping
_MASK32 = 0xFFFFFFFF


class Clock(Protocol):
    def millis(self) -> int: ...


class ConfigError(ValueError):
    """Raised when a slave's stored configuration is unusable."""

    def __init__(self, state: LoadState, message: str) -> None:
        super().__init__(message)
        self.state = state


@dataclass(frozen=True)
class SlaveConfig:
    """Operation mode, random seed and unique identifier of a slave."""

    mode: int
    seed: int
    uid: bytes = b""

    def __post_init__(self) -> None:
        if self.mode == SlaveMode.NO_CONFIG:
            raise ConfigError(LoadState.MODE_ERROR, "the node is not configured")
        if not 0 <= self.seed <= _MASK32:
            raise ValueError(f"seed {self.seed!r} does not fit in 32 bits")
        if self.seed == 0:
            raise ConfigError(LoadState.SEED_ERROR, "the random seed is zero")
        if self.mode < SlaveMode.HAS_UID:
            object.__setattr__(self, "uid", b"")
            return
        uid = bytes(self.uid)[:UID_SIZE].split(b"\0", 1)[0]
        if not uid:
            raise ConfigError(LoadState.UID_ERROR, "the unique identifier is empty")
        object.__setattr__(self, "uid", uid)


def load_config(eeprom: Eeprom) -> SlaveConfig:
    """Read a slave's configuration from EEPROM; raise ConfigError if it is invalid."""
    mode = eeprom.read_uint8(MODE_ADDR)
    if mode == SlaveMode.NO_CONFIG:
        raise ConfigError(LoadState.MODE_ERROR, "the node is not configured")
    seed = eeprom.read_uint32(SEED_ADDR)
    uid = eeprom.read_string(UID_ADDR, UID_SIZE) if mode >= SlaveMode.HAS_UID else b""
    return SlaveConfig(mode, seed, uid)


class BusState(Enum):
    """Progress of a slave through joining the bus."""

    DISCONNECTED = auto()
    PLUGGED_IN = auto()
    SIGNAL_SENT = auto()
    ADDR_SET = auto()
    UID_SENT = auto()
    CONNECTED = auto()


class Slave:
    """A slave node; it starts at ``DEFAULT_ADDR`` and is given an address by the master.

    Applications read incoming DATA frames through ``link.parse`` and
    ``link.read``, answer with ``link.send_reply`` and must call
    ``keep_alive`` regularly.
    """

    def __init__(self, uart: Uart, clock: Clock, config: SlaveConfig) -> None:
        self.uart = uart
        self.clock = clock
        self.config = config
        self._rng = random.Random(config.seed)
        self.link = Link(
            uart,
            route_command=self.route_command,
            bus_wait=lambda: self._rng.randrange(20) + 1,
            lin_control=True,
        )
        self.nonce = bytes(4)
        self.bus_state = BusState.DISCONNECTED
        self.received_ping = False
        self._plug_in = 0
        self._disconnect = 0
        self._no_config = 0
        self._no_ping = 0
        self._old_millis = 0

        self._set_default()
        uart.transceiver_enabled = False

    @property
    def uid(self) -> bytes:
        """The identifier reported to the master."""
        return self.config.uid

    @property
    def handshake(self) -> bytes:
        """Payload of the SIGNAL command: version followed by the nonce."""
        return bytes([HSK_VER]) + self.nonce

    def _set_default(self) -> None:
        self.uart.disable_rx()
        self.link.set_addr(DEFAULT_ADDR)  # Never change with RX enabled
        self.nonce = self._rng.getrandbits(32).to_bytes(4, "big")
        self.bus_state = BusState.DISCONNECTED
        self.received_ping = False
        self._plug_in = 0
        self._disconnect = 0
        self._no_config = 0
        self._no_ping = 0
        self.uart.init(DEFAULT_ADDR, self.link.on_rx_byte)

    def _check_bus_connection(self) -> None:
        if self.uart.rx_pin_high:
            self._disconnect = 0
            if self.bus_state is BusState.DISCONNECTED:
                self._plug_in += 1
                if self._plug_in == PLUG_IN_MAX_COUNT:
                    self._plug_in = 0
                    self.bus_state = BusState.PLUGGED_IN
        else:
            self._plug_in = 0
            if self.bus_state is not BusState.DISCONNECTED:
                self._disconnect += 1
                if self._disconnect == DISCONNECT_MAX_COUNT:
                    self._disconnect = 0
                    self._set_default()

    def _join_bus(self) -> None:
        if self.link.safe_to_send() and self.link.send_cmd(
            MASTER_ADDR, CoreCommand.SIGNAL, self.handshake, False, False
        ):
            self.bus_state = BusState.SIGNAL_SENT

    def _check_handshake(self) -> None:
        self._no_config += 1
        if self._no_config == NO_CONFIG_MAX_COUNT:
            self._set_default()

    def _check_ping(self) -> None:
        if self.received_ping:
            self.received_ping = False
            self._no_ping = 0
            return
        self._no_ping += 1
        if self._no_ping == NO_PING_MAX_COUNT:
            self._set_default()

    def push_request(self, data: bytes) -> bool:
        """Queue ``data`` for the master; False if the queue is full."""
        return self.link.push_request(MASTER_ADDR, data, True)

    def route_command(self, buf: bytes) -> None:
        """Handle an internal command frame received from the master."""
        if not buf:
            return
        cmd = buf[0]
        if cmd == CoreCommand.FIND:  # FIND, NONCE(4), ADDR
            if (
                self.bus_state is BusState.SIGNAL_SENT
                and len(buf) >= 6
                and bytes(buf[1:5]) == self.nonce
            ):
                # Reply before taking the new address
                self.link.send_cmd(MASTER_ADDR, CoreCommand.ACK, None, False, True)
                self.uart.disable_rx()
                self.link.set_addr(buf[5])
                self.uart.enable_rx()
                self.bus_state = BusState.ADDR_SET
        elif cmd == CoreCommand.GET_UID:
            if self.bus_state is BusState.ADDR_SET:
                self.bus_state = BusState.UID_SENT
            self.link.send_cmd(MASTER_ADDR, CoreCommand.ACK, self.uid, False, True)
        elif cmd == CoreCommand.PING:
            if self.bus_state is BusState.UID_SENT:
                self.bus_state = BusState.CONNECTED
            self.link.send_cmd(MASTER_ADDR, CoreCommand.ACK, None, False, True)
            self.received_ping = True

    def keep_alive(self) -> bool:
        """Run one housekeeping cycle if a loop period has passed; True if it ran."""
        now = self.clock.millis()
        if (now - self._old_millis) & _MASK32 <= LOOP_TIME:
            return False
        self._old_millis = now

        self._check_bus_connection()
        self.link.update_node_state()

        if self.bus_state is BusState.PLUGGED_IN:
            self._join_bus()
        elif self.bus_state in (BusState.SIGNAL_SENT, BusState.ADDR_SET, BusState.UID_SENT):
            self._check_handshake()
        elif self.bus_state is BusState.CONNECTED:
            self._check_ping()

        if self.link.safe_to_send():
            self.link.dispatch_request()
        return True