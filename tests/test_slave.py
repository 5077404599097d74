import pytest

from oplink.clock import ManualClock
from oplink.com import LOOP_TIME
from oplink.common import HSK_VER, MASTER_ADDR, SYNC_BYTE, CoreCommand, LoadState, SlaveMode
from oplink.crc16 import crc16
from oplink.eeprom import MODE_ADDR, SEED_ADDR, UID_ADDR, Eeprom
from oplink.master import Master
from oplink.slave import (
    DISCONNECT_MAX_COUNT,
    NO_CONFIG_MAX_COUNT,
    NO_PING_MAX_COUNT,
    PLUG_IN_MAX_COUNT,
    BusState,
    ConfigError,
    Slave,
    SlaveConfig,
    load_config,
)
from oplink.uart import Bus, Uart

UID = b"UNIT-0001"


def make_eeprom(mode, seed, uid=b""):
    eeprom = Eeprom()
    eeprom.write_uint8(MODE_ADDR, mode)
    eeprom.write_uint32(SEED_ADDR, seed)
    eeprom.write_string(UID_ADDR, uid)
    return eeprom


def lone_slave(seed=1234):
    bus = Bus()
    clock = ManualClock()
    slave = Slave(Uart(bus), clock, SlaveConfig(SlaveMode.HAS_UID, seed, UID))
    return bus, clock, slave


def step_slave(clock, slave, cycles):
    for _ in range(cycles):
        clock.advance(LOOP_TIME + 1)
        slave.link.parse()
        slave.keep_alive()


def last_frame(bus):
    index = max(i for i, (_, is_addr) in enumerate(bus.history) if is_addr)
    assert bus.history[index - 1] == (SYNC_BYTE, False)
    return [byte for byte, _ in bus.history[index:]]


def network():
    bus = Bus()
    clock = ManualClock()
    master = Master(Uart(bus), clock)
    slave = Slave(Uart(bus), clock, SlaveConfig(SlaveMode.HAS_UID, 99, UID))
    return bus, clock, master, slave


def run_network(clock, master, slave, cycles):
    received = []
    for _ in range(cycles):
        clock.advance(LOOP_TIME + 1)
        n = master.link.parse()
        if n > 0:
            result = master.link.read(n)
            if result.crc_ok:
                received.append(result.data)
        master.keep_alive()
        n = slave.link.parse()
        if n > 0:
            slave.link.read(n)
        slave.keep_alive()
    return received


def test_load_config_with_uid():
    config = load_config(make_eeprom(SlaveMode.HAS_UID, 42, UID))
    assert config.mode == SlaveMode.HAS_UID
    assert config.seed == 42
    assert config.uid == UID


def test_load_config_without_uid_ignores_stored_uid():
    config = load_config(make_eeprom(SlaveMode.NO_UID, 42, UID))
    assert config.uid == b""


@pytest.mark.parametrize(
    "mode, seed, uid, state",
    [
        (SlaveMode.NO_CONFIG, 42, UID, LoadState.MODE_ERROR),
        (SlaveMode.HAS_UID, 0, UID, LoadState.SEED_ERROR),
        (SlaveMode.HAS_UID, 42, b"", LoadState.UID_ERROR),
    ],
)
def test_load_config_errors(mode, seed, uid, state):
    with pytest.raises(ConfigError) as info:
        load_config(make_eeprom(mode, seed, uid))
    assert info.value.state is state


def test_slave_config_rejects_unconfigured_mode():
    with pytest.raises(ConfigError) as info:
        SlaveConfig(SlaveMode.NO_CONFIG, 1, UID)
    assert info.value.state is LoadState.MODE_ERROR


def test_initial_state():
    _, _, slave = lone_slave()
    assert slave.bus_state is BusState.DISCONNECTED
    assert slave.link.addr == 0
    assert slave.uart.transceiver_enabled is False
    assert slave.handshake[0] == HSK_VER
    assert len(slave.nonce) == 4


def test_same_seed_gives_same_nonce():
    _, _, first = lone_slave(seed=7)
    _, _, second = lone_slave(seed=7)
    assert first.nonce == second.nonce


def test_keep_alive_waits_for_loop_time():
    _, clock, slave = lone_slave()
    clock.advance(LOOP_TIME)
    assert slave.keep_alive() is False
    clock.advance(1)
    assert slave.keep_alive() is True


def test_joins_bus_after_plug_in_period():
    bus, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT - 1)
    assert slave.bus_state is BusState.DISCONNECTED
    assert bus.history == []
    step_slave(clock, slave, 1)
    assert slave.bus_state is BusState.SIGNAL_SENT
    frame = last_frame(bus)
    assert frame[0] == MASTER_ADDR
    assert frame[1] == 0x86
    assert frame[2] == CoreCommand.SIGNAL
    assert bytes(frame[3:-2]) == slave.handshake
    assert crc16(frame) == 0


def test_handshake_timeout_resets():
    _, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT + NO_CONFIG_MAX_COUNT - 1)
    assert slave.bus_state is BusState.SIGNAL_SENT
    step_slave(clock, slave, 1)
    assert slave.bus_state is BusState.DISCONNECTED


def test_disconnect_resets_state():
    bus, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT)
    assert slave.bus_state is BusState.SIGNAL_SENT
    slave.route_command(bytes([CoreCommand.FIND]) + slave.nonce + bytes([3]))
    assert slave.link.addr == 3
    bus.connected = False
    step_slave(clock, slave, DISCONNECT_MAX_COUNT - 1)
    assert slave.bus_state is BusState.ADDR_SET
    step_slave(clock, slave, 1)
    assert slave.bus_state is BusState.DISCONNECTED
    assert slave.link.addr == 0


def test_find_with_wrong_nonce_is_ignored():
    _, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT)
    wrong = bytes(b ^ 0xFF for b in slave.nonce)
    slave.route_command(bytes([CoreCommand.FIND]) + wrong + bytes([3]))
    assert slave.bus_state is BusState.SIGNAL_SENT
    assert slave.link.addr == 0


def test_find_ignored_before_signal():
    _, _, slave = lone_slave()
    slave.route_command(bytes([CoreCommand.FIND]) + slave.nonce + bytes([3]))
    assert slave.bus_state is BusState.DISCONNECTED
    assert slave.link.addr == 0


def test_command_sequence_reaches_connected():
    bus, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT)

    slave.route_command(bytes([CoreCommand.FIND]) + slave.nonce + bytes([3]))
    assert slave.bus_state is BusState.ADDR_SET
    ack = last_frame(bus)
    assert ack[0] == MASTER_ADDR  # sent from the default address
    assert ack[2] == CoreCommand.ACK

    slave.route_command(bytes([CoreCommand.GET_UID]))
    assert slave.bus_state is BusState.UID_SENT
    frame = last_frame(bus)
    assert frame[0] >> 4 == 3
    assert frame[0] & 0x0F == MASTER_ADDR
    assert frame[2] == CoreCommand.ACK
    assert bytes(frame[3:-2]) == UID
    assert crc16(frame) == 0

    slave.route_command(bytes([CoreCommand.PING]))
    assert slave.bus_state is BusState.CONNECTED
    assert slave.received_ping is True


def test_missing_pings_reset_connection():
    _, clock, slave = lone_slave()
    step_slave(clock, slave, PLUG_IN_MAX_COUNT)
    slave.route_command(bytes([CoreCommand.FIND]) + slave.nonce + bytes([2]))
    slave.route_command(bytes([CoreCommand.GET_UID]))
    slave.route_command(bytes([CoreCommand.PING]))
    step_slave(clock, slave, NO_PING_MAX_COUNT)
    assert slave.bus_state is BusState.CONNECTED
    step_slave(clock, slave, 1)
    assert slave.bus_state is BusState.DISCONNECTED


def test_push_request_queue_limit():
    _, _, slave = lone_slave()
    results = [slave.push_request(b"data") for _ in range(5)]
    assert results == [True, True, True, True, False]
    assert slave.link.pending_requests == 4


def test_full_handshake_with_master():
    _, clock, master, slave = network()
    run_network(clock, master, slave, PLUG_IN_MAX_COUNT + 10)
    assert slave.bus_state is BusState.CONNECTED
    assert master.slaves.uids() == [UID]
    assert master.slaves.map_uid_to_addr(UID) == slave.link.addr


def test_request_and_reply_between_master_and_slave():
    _, clock, master, slave = network()
    run_network(clock, master, slave, PLUG_IN_MAX_COUNT + 10)
    message, reply = b"OpenPAYGO", b"Link"
    assert master.push_request(UID, message) is True

    clock.advance(LOOP_TIME + 1)
    assert master.keep_alive() is True
    n = slave.link.parse()
    assert n == len(message)
    result = slave.link.read(n)
    assert result.data == message
    assert result.crc_ok is True
    assert slave.link.send_reply(reply) is True

    n = master.link.parse()
    assert n == len(reply)
    answer = master.link.read(n)
    assert answer.data == reply
    assert answer.crc_ok is True


def test_slave_request_reaches_master():
    _, clock, master, slave = network()
    run_network(clock, master, slave, PLUG_IN_MAX_COUNT + 10)
    assert slave.push_request(b"hello") is True
    received = run_network(clock, master, slave, 30)
    assert b"hello" in received
    assert slave.link.pending_requests == 0