# oplink

A link layer for one master and up to five slaves that share a single
9-bit multidrop serial line. Each frame on the line is a break, a sync
byte (`0x55`), an address byte (source nibble, destination nibble, sent
with the 9th bit set), a mode/length byte, up to 124 payload bytes and a
big-endian CRC-16/CCITT-FALSE trailer.

The package works on an in-memory bus. It is for simulating the
protocol, for testing applications written against it, and for
studying how it behaves.

## Modules

- `oplink.crc16`: `update_crc16(crc, byte)` and `crc16(data, crc=CRC_INIT)`.
- `oplink.common`: protocol constants (`MASTER_ADDR`, `DEFAULT_ADDR`,
  `MAX_SLAVES`, `UID_SIZE`, `OPL_PAYLOAD_MAX_LEN`, ...), the enums
  `FrameMode`, `CoreCommand`, `SlaveMode` and `LoadState`, and `hton16` /
  `hton32`. The link is big-endian, so these two return their argument
  unchanged. They raise `ValueError` if the value does not fit.
- `oplink.uart`: `Uart`, a 9-bit UART with address wake-up, mute mode and
  a 127-byte receive FIFO. `Bus` is a shared line that hands every symbol
  to each attached `Uart`. It records what was sent in `history`, counts
  breaks in `breaks`, and has a `connected` flag that a slave reads as its
  RX pin level.
- `oplink.clock`: `ManualClock`, a 32-bit millisecond counter that you move
  on with `advance(ms)` or `tick()`.
- `oplink.eeprom`: `Eeprom`, a byte store mapped at `0x4000`..`0x407F`,
  with `read_uint8`/`write_uint8`, big-endian `read_uint32`/`write_uint32`,
  and `read_string`/`write_string`. The constants `MODE_ADDR`, `SEED_ADDR`
  and `UID_ADDR` give where a slave's settings are kept.
- `oplink.com`: `Link`. It writes and parses frames, checks CRCs, times
  out replies (`NodeState`) and keeps a queue of up to four outgoing
  requests. `read` returns a `ReadResult` that holds `data` and `crc_ok`
  and is truthy when the CRC matched.
- `oplink.slave_list`: `SlaveList` and `SlaveEntry`, the master's table of
  slaves. It covers address allocation, UID lookup and ping scheduling. A
  slave is dropped after three missed pings.
- `oplink.master`: `Master`. It gives addresses to new slaves through the
  SIGNAL / FIND / GET_UID / PING handshake, pings every known slave every
  30 seconds, and dispatches queued requests.
- `oplink.slave`: `Slave`, `BusState`, `SlaveConfig`, `load_config` and
  `ConfigError`.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Driving a node

Each node runs in a loop:

1. Call `keep_alive()`. It does its work at most once every `LOOP_TIME`
   (50) milliseconds of its clock, and returns `True` when it did.
2. Call `link.parse()`.
   - Command frames are handled inside `parse`, which then returns 0.
   - For a data frame, `parse` returns the payload length. Call
     `link.read(length)` to get the bytes and the CRC check.
3. If the node is a slave and has just read a request, it may answer it
   with `link.send_reply(data)`.

The master queues data with `push_request(uid, data)`. That call returns
`False` if no slave with that UID is known or the queue is full. To send
to every node, use `push_broadcast(data)`. A slave queues data for the
master with `push_request(data)`.

A slave reads its configuration from an `Eeprom` through
`load_config(eeprom)`. It raises `ConfigError`, whose `state` is a
`LoadState`, in three cases:

- the mode byte is `SlaveMode.NO_CONFIG`;
- the seed is zero;
- the mode is `HAS_UID` and the stored UID is empty.

Each slave draws its handshake nonce and its random back-off after bus
activity from the seed.

```python
from oplink.clock import ManualClock
from oplink.com import LOOP_TIME
from oplink.common import SlaveMode
from oplink.eeprom import MODE_ADDR, SEED_ADDR, UID_ADDR, Eeprom
from oplink.master import Master
from oplink.slave import BusState, Slave, load_config
from oplink.uart import Bus, Uart

bus = Bus()
clock = ManualClock()

eeprom = Eeprom()
eeprom.write_uint8(MODE_ADDR, SlaveMode.HAS_UID)
eeprom.write_uint32(SEED_ADDR, 12345)
eeprom.write_string(UID_ADDR, b"NODE-0001")

master = Master(Uart(bus), clock)
slave = Slave(Uart(bus), clock, load_config(eeprom))


def step():
    clock.advance(LOOP_TIME + 1)
    for node in (master, slave):
        node.keep_alive()
        length = node.link.parse()
        if length:
            result = node.link.read(length)
            if result and node is slave:
                node.link.send_reply(b"Link")


while slave.bus_state is not BusState.CONNECTED:
    step()

master.push_request(b"NODE-0001", b"OpenPAYGO")
```

## What the package does not do

It does not open a real serial port or drive a LIN transceiver. `Uart`
and `Bus` exist only in memory, and time passes only when a `ManualClock`
is advanced. The package has no command-line program.