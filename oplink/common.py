"""Protocol constants, enumerations and byte-order helpers shared by all nodes."""

from enum import IntEnum

HSK_VER = 0x01  # Handshake version
MAX_SLAVES = 5

HEADER_LEN = 2
CRC_LEN = 2
OVERHEAD = HEADER_LEN + CRC_LEN
CMD_MAX_LEN = 16
OPL_PAYLOAD_MAX_LEN = 124  # 128 byte UART buffer minus the frame overhead

MASTER_ADDR = 0x0F
DEFAULT_ADDR = 0x00
SOURCE_ADDR = 0xF0

SYNC_BYTE = 0x55

RX_NOT_READY = 0
NO_BYTES = 0

IPV6_SIZE = 6
UID_SIZE = 12
KEY_SIZE = 8


class FrameMode(IntEnum):
    """Kind of payload carried by a frame (top bit of the meta byte)."""

    DATA = 0
    CMD = 1


class CoreCommand(IntEnum):
    """Internal link commands carried in CMD frames."""

    SIGNAL = 0
    FIND = 1
    GET_UID = 2
    PING = 3
    ALERT = 4
    ACK = 6
    NACK = 15
    EXT = 20  # Placeholder for application requests


class SlaveMode(IntEnum):
    """Operation mode stored in a slave's configuration."""

    NO_CONFIG = 0
    NO_UID = 1
    HAS_UID = 2


class LoadState(IntEnum):
    """Outcome of loading a slave's stored configuration."""

    SUCCESS = 0
    MODE_ERROR = 1
    SEED_ERROR = 2
    UID_ERROR = 3


def _check_range(value: int, bits: int) -> int:
    if not 0 <= value < (1 << bits):
        raise ValueError(f"{value!r} does not fit in {bits} unsigned bits")
    return value


def hton16(host: int) -> int:
    """Convert a 16-bit value to network order.

    The link runs on a big-endian target, so host and network order
    coincide and the value is returned unchanged after validation.
    """
    return _check_range(host, 16)


def hton32(host: int) -> int:
    """Convert a 32-bit value to network order (identity on the big-endian target)."""
    return _check_range(host, 32)