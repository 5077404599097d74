import pytest

from oplink.common import CoreCommand, FrameMode, hton16, hton32


@pytest.mark.parametrize("value", [0, 1, 0x1234, 0xFFFF])
def test_hton16_keeps_big_endian_value(value):
    assert hton16(value) == value


@pytest.mark.parametrize("value", [0, 0x01020304, 0xFFFFFFFF])
def test_hton32_keeps_big_endian_value(value):
    assert hton32(value) == value


def test_hton16_round_trip_is_identity():
    assert hton16(hton16(0xBEEF)) == 0xBEEF


@pytest.mark.parametrize("value", [-1, 0x10000])
def test_hton16_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        hton16(value)


@pytest.mark.parametrize("value", [-1, 1 << 32])
def test_hton32_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        hton32(value)


def test_meta_byte_mode_decodes_to_frame_mode():
    meta = (FrameMode.CMD << 7) | 5
    assert FrameMode(meta >> 7) is FrameMode.CMD
    assert meta & 0x7F == 5


def test_command_byte_decodes_to_command():
    assert CoreCommand(int(CoreCommand.PING)) is CoreCommand.PING
    with pytest.raises(ValueError):
        CoreCommand(99)