import struct

import pytest

from confcall.protocol import wire
from confcall.protocol.wire import CallMessage, ParameterMessage, TruncatedPacket, UnknownTag, WireError


def test_call_layout_is_tag_then_nul_terminated_addresses() -> None:
    packet = wire.encode_call(["10.0.0.2", "10.0.0.1"])

    assert packet == b"CALL10.0.0.2\x0010.0.0.1\x00"
    assert wire.decode(packet) == CallMessage(addresses=("10.0.0.2", "10.0.0.1"))


def test_parameter_layout_uses_big_endian_ssrcs() -> None:
    packet = wire.encode_parameters("Z0LAHtkA", 0x01020304, 0xA0B0C0D0)

    assert packet[:4] == b"PARM"
    assert packet[4:13] == b"Z0LAHtkA\x00"
    assert packet[13:] == b"\x01\x02\x03\x04\xa0\xb0\xc0\xd0"
    assert wire.decode(packet) == ParameterMessage("Z0LAHtkA", 0x01020304, 0xA0B0C0D0)


def test_encode_dispatches_on_message_type() -> None:
    call = CallMessage(addresses=("192.168.1.5",))
    parameters = ParameterMessage("SPS==", 1, 2)

    assert wire.encode(call) == wire.encode_call(["192.168.1.5"])
    assert wire.encode(parameters) == wire.encode_parameters("SPS==", 1, 2)
    with pytest.raises(TypeError):
        wire.encode("CALL")  # type: ignore[arg-type]


def test_empty_call_decodes_to_empty_roster() -> None:
    assert wire.decode(b"CALL") == CallMessage(addresses=())


def test_parameters_accept_extreme_ssrcs() -> None:
    decoded = wire.decode(wire.encode_parameters("", 0, wire.MAX_SSRC))

    assert decoded == ParameterMessage("", 0, 0xFFFFFFFF)


def test_encoding_rejects_nul_and_out_of_range_values() -> None:
    with pytest.raises(ValueError):
        wire.encode_call(["10.0.0.1\x00evil"])
    with pytest.raises(ValueError):
        wire.encode_parameters("a\x00b", 1, 2)
    with pytest.raises(ValueError):
        wire.encode_parameters("SPS", -1, 2)
    with pytest.raises(ValueError):
        wire.encode_parameters("SPS", 1, 1 << 32)


@pytest.mark.parametrize("datagram", [b"", b"CA", b"PAR"])
def test_datagrams_shorter_than_a_tag_are_truncated(datagram: bytes) -> None:
    with pytest.raises(TruncatedPacket):
        wire.decode(datagram)


def test_unknown_tag_is_reported() -> None:
    with pytest.raises(UnknownTag):
        wire.decode(b"PING\x00")


def test_call_ending_inside_an_address_is_truncated() -> None:
    with pytest.raises(TruncatedPacket):
        wire.decode(b"CALL10.0.0.1\x0010.0.")


def test_parameters_missing_ssrc_bytes_are_truncated() -> None:
    with pytest.raises(TruncatedPacket):
        wire.decode(b"PARMSPS==\x00" + struct.pack("!I", 7))
    with pytest.raises(TruncatedPacket):
        wire.decode(b"PARMSPS==")


def test_parameter_trailing_bytes_are_ignored() -> None:
    packet = wire.encode_parameters("SPS==", 5, 6) + b"extra"

    assert wire.decode(packet) == ParameterMessage("SPS==", 5, 6)


def test_invalid_utf8_is_a_wire_error() -> None:
    with pytest.raises(WireError):
        wire.decode(b"CALL\xff\xfe\x00")


@pytest.mark.parametrize("count", [0, 1, 8])
def test_call_round_trip_preserves_order(count: int) -> None:
    addresses = [f"10.0.0.{index + 1}" for index in range(count)]

    assert wire.decode(wire.encode_call(addresses)) == CallMessage(addresses=tuple(addresses))
