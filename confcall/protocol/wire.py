"""
Datagram codec for the conference announcement protocol.

Every message is a 4-byte ASCII tag followed by its payload; the UDP datagram
boundary is the message boundary, so there is no length prefix.

``CALL``
    Sequence of NUL-terminated address strings (the call roster).
``PARM``
    NUL-terminated picture-parameters string followed by the video SSRC and
    the audio SSRC, each a 4-byte big-endian unsigned integer. Bytes after the
    audio SSRC are padding and ignored.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, Tuple, Union

CALL_TAG = b"CALL"
PARM_TAG = b"PARM"
TAG_LENGTH = 4

_SSRC_PAIR = struct.Struct("!II")
_NUL = b"\x00"
MAX_SSRC = 0xFFFFFFFF


class WireError(ValueError):
    """Base class for datagrams that cannot be decoded."""


class UnknownTag(WireError):
    """Raised when a datagram carries a tag this codec does not understand."""


class TruncatedPacket(WireError):
    """Raised when a payload ends before all of its fields are complete."""


@dataclass(frozen=True, slots=True)
class CallMessage:
    addresses: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ParameterMessage:
    picture_parameters: str
    video_ssrc: int
    audio_ssrc: int


Message = Union[CallMessage, ParameterMessage]


def _encode_field(value: str, what: str) -> bytes:
    raw = value.encode("utf-8")
    if _NUL in raw:
        raise ValueError(f"{what} must not contain NUL bytes")
    return raw + _NUL


def _check_ssrc(value: int, what: str) -> int:
    value = int(value)
    if not 0 <= value <= MAX_SSRC:
        raise ValueError(f"{what} {value} is outside the 32-bit range")
    return value


def _decode_field(raw: bytes, what: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise TruncatedPacket(f"{what} is not valid UTF-8") from exc


def encode_call(addresses: Iterable[str]) -> bytes:
    return CALL_TAG + b"".join(_encode_field(address, "address") for address in addresses)


def encode_parameters(picture_parameters: str, video_ssrc: int, audio_ssrc: int) -> bytes:
    return (
        PARM_TAG
        + _encode_field(picture_parameters, "picture parameters")
        + _SSRC_PAIR.pack(
            _check_ssrc(video_ssrc, "video SSRC"),
            _check_ssrc(audio_ssrc, "audio SSRC"),
        )
    )


def encode(message: Message) -> bytes:
    if isinstance(message, CallMessage):
        return encode_call(message.addresses)
    if isinstance(message, ParameterMessage):
        return encode_parameters(message.picture_parameters, message.video_ssrc, message.audio_ssrc)
    raise TypeError(f"Cannot encode {type(message).__name__}")


def decode_call(payload: bytes) -> CallMessage:
    if not payload:
        return CallMessage(addresses=())
    if not payload.endswith(_NUL):
        raise TruncatedPacket("CALL payload ends inside an address")
    fields = payload[:-1].split(_NUL)
    return CallMessage(addresses=tuple(_decode_field(field, "address") for field in fields))


def decode_parameters(payload: bytes) -> ParameterMessage:
    end = payload.find(_NUL)
    if end < 0:
        raise TruncatedPacket("PARM picture parameters are not NUL-terminated")
    picture_parameters = _decode_field(payload[:end], "picture parameters")
    offset = end + 1
    if len(payload) - offset < _SSRC_PAIR.size:
        raise TruncatedPacket("PARM payload ends before both SSRCs")
    video_ssrc, audio_ssrc = _SSRC_PAIR.unpack_from(payload, offset)
    return ParameterMessage(
        picture_parameters=picture_parameters,
        video_ssrc=video_ssrc,
        audio_ssrc=audio_ssrc,
    )


def decode(datagram: bytes) -> Message:
    """
    Decode a received datagram.

    Raises :class:`UnknownTag` or :class:`TruncatedPacket`; callers on the
    receive path drop the datagram in either case.
    """

    if len(datagram) < TAG_LENGTH:
        raise TruncatedPacket(f"datagram of {len(datagram)} bytes has no tag")
    tag = bytes(datagram[:TAG_LENGTH])
    payload = bytes(datagram[TAG_LENGTH:])
    if tag == CALL_TAG:
        return decode_call(payload)
    if tag == PARM_TAG:
        return decode_parameters(payload)
    raise UnknownTag(f"unrecognised tag {tag!r}")


__all__ = [
    "CALL_TAG",
    "PARM_TAG",
    "CallMessage",
    "ParameterMessage",
    "Message",
    "WireError",
    "UnknownTag",
    "TruncatedPacket",
    "encode",
    "encode_call",
    "encode_parameters",
    "decode",
    "decode_call",
    "decode_parameters",
]
