"""
Conference announcement protocol: wire codec and periodic announcer.
"""

from __future__ import annotations

from .announcer import Announcer, CallPacketListener, ParameterPacketListener
from .wire import CallMessage, ParameterMessage, TruncatedPacket, UnknownTag, WireError

__all__ = [
    "Announcer",
    "CallPacketListener",
    "ParameterPacketListener",
    "CallMessage",
    "ParameterMessage",
    "WireError",
    "UnknownTag",
    "TruncatedPacket",
]
