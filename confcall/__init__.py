"""
confcall: peer-to-peer audio/video conferencing over RTP.

Participants find each other through a small UDP gossip protocol
(:mod:`confcall.protocol`): the originator repeatedly announces the roster in
``CALL`` messages and every participant announces its encoder parameters and
SSRCs in ``PARM`` messages. The receiving side (:mod:`confcall.rtp`) matches
those announcements to the RTP streams that actually arrive and builds a
decode chain for each.
"""

from __future__ import annotations

from .config import CallSettings, SettingsError, load_settings
from .directory import Directory, DirectoryEntry, DirectoryError, load_directory
from .session import ConferenceSession

__all__ = [
    "CallSettings",
    "SettingsError",
    "load_settings",
    "Directory",
    "DirectoryEntry",
    "DirectoryError",
    "load_directory",
    "ConferenceSession",
]
