"""
Sub-endpoint (pad) naming used by ``rtpbin``.

    send_rtp_sink_<n>   -> send_rtp_src_<n>
    recv_rtp_sink_<n>   -> recv_rtp_src_<n>_<ssrc>_<payload>
    send_rtcp_src_<n>      control traffic only, no data-plane pair
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

SEND_RTP_SINK = "send_rtp_sink_"
SEND_RTP_SRC = "send_rtp_src_"
SEND_RTCP_SRC = "send_rtcp_src_"
RECV_RTP_SINK = "recv_rtp_sink_"
RECV_RTP_SRC = "recv_rtp_src_"

# request-pad names, formatted with the session index
SEND_RTP_SINK_TEMPLATE = SEND_RTP_SINK + "{}"
SEND_RTCP_SRC_TEMPLATE = SEND_RTCP_SRC + "{}"
RECV_RTP_SINK_TEMPLATE = RECV_RTP_SINK + "{}"
RECV_RTCP_SINK_TEMPLATE = "recv_rtcp_sink_{}"

_LEADING_INDEX = re.compile(r"(\d+)")
_RECV_SRC = re.compile(r"^recv_rtp_src_(\d+)_(\d+)_(\d+)$")


@dataclass(frozen=True, slots=True)
class ReceiveSourceName:
    session: int
    ssrc: int
    payload_type: int


def _leading_index(remainder: str) -> Optional[int]:
    match = _LEADING_INDEX.match(remainder)
    if match is None:
        return None
    return int(match.group(1))


def sink_name_for_source(source_name: str) -> Optional[str]:
    """
    Return the name of the sink sub-endpoint that feeds ``source_name``.

    ``None`` for RTCP-only sources and for names outside the convention.
    """

    if source_name.startswith(SEND_RTCP_SRC):
        return None
    for prefix, sink_prefix in ((SEND_RTP_SRC, SEND_RTP_SINK), (RECV_RTP_SRC, RECV_RTP_SINK)):
        if source_name.startswith(prefix):
            index = _leading_index(source_name[len(prefix):])
            if index is None:
                return None
            return f"{sink_prefix}{index}"
    return None


def is_known_source(source_name: str) -> bool:
    return source_name.startswith((SEND_RTCP_SRC, SEND_RTP_SRC, RECV_RTP_SRC))


def parse_receive_source(source_name: str) -> Optional[ReceiveSourceName]:
    """
    Split ``recv_rtp_src_<n>_<ssrc>_<payload>`` into its numeric parts.
    """

    match = _RECV_SRC.match(source_name)
    if match is None:
        return None
    session, ssrc, payload_type = (int(part) for part in match.groups())
    return ReceiveSourceName(session=session, ssrc=ssrc, payload_type=payload_type)


__all__ = [
    "ReceiveSourceName",
    "sink_name_for_source",
    "is_known_source",
    "parse_receive_source",
]
