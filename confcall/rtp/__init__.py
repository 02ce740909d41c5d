"""
RTP session plumbing: pad pairing, SSRC lifecycle and the media pipelines.
"""

from __future__ import annotations

from .coordinator import (
    DeactivateReason,
    MediaPipeline,
    ParameterRecord,
    SsrcLifecycleCoordinator,
    SsrcState,
    SsrcType,
    SurfaceProvider,
)
from .pairing import SessionPairEntry, SessionPairing, SubEndpointSet
from .receiver import ReceiverPipeline
from .sender import ParameterTracker, SenderPipeline
from .tracer import LatencyStats, LatencyTracer

__all__ = [
    "DeactivateReason",
    "MediaPipeline",
    "ParameterRecord",
    "SsrcLifecycleCoordinator",
    "SsrcState",
    "SsrcType",
    "SurfaceProvider",
    "SessionPairEntry",
    "SessionPairing",
    "SubEndpointSet",
    "ReceiverPipeline",
    "ParameterTracker",
    "SenderPipeline",
    "LatencyStats",
    "LatencyTracer",
]
