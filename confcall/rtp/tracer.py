"""
Per-pair latency through an RTP session.

A buffer probe on the sink sub-endpoint stamps arrivals, a probe on the
paired source sub-endpoint matches them in order. Several sources can share
one sink (one per remote SSRC), so pending stamps are queued per sink.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from ..utils.gst import Gst
from .pairing import SessionPairEntry

LOG = logging.getLogger(__name__)

MAX_PENDING = 256


@dataclass(slots=True)
class LatencyStats:
    count: int = 0
    total_ns: int = 0
    max_ns: int = 0
    last_ns: int = 0

    def add(self, latency_ns: int) -> None:
        self.count += 1
        self.total_ns += latency_ns
        self.last_ns = latency_ns
        if latency_ns > self.max_ns:
            self.max_ns = latency_ns

    @property
    def mean_ns(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_ns / self.count

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "meanMs": self.mean_ns / 1e6,
            "maxMs": self.max_ns / 1e6,
            "lastMs": self.last_ns / 1e6,
        }


class LatencyTracer:
    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or time.monotonic_ns
        self._lock = threading.Lock()
        self._pending: Dict[str, Deque[int]] = {}
        self._stats: Dict[SessionPairEntry, LatencyStats] = {}
        self._sink_probes: Dict[str, Tuple[Any, int]] = {}
        self._src_probes: Dict[SessionPairEntry, Tuple[Any, int]] = {}

    def track(self, entry: SessionPairEntry, sink_pad: Any = None, src_pad: Any = None) -> None:
        """
        Start measuring ``entry``; installs buffer probes when pads are given.
        """

        sink_name = entry.send_sub_endpoint
        with self._lock:
            if entry in self._stats:
                return
            self._stats[entry] = LatencyStats()
            self._pending.setdefault(sink_name, deque(maxlen=MAX_PENDING))
            probe_sink = sink_name not in self._sink_probes
        if Gst is None or sink_pad is None or src_pad is None:
            return
        with self._lock:
            if probe_sink:
                probe_id = sink_pad.add_probe(Gst.PadProbeType.BUFFER, self._on_sink_probe, sink_name)
                self._sink_probes[sink_name] = (sink_pad, probe_id)
            probe_id = src_pad.add_probe(Gst.PadProbeType.BUFFER, self._on_src_probe, entry)
            self._src_probes[entry] = (src_pad, probe_id)
        LOG.debug("Tracing latency %s -> %s", sink_name, entry.receive_sub_endpoint)

    def untrack(self, entry: SessionPairEntry) -> None:
        with self._lock:
            self._stats.pop(entry, None)
            probe = self._src_probes.pop(entry, None)
        if probe is not None:
            pad, probe_id = probe
            pad.remove_probe(probe_id)

    def sink_buffer(self, sink_name: str) -> None:
        now = self._clock()
        with self._lock:
            pending = self._pending.get(sink_name)
            if pending is not None:
                pending.append(now)

    def source_buffer(self, entry: SessionPairEntry) -> Optional[int]:
        """
        Match a departure with the oldest arrival; returns the latency in ns.
        """

        now = self._clock()
        with self._lock:
            pending = self._pending.get(entry.send_sub_endpoint)
            stats = self._stats.get(entry)
            if not pending or stats is None:
                return None
            latency = max(0, now - pending.popleft())
            stats.add(latency)
        return latency

    def stats_for(self, entry: SessionPairEntry) -> Optional[LatencyStats]:
        with self._lock:
            return self._stats.get(entry)

    def describe(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                f"{entry.send_sub_endpoint}->{entry.receive_sub_endpoint}": stats.to_dict()
                for entry, stats in self._stats.items()
            }

    def _on_sink_probe(self, _pad: Any, _info: Any, sink_name: str) -> Any:
        self.sink_buffer(sink_name)
        return Gst.PadProbeReturn.OK

    def _on_src_probe(self, _pad: Any, _info: Any, entry: SessionPairEntry) -> Any:
        self.source_buffer(entry)
        return Gst.PadProbeReturn.OK


__all__ = ["LatencyTracer", "LatencyStats"]
