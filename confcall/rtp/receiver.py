"""
Receiving side of the conference.

One ``rtpbin`` receives every remote participant: session 0 carries video and
session 1 audio. Each remote sender transmits to its own block of four ports
(video RTP, video RTCP, audio RTP, audio RTCP) and the ``udpsrc`` elements
for one stream are merged by a ``funnel``. rtpbin demuxes senders by SSRC
into ``recv_rtp_src_<n>_<ssrc>_<pt>`` pads, which are parked on a
``fakesink`` until the coordinator asks for a decode chain.

The class keeps its bookkeeping in plain Python so that departure
deduplication and chain state work (and can be inspected) without the
GStreamer runtime; only the element plumbing requires it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from ..utils.gst import (
    Gst,
    RtpBinEndpoints,
    ensure_gst_initialised,
    gst_available,
    make_element,
)
from .coordinator import DeactivateReason, ParameterRecord, SsrcType
from .naming import RECV_RTCP_SINK_TEMPLATE, RECV_RTP_SINK_TEMPLATE, parse_receive_source
from .pairing import SessionPairEntry, SessionPairing
from .tracer import LatencyTracer

LOG = logging.getLogger(__name__)

VIDEO_RTP_CAPS = "application/x-rtp,media=video,clock-rate=90000,encoding-name=H264,payload=96"
AUDIO_RTP_CAPS = (
    "application/x-rtp,media=audio,clock-rate=44100,encoding-name=L16,"
    "encoding-params=1,channels=1,payload=96"
)
RTCP_CAPS = "application/x-rtcp"

# rtpbin signal name -> deactivation reason
DEACTIVATION_SIGNALS = {
    "on-bye-ssrc": DeactivateReason.BYE,
    "on-bye-timeout": DeactivateReason.TIMEOUT,
    "on-npt-stop": DeactivateReason.STOP,
    "on-sender-timeout": DeactivateReason.TIMEOUT,
    "on-timeout": DeactivateReason.TIMEOUT,
}


class SsrcEventSink(Protocol):
    def on_ssrc_activate(self, ssrc_type: SsrcType, ssrc: int) -> object:
        ...

    def on_ssrc_deactivate(self, ssrc_type: SsrcType, ssrc: int, reason: DeactivateReason) -> object:
        ...


class ChainState(str, Enum):
    PENDING = "pending"
    LINKED = "linked"


@dataclass
class DecodeChain:
    ssrc_type: SsrcType
    ssrc: int
    record: ParameterRecord
    surface: object
    state: ChainState = ChainState.PENDING
    pad_name: Optional[str] = None
    bin: Any = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "type": self.ssrc_type.value,
            "state": self.state.value,
            "pad": self.pad_name,
            "address": self.record.source_address,
        }


class ReceiverPipeline:
    """
    Media pipeline driven by :class:`~confcall.rtp.coordinator.SsrcLifecycleCoordinator`.
    """

    def __init__(
        self,
        event_sink: Optional[SsrcEventSink] = None,
        *,
        listen_ports: Sequence[int] = (10000,),
        latency_ms: int = 10,
        video_sink: str = "autovideosink",
        audio_sink: str = "autoaudiosink",
        tracer: Optional[LatencyTracer] = None,
    ) -> None:
        self._event_sink = event_sink
        self._listen_ports: List[int] = [int(port) for port in listen_ports]
        self._latency_ms = int(latency_ms)
        self._video_sink = video_sink
        self._audio_sink = audio_sink
        self._tracer = tracer

        self._lock = threading.RLock()
        self._active_ssrcs: Set[int] = set()
        self._source_pads: Dict[int, str] = {}
        self._chains: Dict[int, DecodeChain] = {}
        self._blackholes: Dict[str, Any] = {}

        self._pipeline: Any = None
        self._endpoints: Optional[RtpBinEndpoints] = None
        self._pairing: Optional[SessionPairing] = None
        self._signal_handlers: List[int] = []
        self._last_error: Optional[str] = None

    @property
    def tracer(self) -> Optional[LatencyTracer]:
        return self._tracer

    @property
    def is_running(self) -> bool:
        return self._pipeline is not None

    def set_event_sink(self, event_sink: Optional[SsrcEventSink]) -> None:
        with self._lock:
            self._event_sink = event_sink

    def set_listen_ports(self, listen_ports: Sequence[int]) -> None:
        """
        Base ports (RTP video, +1 RTCP video, +2 RTP audio, +3 RTCP audio) to
        listen on; takes effect on the next :meth:`start`.
        """

        with self._lock:
            self._listen_ports = [int(port) for port in listen_ports]

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        if not gst_available():
            LOG.warning("GStreamer runtime is not available; receiver pipeline disabled.")
            return
        if self._pipeline is not None:
            return
        ensure_gst_initialised()
        try:
            pipeline, rtpbin = self._build_pipeline()
        except Exception as exc:
            self._last_error = str(exc)
            LOG.exception("Failed to build receiver pipeline")
            return

        self._pipeline = pipeline
        for signal_name in ("on-ssrc-active", *DEACTIVATION_SIGNALS):
            handler = rtpbin.connect(signal_name, self._on_rtpbin_signal, signal_name)
            self._signal_handlers.append(handler)

        self._endpoints = RtpBinEndpoints(rtpbin)
        self._pairing = SessionPairing(self._endpoints, on_pair=self._on_pair, on_unpair=self._on_unpair)
        self._pairing.attach()

        if pipeline.set_state(Gst.State.PLAYING) == Gst.StateChangeReturn.FAILURE:
            self._last_error = "Failed to set receiver pipeline to PLAYING."
            LOG.error(self._last_error)
            self.stop()
            return
        LOG.info("Receiver pipeline listening on port blocks %s", self._listen_ports)

    def stop(self) -> None:
        pipeline = self._pipeline
        if pipeline is None:
            return
        if self._pairing is not None:
            self._pairing.detach()
        if self._endpoints is not None:
            for handler in self._signal_handlers:
                try:
                    self._endpoints.element.disconnect(handler)
                except Exception:  # pragma: no cover - defensive
                    LOG.debug("Failed to disconnect rtpbin handler", exc_info=True)
        self._signal_handlers.clear()
        try:
            pipeline.set_state(Gst.State.NULL)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Failed to set receiver pipeline to NULL during shutdown")
        with self._lock:
            self._pipeline = None
            self._endpoints = None
            self._pairing = None
            self._blackholes.clear()
            self._source_pads.clear()
            self._active_ssrcs.clear()
            for chain in self._chains.values():
                chain.state = ChainState.PENDING
                chain.pad_name = None
                chain.bin = None

    # ------------------------------------------------------------------ transport events

    def handle_ssrc_active(self, session: int, ssrc: int) -> None:
        """
        Forward every rtpbin activation.

        rtpbin repeats ``on-ssrc-active`` for each RTCP packet; the repeats
        let the coordinator pick up an SSRC whose orphan entry aged out
        before its parameters arrived.
        """

        with self._lock:
            self._active_ssrcs.add(ssrc)
            sink = self._event_sink
        if sink is not None:
            sink.on_ssrc_activate(SsrcType.from_session(session), ssrc)

    def handle_ssrc_inactive(self, session: int, ssrc: int, reason: DeactivateReason) -> None:
        with self._lock:
            if ssrc not in self._active_ssrcs:
                return
            self._active_ssrcs.discard(ssrc)
            sink = self._event_sink
        if sink is not None:
            sink.on_ssrc_deactivate(SsrcType.from_session(session), ssrc, reason)

    def handle_source_pad(self, pad_name: str) -> None:
        """
        Remember which pad carries which SSRC and connect it.
        """

        parsed = parse_receive_source(pad_name)
        if parsed is None:
            return
        with self._lock:
            self._source_pads[parsed.ssrc] = pad_name
            chain = self._chains.get(parsed.ssrc)
            if chain is not None:
                chain.pad_name = pad_name
                self._link_chain_locked(chain)
            else:
                self._blackhole_locked(pad_name)

    def handle_source_pad_removed(self, pad_name: str) -> None:
        """
        Forget a pad rtpbin removed; a chain waiting on it goes back to pending.
        """

        parsed = parse_receive_source(pad_name)
        if parsed is None:
            return
        with self._lock:
            if self._source_pads.get(parsed.ssrc) == pad_name:
                del self._source_pads[parsed.ssrc]
            sink = self._blackholes.pop(pad_name, None)
            if sink is not None and self._pipeline is not None:
                sink.set_state(Gst.State.NULL)
                self._pipeline.remove(sink)
            chain = self._chains.get(parsed.ssrc)
            if chain is not None and chain.pad_name == pad_name:
                self._release_chain_locked(chain)
                chain.pad_name = None
        LOG.debug("Source pad %s was removed", pad_name)

    # ------------------------------------------------------------------ MediaPipeline

    def wire_decode_chain(
        self, ssrc_type: SsrcType, ssrc: int, record: ParameterRecord, surface: object
    ) -> None:
        with self._lock:
            previous = self._chains.pop(ssrc, None)
            if previous is not None:
                self._release_chain_locked(previous)
            chain = DecodeChain(ssrc_type=ssrc_type, ssrc=ssrc, record=record, surface=surface)
            chain.pad_name = self._source_pads.get(ssrc)
            self._chains[ssrc] = chain
            self._link_chain_locked(chain)

    def unwire_decode_chain(self, ssrc_type: SsrcType, ssrc: int) -> None:
        with self._lock:
            chain = self._chains.pop(ssrc, None)
            if chain is None:
                return
            self._release_chain_locked(chain)
            if chain.pad_name is not None:
                self._blackhole_locked(chain.pad_name)

    def describe(self) -> Dict[str, object]:
        with self._lock:
            return {
                "running": self.is_running,
                "listenPorts": list(self._listen_ports),
                "activeSsrcs": sorted(self._active_ssrcs),
                "sourcePads": {str(ssrc): name for ssrc, name in self._source_pads.items()},
                "chains": {str(ssrc): chain.to_dict() for ssrc, chain in self._chains.items()},
                "last_error": self._last_error,
            }

    # ------------------------------------------------------------------ GStreamer plumbing

    def _on_rtpbin_signal(self, _rtpbin: Any, session: int, ssrc: int, signal_name: str) -> None:
        if signal_name == "on-ssrc-active":
            self.handle_ssrc_active(session, ssrc)
        else:
            self.handle_ssrc_inactive(session, ssrc, DEACTIVATION_SIGNALS[signal_name])

    def _on_pair(self, entry: SessionPairEntry) -> None:
        if self._tracer is not None and self._endpoints is not None:
            self._tracer.track(
                entry,
                sink_pad=self._endpoints.pad(entry.send_sub_endpoint),
                src_pad=self._endpoints.pad(entry.receive_sub_endpoint),
            )
        self.handle_source_pad(entry.receive_sub_endpoint)

    def _on_unpair(self, entry: SessionPairEntry) -> None:
        if self._tracer is not None:
            self._tracer.untrack(entry)
        self.handle_source_pad_removed(entry.receive_sub_endpoint)

    def _build_pipeline(self) -> Tuple[Any, Any]:
        pipeline = Gst.Pipeline.new("confcall-receiver")
        rtpbin = make_element("rtpbin", "rtpbin", latency=self._latency_ms)
        pipeline.add(rtpbin)

        for session, rtp_caps in ((0, VIDEO_RTP_CAPS), (1, AUDIO_RTP_CAPS)):
            for offset, caps, template in (
                (2 * session, rtp_caps, RECV_RTP_SINK_TEMPLATE),
                (2 * session + 1, RTCP_CAPS, RECV_RTCP_SINK_TEMPLATE),
            ):
                funnel = make_element("funnel")
                pipeline.add(funnel)
                sink_pad = rtpbin.request_pad_simple(template.format(session))
                if sink_pad is None or funnel.get_static_pad("src").link(sink_pad) != Gst.PadLinkReturn.OK:
                    raise RuntimeError(f"Failed to link {template.format(session)} on rtpbin.")
                for base_port in self._listen_ports:
                    source = make_element("udpsrc", None, port=base_port + offset)
                    source.set_property("caps", Gst.Caps.from_string(caps))
                    pipeline.add(source)
                    if not source.link(funnel):
                        raise RuntimeError(f"Failed to link udpsrc on port {base_port + offset}.")

        return pipeline, rtpbin

    def _blackhole_locked(self, pad_name: str) -> None:
        if self._pipeline is None or self._endpoints is None:
            return
        pad = self._endpoints.pad(pad_name)
        if pad is None or pad.is_linked():
            return
        sink = self._blackholes.get(pad_name)
        if sink is None:
            sink = make_element("fakesink", None, sync=False)
            sink.set_property("async", False)
            self._pipeline.add(sink)
            sink.sync_state_with_parent()
            self._blackholes[pad_name] = sink
        if pad.link(sink.get_static_pad("sink")) != Gst.PadLinkReturn.OK:
            LOG.warning("Failed to blackhole %s", pad_name)

    def _link_chain_locked(self, chain: DecodeChain) -> None:
        if chain.pad_name is None or self._pipeline is None or self._endpoints is None:
            return
        pad = self._endpoints.pad(chain.pad_name)
        if pad is None:
            return
        peer = pad.get_peer()
        if peer is not None:
            pad.unlink(peer)
        try:
            decode_bin = self._make_decode_bin(chain)
        except Exception:
            LOG.exception("Failed to build decode chain for ssrc %d", chain.ssrc)
            self._blackhole_locked(chain.pad_name)
            return
        self._pipeline.add(decode_bin)
        decode_bin.sync_state_with_parent()
        if pad.link(decode_bin.get_static_pad("sink")) != Gst.PadLinkReturn.OK:
            LOG.error("Failed to link %s to its decode chain", chain.pad_name)
            self._pipeline.remove(decode_bin)
            decode_bin.set_state(Gst.State.NULL)
            self._blackhole_locked(chain.pad_name)
            return
        chain.bin = decode_bin
        chain.state = ChainState.LINKED
        LOG.info("Linked %s to %s decode chain for %s", chain.pad_name, chain.ssrc_type.value, chain.record.source_address)

    def _release_chain_locked(self, chain: DecodeChain) -> None:
        decode_bin = chain.bin
        chain.bin = None
        chain.state = ChainState.PENDING
        if decode_bin is None or self._pipeline is None:
            return
        sink_pad = decode_bin.get_static_pad("sink")
        peer = sink_pad.get_peer() if sink_pad is not None else None
        if peer is not None:
            peer.unlink(sink_pad)
        decode_bin.set_state(Gst.State.NULL)
        self._pipeline.remove(decode_bin)

    def _make_decode_bin(self, chain: DecodeChain) -> Any:
        decode_bin = Gst.Bin.new(f"decode_{chain.ssrc_type.value}_{chain.ssrc}")
        if chain.ssrc_type is SsrcType.VIDEO:
            caps = Gst.Caps.from_string(
                f'application/x-rtp,media=video,sprop-parameter-sets="{chain.record.picture_parameters}"'
            )
            elements = [
                make_element("capsfilter", None, caps=caps),
                make_element("rtph264depay"),
                make_element("avdec_h264"),
                make_element("videoconvert"),
                make_element(self._video_sink, None, sync=False),
            ]
            self._apply_surface(elements[-1], chain.surface)
        else:
            elements = [
                make_element("rtpL16depay"),
                make_element("audioconvert"),
                make_element("audioresample"),
                make_element(self._audio_sink, None, sync=False),
            ]
        for element in elements:
            decode_bin.add(element)
        for upstream, downstream in zip(elements, elements[1:]):
            if not upstream.link(downstream):
                raise RuntimeError(f"Failed to link {upstream.get_name()} to {downstream.get_name()}")
        ghost = Gst.GhostPad.new("sink", elements[0].get_static_pad("sink"))
        decode_bin.add_pad(ghost)
        return decode_bin

    @staticmethod
    def _apply_surface(sink: Any, surface: object) -> None:
        if isinstance(surface, int) and hasattr(sink, "set_window_handle"):
            sink.set_window_handle(surface)


__all__ = ["ReceiverPipeline", "DecodeChain", "ChainState", "SsrcEventSink", "DEACTIVATION_SIGNALS"]
