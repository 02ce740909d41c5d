"""
Sending side of the conference.

Camera and microphone are encoded (H.264 and L16), pushed through one
``rtpbin`` and fanned out to every remote participant by ``multiudpsink``.
The SSRCs and H.264 picture parameters only become known once caps are
negotiated; :class:`ParameterTracker` collects them and reports each new
complete set so the announcer can advertise it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..utils.gst import Gst, RtpBinEndpoints, ensure_gst_initialised, gst_available, make_element
from .coordinator import SsrcType
from .naming import SEND_RTCP_SRC_TEMPLATE, SEND_RTP_SINK_TEMPLATE, SEND_RTP_SRC
from .pairing import SessionPairEntry, SessionPairing
from .tracer import LatencyTracer

LOG = logging.getLogger(__name__)

AUDIO_RAW_CAPS = "audio/x-raw,format=S16BE,channels=1,rate=44100"
PAYLOAD_TYPE = 96

ParametersCallback = Callable[[str, int, int], None]


class ParameterTracker:
    """
    Collect outgoing stream parameters from negotiated caps.

    ``callback(picture_parameters, video_ssrc, audio_ssrc)`` fires whenever
    all three are known and differ from the last reported set.
    """

    def __init__(self, callback: Optional[ParametersCallback] = None) -> None:
        self._callback = callback
        self._lock = threading.Lock()
        self._picture_parameters: Optional[str] = None
        self._ssrcs: Dict[SsrcType, int] = {}
        self._reported: Optional[Tuple[str, int, int]] = None

    @property
    def current(self) -> Optional[Tuple[str, int, int]]:
        return self._reported

    def update(self, media: str, ssrc: Optional[int], picture_parameters: Optional[str] = None) -> bool:
        """
        Feed one caps observation; returns ``True`` when a new set was reported.
        """

        try:
            ssrc_type = SsrcType(media)
        except ValueError:
            LOG.debug("Ignoring caps for media '%s'", media)
            return False
        with self._lock:
            if ssrc:
                self._ssrcs[ssrc_type] = int(ssrc)
            if ssrc_type is SsrcType.VIDEO and picture_parameters:
                self._picture_parameters = picture_parameters
            video = self._ssrcs.get(SsrcType.VIDEO)
            audio = self._ssrcs.get(SsrcType.AUDIO)
            if self._picture_parameters is None or video is None or audio is None:
                return False
            current = (self._picture_parameters, video, audio)
            if current == self._reported:
                return False
            self._reported = current
            callback = self._callback
        LOG.info("Outgoing parameters: video ssrc %d, audio ssrc %d", video, audio)
        if callback is not None:
            callback(*current)
        return True


class SenderPipeline:
    def __init__(
        self,
        on_parameters: Optional[ParametersCallback] = None,
        *,
        video_bitrate: int = 50_000_000,
        latency_ms: int = 10,
        video_source: str = "autovideosrc",
        audio_source: str = "autoaudiosrc",
        preview_sink: Optional[str] = "autovideosink",
        tracer: Optional[LatencyTracer] = None,
    ) -> None:
        self._tracker = ParameterTracker(on_parameters)
        self._video_bitrate = int(video_bitrate)
        self._latency_ms = int(latency_ms)
        self._video_source = video_source
        self._audio_source = audio_source
        self._preview_sink = preview_sink
        self._tracer = tracer

        self._lock = threading.RLock()
        self._destinations: Dict[str, int] = {}
        self._preview_surface: object = None
        self._pipeline: Any = None
        self._encoder: Any = None
        self._rtp_sinks: Dict[SsrcType, Any] = {}
        self._rtcp_sinks: Dict[SsrcType, Any] = {}
        self._preview: Any = None
        self._endpoints: Optional[RtpBinEndpoints] = None
        self._pairing: Optional[SessionPairing] = None
        self._last_error: Optional[str] = None

    @property
    def tracker(self) -> ParameterTracker:
        return self._tracker

    @property
    def tracer(self) -> Optional[LatencyTracer]:
        return self._tracer

    @property
    def is_running(self) -> bool:
        return self._pipeline is not None

    @property
    def encoder_bitrate_kbps(self) -> int:
        return self._video_bitrate // 1024

    # ------------------------------------------------------------------ configuration

    def set_bitrate(self, bits_per_second: int) -> None:
        with self._lock:
            self._video_bitrate = int(bits_per_second)
            if self._encoder is not None:
                self._encoder.set_property("bitrate", self.encoder_bitrate_kbps)

    def add_destination(self, address: str, base_port: int) -> None:
        with self._lock:
            self._destinations[address] = int(base_port)
            self._apply_destinations_locked()

    def remove_destination(self, address: str) -> None:
        with self._lock:
            if self._destinations.pop(address, None) is not None:
                self._apply_destinations_locked()

    def clients(self, ssrc_type: SsrcType, rtcp: bool = False) -> str:
        """
        ``multiudpsink`` client list for one stream, e.g. ``"10.0.0.2:10004"``.
        """

        offset = (0 if ssrc_type is SsrcType.VIDEO else 2) + (1 if rtcp else 0)
        with self._lock:
            return ",".join(
                f"{address}:{base_port + offset}" for address, base_port in sorted(self._destinations.items())
            )

    def set_preview_surface(self, surface: object) -> None:
        with self._lock:
            self._preview_surface = surface
            if self._preview is not None and isinstance(surface, int) and hasattr(self._preview, "set_window_handle"):
                self._preview.set_window_handle(surface)

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        if not gst_available():
            LOG.warning("GStreamer runtime is not available; sender pipeline disabled.")
            return
        if self._pipeline is not None:
            return
        ensure_gst_initialised()
        with self._lock:
            try:
                pipeline, rtpbin = self._build_pipeline()
            except Exception as exc:
                self._last_error = str(exc)
                LOG.exception("Failed to build sender pipeline")
                return
            self._pipeline = pipeline
            self._apply_destinations_locked()
            self.set_preview_surface(self._preview_surface)

        self._endpoints = RtpBinEndpoints(rtpbin)
        self._pairing = SessionPairing(self._endpoints, on_pair=self._on_pair, on_unpair=self._on_unpair)
        self._pairing.attach()

        if pipeline.set_state(Gst.State.PLAYING) == Gst.StateChangeReturn.FAILURE:
            self._last_error = "Failed to set sender pipeline to PLAYING."
            LOG.error(self._last_error)
            self.stop()
            return
        LOG.info("Sender pipeline started (%d kbit/s video)", self.encoder_bitrate_kbps)

    def stop(self) -> None:
        pipeline = self._pipeline
        if pipeline is None:
            return
        if self._pairing is not None:
            self._pairing.detach()
        try:
            pipeline.set_state(Gst.State.NULL)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Failed to set sender pipeline to NULL during shutdown")
        with self._lock:
            self._pipeline = None
            self._encoder = None
            self._preview = None
            self._rtp_sinks.clear()
            self._rtcp_sinks.clear()
            self._endpoints = None
            self._pairing = None

    def describe(self) -> Dict[str, object]:
        with self._lock:
            current = self._tracker.current
            return {
                "running": self.is_running,
                "bitrateKbps": self.encoder_bitrate_kbps,
                "destinations": dict(self._destinations),
                "parameters": None
                if current is None
                else {"pictureParameters": current[0], "videoSsrc": current[1], "audioSsrc": current[2]},
                "last_error": self._last_error,
            }

    # ------------------------------------------------------------------ GStreamer plumbing

    def _apply_destinations_locked(self) -> None:
        for ssrc_type, sink in self._rtp_sinks.items():
            sink.set_property("clients", self.clients(ssrc_type))
        for ssrc_type, sink in self._rtcp_sinks.items():
            sink.set_property("clients", self.clients(ssrc_type, rtcp=True))

    def _on_pair(self, entry: SessionPairEntry) -> None:
        if self._tracer is None or self._endpoints is None:
            return
        self._tracer.track(
            entry,
            sink_pad=self._endpoints.pad(entry.send_sub_endpoint),
            src_pad=self._endpoints.pad(entry.receive_sub_endpoint),
        )

    def _on_unpair(self, entry: SessionPairEntry) -> None:
        if self._tracer is not None:
            self._tracer.untrack(entry)

    def _on_caps(self, pad: Any, _pspec: Any) -> None:
        caps = pad.get_current_caps()
        if caps is None or caps.get_size() == 0:
            return
        structure = caps.get_structure(0)
        media = structure.get_string("media")
        found, ssrc = structure.get_uint("ssrc")
        self._tracker.update(
            media or "",
            ssrc if found else None,
            structure.get_string("sprop-parameter-sets"),
        )

    def _build_pipeline(self) -> Tuple[Any, Any]:
        pipeline = Gst.Pipeline.new("confcall-sender")
        rtpbin = make_element("rtpbin", "rtpbin", latency=self._latency_ms)
        pipeline.add(rtpbin)

        video_chain = [
            make_element(self._video_source),
            make_element("videoconvert"),
            make_element("tee", "preview_tee"),
            make_element("queue"),
            make_element("x264enc", None, bitrate=self.encoder_bitrate_kbps),
            make_element("rtph264pay", None, pt=PAYLOAD_TYPE, config_interval=1),
        ]
        self._encoder = video_chain[4]
        Gst.util_set_object_arg(self._encoder, "tune", "zerolatency")
        Gst.util_set_object_arg(self._encoder, "speed-preset", "ultrafast")
        audio_chain = [
            make_element(self._audio_source),
            make_element("audioconvert"),
            make_element("audioresample"),
            make_element("capsfilter", None, caps=Gst.Caps.from_string(AUDIO_RAW_CAPS)),
            make_element("rtpL16pay", None, pt=PAYLOAD_TYPE),
        ]

        for session, (ssrc_type, chain) in enumerate(((SsrcType.VIDEO, video_chain), (SsrcType.AUDIO, audio_chain))):
            self._add_chain(pipeline, chain)
            sink_pad = rtpbin.request_pad_simple(SEND_RTP_SINK_TEMPLATE.format(session))
            if chain[-1].get_static_pad("src").link(sink_pad) != Gst.PadLinkReturn.OK:
                raise RuntimeError(f"Failed to link {ssrc_type.value} payloader to rtpbin.")

            rtp_sink = make_element("multiudpsink", None, sync=False)
            rtp_sink.set_property("async", False)
            rtcp_sink = make_element("multiudpsink", None, sync=False)
            rtcp_sink.set_property("async", False)
            pipeline.add(rtp_sink)
            pipeline.add(rtcp_sink)
            if not rtpbin.link_pads(f"{SEND_RTP_SRC}{session}", rtp_sink, "sink"):
                raise RuntimeError(f"Failed to link rtpbin to the {ssrc_type.value} RTP sink.")
            rtcp_pad = rtpbin.request_pad_simple(SEND_RTCP_SRC_TEMPLATE.format(session))
            if rtcp_pad.link(rtcp_sink.get_static_pad("sink")) != Gst.PadLinkReturn.OK:
                raise RuntimeError(f"Failed to link rtpbin to the {ssrc_type.value} RTCP sink.")
            rtp_sink.get_static_pad("sink").connect("notify::caps", self._on_caps)
            self._rtp_sinks[ssrc_type] = rtp_sink
            self._rtcp_sinks[ssrc_type] = rtcp_sink

        if self._preview_sink:
            preview_queue = make_element("queue")
            self._preview = make_element(self._preview_sink, None, sync=False)
            self._add_chain(pipeline, [preview_queue, self._preview])
            if not video_chain[2].link(preview_queue):
                raise RuntimeError("Failed to link local preview.")

        return pipeline, rtpbin

    @staticmethod
    def _add_chain(pipeline: Any, elements: List[Any]) -> None:
        for element in elements:
            pipeline.add(element)
        for upstream, downstream in zip(elements, elements[1:]):
            if not upstream.link(downstream):
                raise RuntimeError(f"Failed to link {upstream.get_name()} to {downstream.get_name()}")


__all__ = ["ParameterTracker", "SenderPipeline", "ParametersCallback"]
