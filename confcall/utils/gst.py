"""
GStreamer helpers shared by the sender, receiver and tracer.

The runtime is optional: when PyGObject or GStreamer is missing ``Gst`` is
``None`` and callers are expected to degrade to bookkeeping only.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

try:  # pragma: no cover - availability depends on host environment
    import gi  # type: ignore

    gi.require_version("Gst", "1.0")
    from gi.repository import Gst  # type: ignore
except (ImportError, ValueError) as exc:  # pragma: no cover
    Gst = None  # type: ignore[assignment]
    _GST_IMPORT_ERROR: Optional[BaseException] = exc
else:  # pragma: no cover - executed only when GStreamer is present
    _GST_IMPORT_ERROR = None

LOG = logging.getLogger(__name__)

_INIT_LOCK = threading.Lock()
_GST_INITIALISED = False


class PipelineUnavailableError(RuntimeError):
    """Raised when a pipeline cannot be materialised due to missing dependencies."""


def gst_available() -> bool:
    return Gst is not None


def ensure_gst_initialised() -> None:
    global _GST_INITIALISED
    if Gst is None:
        return
    with _INIT_LOCK:
        if _GST_INITIALISED:
            return
        Gst.init(None)
        _GST_INITIALISED = True


def require_gstreamer() -> None:
    if Gst is None:
        raise PipelineUnavailableError(
            "GStreamer runtime is not available. Install PyGObject/GStreamer "
            "1.20+ to enable media pipelines."
        ) from _GST_IMPORT_ERROR
    ensure_gst_initialised()


def make_element(factory: str, name: Optional[str] = None, **properties: Any) -> Any:
    """
    Create an element and apply ``properties`` (underscores become dashes).
    """

    require_gstreamer()
    element = Gst.ElementFactory.make(factory, name)
    if not element:
        raise RuntimeError(f"GStreamer element factory '{factory}' is not available.")
    for key, value in properties.items():
        element.set_property(key.replace("_", "-"), value)
    return element


def pad_names(pads: Any) -> List[str]:
    return [pad.get_name() for pad in pads or []]


class RtpBinEndpoints:
    """
    Expose the pads of a live ``rtpbin`` as a set of named sub-endpoints.

    Source pads on rtpbin are "sometimes" pads; ``connect_source_added`` and
    ``connect_source_removed`` forward source pad names to the callback from
    the streaming thread that created or released them.
    """

    def __init__(self, rtpbin: Any) -> None:
        self._element = rtpbin
        self._handlers: Dict[int, int] = {}
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def element(self) -> Any:
        return self._element

    def source_names(self) -> List[str]:
        return pad_names(self._element.srcpads)

    def sink_names(self) -> List[str]:
        return pad_names(self._element.sinkpads)

    def pad(self, name: str) -> Optional[Any]:
        return self._element.get_static_pad(name)

    def connect_source_added(self, callback: Callable[[str], None]) -> int:
        return self._connect_source_signal("pad-added", callback)

    def connect_source_removed(self, callback: Callable[[str], None]) -> int:
        return self._connect_source_signal("pad-removed", callback)

    def _connect_source_signal(self, signal_name: str, callback: Callable[[str], None]) -> int:
        def _on_pad(_element: Any, pad: Any) -> None:
            if pad.get_direction() != Gst.PadDirection.SRC:
                return
            callback(pad.get_name())

        handler_id = self._element.connect(signal_name, _on_pad)
        with self._lock:
            self._counter += 1
            token = self._counter
            self._handlers[token] = handler_id
        return token

    def disconnect(self, token: int) -> None:
        with self._lock:
            handler_id = self._handlers.pop(token, None)
        if handler_id is None:
            return
        try:
            self._element.disconnect(handler_id)
        except Exception:  # pragma: no cover - defensive
            LOG.debug("Failed to disconnect pad handler", exc_info=True)
