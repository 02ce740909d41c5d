"""
Pair the source and sink sub-endpoints of a multiplexed RTP session.

Sources on ``rtpbin`` appear asynchronously ("sometimes" pads): a remote peer
that restarts mid-call makes the transport mint a fresh
``recv_rtp_src_<n>_<ssrc>_<pt>`` at an arbitrary time. :class:`SessionPairing`
pairs whatever exists when it is attached and then keeps pairing new sources
as they are announced.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from .naming import is_known_source, sink_name_for_source

LOG = logging.getLogger(__name__)


class SubEndpointSet(Protocol):
    """
    What the pairing needs from a session object.
    """

    def source_names(self) -> List[str]:
        ...

    def sink_names(self) -> List[str]:
        ...

    def connect_source_added(self, callback: Callable[[str], None]) -> int:
        ...

    def connect_source_removed(self, callback: Callable[[str], None]) -> int:
        ...

    def disconnect(self, token: int) -> None:
        ...


@dataclass(frozen=True, slots=True)
class SessionPairEntry:
    """
    ``send_sub_endpoint`` is where data enters the session (the sink pad),
    ``receive_sub_endpoint`` is where it leaves (the source pad).
    """

    send_sub_endpoint: str
    receive_sub_endpoint: str


PairObserver = Callable[[SessionPairEntry], None]


class SessionPairing:
    """
    ``on_pair`` fires once per source while it exists; when the transport
    removes a source, ``on_unpair`` fires and a later source of the same
    name is paired again.
    """

    def __init__(
        self,
        endpoints: SubEndpointSet,
        on_pair: Optional[PairObserver] = None,
        on_unpair: Optional[PairObserver] = None,
    ) -> None:
        self._endpoints = endpoints
        self._on_pair = on_pair
        self._on_unpair = on_unpair
        self._lock = threading.RLock()
        self._pairs: Dict[str, SessionPairEntry] = {}
        self._token: Optional[int] = None
        self._removed_token: Optional[int] = None

    @property
    def pairs(self) -> List[SessionPairEntry]:
        with self._lock:
            return list(self._pairs.values())

    @property
    def is_attached(self) -> bool:
        return self._token is not None

    def pair(self, source_name: str) -> Optional[SessionPairEntry]:
        """
        Resolve the sink for ``source_name``; ``None`` when there is none yet.
        """

        sink_name = sink_name_for_source(source_name)
        if sink_name is None:
            if not is_known_source(source_name):
                LOG.warning(
                    "Unexpected src pad name '%s' in rtpbin; could not find corresponding sink.",
                    source_name,
                )
            return None
        if sink_name not in self._endpoints.sink_names():
            LOG.debug("Sink '%s' for '%s' does not exist yet.", sink_name, source_name)
            return None
        return SessionPairEntry(send_sub_endpoint=sink_name, receive_sub_endpoint=source_name)

    def attach(self) -> List[SessionPairEntry]:
        """
        Pair every existing source and watch for new ones.

        Returns the pairs created by the eager pass.
        """

        with self._lock:
            if self._token is not None:
                return []
            self._token = self._endpoints.connect_source_added(self._on_source_added)
            self._removed_token = self._endpoints.connect_source_removed(self._on_source_removed)
            existing = self._endpoints.source_names()
            if not existing:
                LOG.debug("No source sub-endpoints yet; deferring pairing until they appear.")
            created = [entry for entry in map(self._record, existing) if entry is not None]
        for entry in created:
            self._notify(entry, self._on_pair)
        return created

    def detach(self) -> None:
        with self._lock:
            tokens = (self._token, self._removed_token)
            self._token = None
            self._removed_token = None
        for token in tokens:
            if token is not None:
                self._endpoints.disconnect(token)

    # ------------------------------------------------------------------ helpers

    def _record(self, source_name: str) -> Optional[SessionPairEntry]:
        if source_name in self._pairs:
            return None
        entry = self.pair(source_name)
        if entry is not None:
            self._pairs[source_name] = entry
            LOG.debug("Paired %s -> %s", entry.send_sub_endpoint, entry.receive_sub_endpoint)
        return entry

    def _on_source_added(self, source_name: str) -> None:
        with self._lock:
            if self._token is None:
                return
            entry = self._record(source_name)
        if entry is not None:
            self._notify(entry, self._on_pair)

    def _on_source_removed(self, source_name: str) -> None:
        with self._lock:
            if self._token is None:
                return
            entry = self._pairs.pop(source_name, None)
        if entry is not None:
            LOG.debug("Unpaired %s -> %s", entry.send_sub_endpoint, entry.receive_sub_endpoint)
            self._notify(entry, self._on_unpair)

    def _notify(self, entry: SessionPairEntry, observer: Optional[PairObserver]) -> None:
        if observer is None:
            return
        try:
            observer(entry)
        except Exception:  # pragma: no cover - observer failures should not break pairing
            LOG.exception("Pair observer failed for %s.", entry.receive_sub_endpoint)


__all__ = ["SubEndpointSet", "SessionPairEntry", "SessionPairing"]
