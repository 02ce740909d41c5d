"""
SSRC lifecycle coordination.

Two independent event streams have to meet before a remote participant can be
shown: the transport reports that an SSRC became active, and the announcer
delivers the ``PARM`` record that says how to decode it and who sent it.
Either can come first. :class:`SsrcLifecycleCoordinator` keeps the parameter
records (indexed by video and by audio SSRC), parks SSRCs that activate before
their record as orphans, and instructs the media pipeline to wire or unwire a
decode chain once both halves are known.

Per-SSRC states: UNKNOWN -> ORPHANED -> ACTIVE -> DEACTIVATED. An SSRC whose
record is already known when it activates skips ORPHANED.

Pipeline instructions are issued while the coordinator lock is held so that
wire/unwire for one SSRC can never be reordered between the transport thread
and the announcer thread. Pipelines must therefore not call back into the
coordinator synchronously from ``wire_decode_chain``/``unwire_decode_chain``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Callable, Dict, List, Optional, Protocol

LOG = logging.getLogger(__name__)

DEFAULT_ORPHAN_TTL = 30.0
DEFAULT_MAX_ORPHANS = 64
DEACTIVATED_HISTORY = 256

MonotonicCallable = Callable[[], float]


class SsrcType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def from_session(cls, session: int) -> "SsrcType":
        """
        rtpbin session 0 carries video, every other session audio.
        """

        return cls.VIDEO if int(session) == 0 else cls.AUDIO


class DeactivateReason(str, Enum):
    BYE = "bye"
    STOP = "stop"
    TIMEOUT = "timeout"


class SsrcState(str, Enum):
    UNKNOWN = "unknown"
    ORPHANED = "orphaned"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


@dataclass(frozen=True, slots=True)
class ParameterRecord:
    """
    How to decode one remote peer's outbound media.
    """

    source_address: str
    picture_parameters: str
    video_ssrc: int
    audio_ssrc: int

    def ssrc_for(self, ssrc_type: SsrcType) -> int:
        return self.video_ssrc if ssrc_type is SsrcType.VIDEO else self.audio_ssrc

    def to_dict(self) -> dict:
        return {
            "sourceAddress": self.source_address,
            "pictureParameters": self.picture_parameters,
            "videoSsrc": int(self.video_ssrc),
            "audioSsrc": int(self.audio_ssrc),
        }


@dataclass(slots=True)
class OrphanedSsrc:
    ssrc: int
    since: float


class MediaPipeline(Protocol):
    def wire_decode_chain(
        self, ssrc_type: SsrcType, ssrc: int, record: ParameterRecord, surface: object
    ) -> None:
        ...

    def unwire_decode_chain(self, ssrc_type: SsrcType, ssrc: int) -> None:
        ...


class SurfaceProvider(Protocol):
    def display_surface_for(self, address: str) -> Optional[object]:
        ...


class SsrcLifecycleCoordinator:
    """
    Correlates transport SSRC events with announced parameter records.

    Implements the announcer's parameter listener interface
    (:meth:`on_parameter_packet`) and is driven by the receiver pipeline
    through :meth:`on_ssrc_activate` / :meth:`on_ssrc_deactivate`.
    """

    def __init__(
        self,
        local_address: str,
        pipeline: MediaPipeline,
        surfaces: SurfaceProvider,
        *,
        orphan_ttl: float = DEFAULT_ORPHAN_TTL,
        max_orphans: int = DEFAULT_MAX_ORPHANS,
        monotonic: Optional[MonotonicCallable] = None,
    ) -> None:
        if max_orphans < 1:
            raise ValueError("max_orphans must be at least 1")
        self._local_address = local_address
        self._pipeline = pipeline
        self._surfaces = surfaces
        self._orphan_ttl = float(orphan_ttl)
        self._max_orphans = int(max_orphans)
        self._monotonic: MonotonicCallable = monotonic if monotonic is not None else time.monotonic

        self._lock = threading.RLock()
        self._records: Dict[SsrcType, Dict[int, ParameterRecord]] = {
            SsrcType.VIDEO: {},
            SsrcType.AUDIO: {},
        }
        self._orphans: Dict[SsrcType, List[OrphanedSsrc]] = {
            SsrcType.VIDEO: [],
            SsrcType.AUDIO: [],
        }
        self._active: Dict[int, SsrcType] = {}
        self._deactivated: "OrderedDict[int, Optional[DeactivateReason]]" = OrderedDict()

    # ------------------------------------------------------------------ transitions

    def on_parameter_packet(
        self, address: str, picture_parameters: str, video_ssrc: int, audio_ssrc: int
    ) -> None:
        if address == self._local_address:
            return

        with self._lock:
            if video_ssrc in self._records[SsrcType.VIDEO]:
                LOG.debug("Ignoring duplicate parameters for video ssrc %d.", video_ssrc)
                return

            record = ParameterRecord(
                source_address=address,
                picture_parameters=picture_parameters,
                video_ssrc=int(video_ssrc),
                audio_ssrc=int(audio_ssrc),
            )
            # SSRCs the new record keeps stay wired and are rewired below.
            carried: List[SsrcType] = []
            for previous in list(self._records[SsrcType.VIDEO].values()):
                if previous.source_address == address:
                    LOG.info(
                        "Parameters from %s supersede video ssrc %d with %d.",
                        address,
                        previous.video_ssrc,
                        video_ssrc,
                    )
                    keep = {
                        ssrc_type
                        for ssrc_type in SsrcType
                        if previous.ssrc_for(ssrc_type) == record.ssrc_for(ssrc_type)
                        and self._active.get(record.ssrc_for(ssrc_type)) is ssrc_type
                    }
                    self._drop_record_locked(previous, keep=keep)
                    carried.extend(keep)

            self._records[SsrcType.VIDEO][record.video_ssrc] = record
            self._records[SsrcType.AUDIO][record.audio_ssrc] = record
            LOG.info(
                "Parameters received from %s (video ssrc %d, audio ssrc %d).",
                address,
                record.video_ssrc,
                record.audio_ssrc,
            )

            self._prune_orphans_locked()
            for ssrc_type in SsrcType:
                ssrc = record.ssrc_for(ssrc_type)
                if ssrc_type in carried:
                    del self._active[ssrc]
                    if not self._activate_locked(ssrc_type, ssrc, record):
                        self._pipeline.unwire_decode_chain(ssrc_type, ssrc)
                elif self._remove_orphan_locked(ssrc_type, ssrc):
                    self._activate_locked(ssrc_type, ssrc, record)

    def on_ssrc_activate(self, ssrc_type: SsrcType, ssrc: int) -> SsrcState:
        with self._lock:
            self._prune_orphans_locked()
            if ssrc in self._active:
                return SsrcState.ACTIVE
            if self._is_orphan_locked(ssrc):
                return SsrcState.ORPHANED

            record = self._records[ssrc_type].get(ssrc)
            if record is None:
                self._add_orphan_locked(ssrc_type, ssrc)
                LOG.info("%s ssrc %d is active but has no parameters yet.", ssrc_type.value.capitalize(), ssrc)
                return SsrcState.ORPHANED
            if self._activate_locked(ssrc_type, ssrc, record):
                return SsrcState.ACTIVE
            return SsrcState.ORPHANED

    def on_ssrc_deactivate(
        self,
        ssrc_type: SsrcType,
        ssrc: int,
        reason: DeactivateReason = DeactivateReason.TIMEOUT,
    ) -> SsrcState:
        with self._lock:
            if ssrc in self._active:
                del self._active[ssrc]
                self._remember_deactivated_locked(ssrc, reason)
                self._pipeline.unwire_decode_chain(ssrc_type, ssrc)
                LOG.info("%s ssrc %d deactivated (%s).", ssrc_type.value.capitalize(), ssrc, reason.value)
                self._purge_if_idle_locked(ssrc_type, ssrc)
                return SsrcState.DEACTIVATED

            if self._remove_orphan_locked(ssrc_type, ssrc):
                LOG.debug("Orphaned %s ssrc %d went away (%s).", ssrc_type.value, ssrc, reason.value)
                return SsrcState.UNKNOWN

            LOG.debug("Ignoring deactivation of inactive %s ssrc %d.", ssrc_type.value, ssrc)
            return self._state_locked(ssrc)

    def reconcile(self) -> int:
        """
        Retry activation of orphans whose parameters are already known.

        Used after display surfaces change; returns the number of SSRCs that
        became active.
        """

        activated = 0
        with self._lock:
            self._prune_orphans_locked()
            for ssrc_type in SsrcType:
                for orphan in list(self._orphans[ssrc_type]):
                    record = self._records[ssrc_type].get(orphan.ssrc)
                    if record is None:
                        continue
                    self._orphans[ssrc_type].remove(orphan)
                    if self._activate_locked(ssrc_type, orphan.ssrc, record):
                        activated += 1
        return activated

    # ------------------------------------------------------------------ queries

    def state_of(self, ssrc: int) -> SsrcState:
        with self._lock:
            return self._state_locked(ssrc)

    def record_for(self, ssrc: int) -> Optional[ParameterRecord]:
        with self._lock:
            return self._records[SsrcType.VIDEO].get(ssrc) or self._records[SsrcType.AUDIO].get(ssrc)

    def records(self) -> List[ParameterRecord]:
        with self._lock:
            return list(self._records[SsrcType.VIDEO].values())

    def orphans(self, ssrc_type: SsrcType) -> List[int]:
        with self._lock:
            self._prune_orphans_locked()
            return [orphan.ssrc for orphan in self._orphans[ssrc_type]]

    def active(self) -> Dict[int, SsrcType]:
        with self._lock:
            return dict(self._active)

    def describe(self) -> Dict[str, object]:
        with self._lock:
            self._prune_orphans_locked()
            return {
                "localAddress": self._local_address,
                "records": [record.to_dict() for record in self._records[SsrcType.VIDEO].values()],
                "active": {str(ssrc): kind.value for ssrc, kind in self._active.items()},
                "orphans": {
                    kind.value: [orphan.ssrc for orphan in orphans]
                    for kind, orphans in self._orphans.items()
                },
                "deactivated": {
                    str(ssrc): reason.value if reason is not None else None
                    for ssrc, reason in self._deactivated.items()
                },
            }

    # ------------------------------------------------------------------ helpers

    def _state_locked(self, ssrc: int) -> SsrcState:
        if ssrc in self._active:
            return SsrcState.ACTIVE
        if self._is_orphan_locked(ssrc):
            return SsrcState.ORPHANED
        if ssrc in self._deactivated:
            return SsrcState.DEACTIVATED
        return SsrcState.UNKNOWN

    def _activate_locked(self, ssrc_type: SsrcType, ssrc: int, record: ParameterRecord) -> bool:
        surface = self._surfaces.display_surface_for(record.source_address)
        if surface is None:
            LOG.warning(
                "No display surface for %s; leaving %s ssrc %d orphaned.",
                record.source_address,
                ssrc_type.value,
                ssrc,
            )
            self._add_orphan_locked(ssrc_type, ssrc)
            return False

        self._active[ssrc] = ssrc_type
        self._deactivated.pop(ssrc, None)
        self._pipeline.wire_decode_chain(ssrc_type, ssrc, record, surface)
        LOG.info("%s ssrc %d from %s is active.", ssrc_type.value.capitalize(), ssrc, record.source_address)
        return True

    def _drop_record_locked(self, record: ParameterRecord, keep: AbstractSet[SsrcType] = frozenset()) -> None:
        for ssrc_type in SsrcType:
            ssrc = record.ssrc_for(ssrc_type)
            if self._records[ssrc_type].get(ssrc) is record:
                del self._records[ssrc_type][ssrc]
            if ssrc_type in keep:
                continue
            if self._active.get(ssrc) is ssrc_type:
                del self._active[ssrc]
                self._remember_deactivated_locked(ssrc, None)
                self._pipeline.unwire_decode_chain(ssrc_type, ssrc)

    def _purge_if_idle_locked(self, ssrc_type: SsrcType, ssrc: int) -> None:
        record = self._records[ssrc_type].get(ssrc)
        if record is None:
            return
        if record.video_ssrc in self._active or record.audio_ssrc in self._active:
            return
        self._drop_record_locked(record)
        LOG.debug("Purged parameters from %s; both ssrcs are inactive.", record.source_address)

    def _remember_deactivated_locked(self, ssrc: int, reason: Optional[DeactivateReason]) -> None:
        self._deactivated.pop(ssrc, None)
        self._deactivated[ssrc] = reason
        while len(self._deactivated) > DEACTIVATED_HISTORY:
            self._deactivated.popitem(last=False)

    def _is_orphan_locked(self, ssrc: int) -> bool:
        return any(orphan.ssrc == ssrc for orphans in self._orphans.values() for orphan in orphans)

    def _add_orphan_locked(self, ssrc_type: SsrcType, ssrc: int) -> None:
        orphans = self._orphans[ssrc_type]
        if any(orphan.ssrc == ssrc for orphan in orphans):
            return
        while len(orphans) >= self._max_orphans:
            evicted = orphans.pop(0)
            LOG.warning("Evicting orphaned %s ssrc %d; orphan list is full.", ssrc_type.value, evicted.ssrc)
        orphans.append(OrphanedSsrc(ssrc=ssrc, since=self._monotonic()))

    def _remove_orphan_locked(self, ssrc_type: SsrcType, ssrc: int) -> bool:
        orphans = self._orphans[ssrc_type]
        for index, orphan in enumerate(orphans):
            if orphan.ssrc == ssrc:
                del orphans[index]
                return True
        return False

    def _prune_orphans_locked(self) -> None:
        if self._orphan_ttl <= 0:
            return
        now = self._monotonic()
        for ssrc_type, orphans in self._orphans.items():
            expired = [orphan for orphan in orphans if now - orphan.since > self._orphan_ttl]
            for orphan in expired:
                orphans.remove(orphan)
                LOG.info(
                    "Dropping orphaned %s ssrc %d; no parameters after %.0fs.",
                    ssrc_type.value,
                    orphan.ssrc,
                    self._orphan_ttl,
                )


__all__ = [
    "SsrcType",
    "SsrcState",
    "DeactivateReason",
    "ParameterRecord",
    "MediaPipeline",
    "SurfaceProvider",
    "SsrcLifecycleCoordinator",
]
