"""
A participant's view of one call.

:class:`ConferenceSession` owns the roster and wires the announcer, the
coordinator and the media pipelines together. It is also the display-surface
provider: every remote roster member gets a surface, either one assigned with
:meth:`ConferenceSession.assign_surface` or, by default, a window labelled
with the participant's name.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from .config import CallSettings
from .directory import Directory, DirectoryError
from .protocol.announcer import Announcer
from .rtp.coordinator import MonotonicCallable, SsrcLifecycleCoordinator
from .rtp.receiver import ReceiverPipeline
from .rtp.sender import SenderPipeline
from .rtp.tracer import LatencyTracer

LOG = logging.getLogger(__name__)

PORTS_PER_PARTICIPANT = 4


class ConferenceSession:
    def __init__(
        self,
        directory: Directory,
        settings: Optional[CallSettings] = None,
        *,
        announcer: Optional[Announcer] = None,
        receiver: Optional[ReceiverPipeline] = None,
        sender: Optional[SenderPipeline] = None,
        monotonic: Optional[MonotonicCallable] = None,
        tracer: Optional[LatencyTracer] = None,
    ) -> None:
        self._directory = directory
        self._tracer = tracer
        self._settings = settings or CallSettings()
        self._lock = threading.RLock()
        self._roster: List[str] = []
        self._surfaces: Dict[str, object] = {}
        self._invitation = threading.Event()
        self._invited: List[str] = []
        self._media_started = False

        self._announcer = announcer or Announcer(
            port=self._settings.announce_port,
            interval=self._settings.announce_interval,
        )
        self._receiver = receiver or ReceiverPipeline(latency_ms=self._settings.rtp_latency_ms, tracer=tracer)
        self._sender = sender or SenderPipeline(
            self.on_new_parameters,
            video_bitrate=self._settings.video_bitrate,
            latency_ms=self._settings.rtp_latency_ms,
            tracer=tracer,
        )
        self._coordinator = SsrcLifecycleCoordinator(
            directory.me,
            self._receiver,
            self,
            orphan_ttl=self._settings.orphan_ttl,
            max_orphans=self._settings.max_orphans,
            monotonic=monotonic,
        )
        self._receiver.set_event_sink(self._coordinator)

    # ------------------------------------------------------------------ accessors

    @property
    def me(self) -> str:
        return self._directory.me

    @property
    def directory(self) -> Directory:
        return self._directory

    @property
    def announcer(self) -> Announcer:
        return self._announcer

    @property
    def coordinator(self) -> SsrcLifecycleCoordinator:
        return self._coordinator

    @property
    def receiver(self) -> ReceiverPipeline:
        return self._receiver

    @property
    def sender(self) -> SenderPipeline:
        return self._sender

    @property
    def tracer(self) -> Optional[LatencyTracer]:
        return self._tracer

    @property
    def roster(self) -> List[str]:
        with self._lock:
            return list(self._roster)

    @property
    def remote_participants(self) -> List[str]:
        with self._lock:
            return [address for address in self._roster if address != self.me]

    def media_port_for(self, address: str) -> Optional[int]:
        """
        Base media port a participant transmits to: ``base + 4 * roster index``.
        """

        with self._lock:
            try:
                index = self._roster.index(address)
            except ValueError:
                return None
        return self._settings.media_base_port + PORTS_PER_PARTICIPANT * index

    # ------------------------------------------------------------------ lifecycle

    def open(self) -> None:
        self._announcer.start()

    def close(self) -> None:
        self._announcer.clear_parameter_packet_listener()
        self._announcer.clear_call_packet_listener()
        self._sender.stop()
        self._receiver.stop()
        self._announcer.stop()
        with self._lock:
            self._media_started = False
        LOG.info("Conference session closed")

    def __enter__(self) -> "ConferenceSession":
        self.open()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------ call setup

    def start_call(self, invitee_names: Sequence[str]) -> List[str]:
        """
        Originate a call to ``invitee_names``; returns the roster addresses.

        The originator is appended last, after the invitees.
        """

        roster: List[str] = []
        for name in invitee_names:
            address = self._directory.lookup_address(name)
            if address is None:
                raise DirectoryError(f"Unknown participant '{name}'")
            if address != self.me and address not in roster:
                roster.append(address)
        roster.append(self.me)

        with self._lock:
            self._roster = roster
        self._announcer.configure_participant_list(roster)
        LOG.info("Calling %s", ", ".join(self._label(address) for address in roster[:-1]))
        return list(roster)

    def wait_for_invitation(self, timeout: Optional[float] = None) -> List[str]:
        """
        Block until a ``CALL`` arrives; returns the addresses it lists.

        Only the first invitation is taken. Raises :class:`TimeoutError` when
        ``timeout`` elapses first.
        """

        with self._lock:
            self._invited = []
            self._invitation.clear()
        self._announcer.set_call_packet_listener(self)
        try:
            if not self._invitation.wait(timeout):
                raise TimeoutError("No invitation received")
        finally:
            self._announcer.clear_call_packet_listener()
        with self._lock:
            return list(self._invited)

    def on_call_packet(self, addresses: List[str]) -> None:
        with self._lock:
            if self._invitation.is_set():
                return
            self._invited = list(addresses)
            self._invitation.set()
        self._announcer.clear_call_packet_listener()
        LOG.info("Invitation received for %s", addresses)

    def join_call(self, addresses: Sequence[str]) -> List[str]:
        """
        Join a call whose roster is ``addresses``.

        Addresses missing from the directory are dropped; order is preserved.
        """

        roster: List[str] = []
        for address in addresses:
            if self._directory.lookup_name(address) is None:
                LOG.warning("Ignoring unknown participant %s", address)
                continue
            if address not in roster:
                roster.append(address)

        with self._lock:
            self._roster = roster
        self._announcer.set_participant_destinations(roster)
        LOG.info("Joined call with %d participants", len(roster))
        return list(roster)

    def start_media(self) -> None:
        """
        Start receiving from and sending to every remote participant.
        """

        remote = self.remote_participants
        own_port = self.media_port_for(self.me)
        if own_port is None:
            raise RuntimeError("Cannot start media before a call is started or joined.")

        self._receiver.set_listen_ports([self.media_port_for(address) for address in remote])
        for address in remote:
            self._sender.add_destination(address, own_port)
        self._announcer.set_parameter_packet_listener(self._coordinator)
        self._receiver.start()
        self._sender.start()
        with self._lock:
            self._media_started = True

    # ------------------------------------------------------------------ collaborators

    def on_new_parameters(self, picture_parameters: str, video_ssrc: int, audio_ssrc: int) -> None:
        self._announcer.send_parameters(picture_parameters, video_ssrc, audio_ssrc)

    def assign_surface(self, address: str, handle: object) -> None:
        """
        Route ``address``'s video to ``handle`` (e.g. a native window id).
        """

        with self._lock:
            self._surfaces[address] = handle
        if address == self.me:
            self._sender.set_preview_surface(handle)
            return
        # orphans waiting on a surface can be wired now
        self._coordinator.reconcile()

    def display_surface_for(self, address: str) -> Optional[object]:
        with self._lock:
            if address not in self._roster:
                return None
            surface = self._surfaces.get(address)
        if surface is not None:
            return surface
        return self._label(address)

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            roster = list(self._roster)
            surfaces = dict(self._surfaces)
            media_started = self._media_started
        return {
            "me": self.me,
            "mediaStarted": media_started,
            "roster": [
                {
                    "name": self._directory.lookup_name(address),
                    "address": address,
                    "mediaPort": self.media_port_for(address),
                    "surface": None if address not in surfaces else str(surfaces[address]),
                    "local": address == self.me,
                }
                for address in roster
            ],
            "coordinator": self._coordinator.describe(),
            "receiver": self._receiver.describe(),
            "sender": self._sender.describe(),
            "latency": None if self._tracer is None else self._tracer.describe(),
        }

    def _label(self, address: str) -> str:
        return self._directory.lookup_name(address) or address


__all__ = ["ConferenceSession", "PORTS_PER_PARTICIPANT"]
