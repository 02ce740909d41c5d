"""
Periodic UDP announcer for call rosters and sender parameters.

Delivery is gossip-style: whatever ``CALL`` and ``PARM`` messages are
currently configured get re-sent to every destination once per interval, so a
lost datagram is simply repaired by the next round. Inbound datagrams are
decoded on the same background thread and handed to at most one listener per
message type.
"""

from __future__ import annotations

import logging
import select
import socket
import threading
import time
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from . import wire

LOG = logging.getLogger(__name__)

DEFAULT_PORT = 9999
DEFAULT_INTERVAL = 2.0
# Largest UDP payload; recvfrom() discards whatever does not fit the buffer.
MAX_DATAGRAM = 65535
# Upper bound on a single select() so stop() never waits a full interval.
POLL_INTERVAL = 0.1

MonotonicCallable = Callable[[], float]
Destination = Tuple[str, int]


class CallPacketListener(Protocol):
    def on_call_packet(self, addresses: List[str]) -> None:
        ...


class ParameterPacketListener(Protocol):
    def on_parameter_packet(
        self, address: str, picture_parameters: str, video_ssrc: int, audio_ssrc: int
    ) -> None:
        ...


class Announcer:
    """
    Owns the signalling socket and its background worker.

    The originator calls :meth:`configure_participant_list`, which both
    stores the outbound ``CALL`` and makes the roster the destination set.
    Everyone else calls :meth:`set_participant_destinations`. Every peer
    calls :meth:`send_parameters` once its encoder reports parameters.
    """

    def __init__(
        self,
        *,
        port: int = DEFAULT_PORT,
        bind_address: str = "0.0.0.0",
        destination_port: Optional[int] = None,
        interval: float = DEFAULT_INTERVAL,
        monotonic: Optional[MonotonicCallable] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._port = int(port)
        self._bind_address = bind_address
        self._destination_port = int(destination_port) if destination_port is not None else None
        self._interval = float(interval)
        self._monotonic: MonotonicCallable = monotonic if monotonic is not None else time.monotonic

        self._lock = threading.RLock()
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

        self._call_packet: Optional[bytes] = None
        self._parameter_packet: Optional[bytes] = None
        self._destinations: Optional[List[Destination]] = None
        self._next_transmit = self._monotonic()

        self._call_listener: Optional[CallPacketListener] = None
        self._parameter_listener: Optional[ParameterPacketListener] = None

    # ------------------------------------------------------------------ lifecycle

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def local_port(self) -> int:
        """
        Port the socket is bound to; useful when constructed with ``port=0``.
        """

        sock = self._socket
        if sock is None:
            return self._port
        return sock.getsockname()[1]

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """
        Bind the socket and spawn the worker thread.

        Socket creation or bind failures propagate as :class:`OSError`; they
        are a startup precondition, not a runtime condition.
        """

        if self.is_running:
            return
        sock = self._create_socket()
        with self._lock:
            self._socket = sock
            self._next_transmit = self._monotonic()
        self._stop.clear()
        thread = threading.Thread(target=self._run, name="confcall-announcer", daemon=True)
        self._thread = thread
        thread.start()
        LOG.info("Announcer listening on %s:%d", self._bind_address, self.local_port)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread and thread.is_alive() and threading.current_thread() is not thread:
            thread.join(timeout=max(1.0, 5 * POLL_INTERVAL))
        self._thread = None
        with self._lock:
            sock = self._socket
            self._socket = None
        if sock is not None:
            sock.close()
            LOG.info("Announcer stopped")

    def __enter__(self) -> "Announcer":
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.stop()

    # ------------------------------------------------------------------ configuration

    def configure_participant_list(self, addresses: Sequence[str]) -> None:
        packet = wire.encode_call(addresses)
        destinations = self._resolve_destinations(addresses)
        with self._lock:
            self._call_packet = packet
            self._destinations = destinations
        LOG.info("Participant list packet of %d bytes configured for %d destinations.", len(packet), len(destinations))

    def set_participant_destinations(self, addresses: Sequence[str]) -> None:
        destinations = self._resolve_destinations(addresses)
        with self._lock:
            self._destinations = destinations
        LOG.info("Announcer destinations set to %s", [address for address, _ in destinations])

    def send_parameters(self, picture_parameters: str, video_ssrc: int, audio_ssrc: int) -> None:
        packet = wire.encode_parameters(picture_parameters, video_ssrc, audio_ssrc)
        with self._lock:
            self._parameter_packet = packet
        LOG.info(
            "Parameter packet of %d bytes configured (video ssrc %d, audio ssrc %d).",
            len(packet),
            video_ssrc,
            audio_ssrc,
        )

    def set_call_packet_listener(self, listener: Optional[CallPacketListener]) -> None:
        with self._lock:
            self._call_listener = listener

    def clear_call_packet_listener(self) -> None:
        self.set_call_packet_listener(None)

    def set_parameter_packet_listener(self, listener: Optional[ParameterPacketListener]) -> None:
        with self._lock:
            self._parameter_listener = listener

    def clear_parameter_packet_listener(self) -> None:
        self.set_parameter_packet_listener(None)

    def destinations(self) -> List[Destination]:
        with self._lock:
            return list(self._destinations or [])

    # ------------------------------------------------------------------ worker

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._bind_address, self._port))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    def _resolve_destinations(self, addresses: Sequence[str]) -> List[Destination]:
        port = self._destination_port if self._destination_port is not None else self._port
        destinations: List[Destination] = []
        for address in addresses:
            try:
                socket.inet_pton(socket.AF_INET, address)
            except OSError:
                raise ValueError(f"'{address}' is not an IPv4 address") from None
            destinations.append((address, port))
        return destinations

    def _run(self) -> None:
        while not self._stop.is_set():
            sock = self._socket
            if sock is None:
                return
            with self._lock:
                delay = self._next_transmit - self._monotonic()
            timeout = min(max(0.0, delay), POLL_INTERVAL)
            try:
                readable, _, _ = select.select([sock], [], [], timeout)
            except (OSError, ValueError):
                # Socket closed underneath us during stop().
                return

            if readable:
                self._drain(sock)

            self._tick()

    def _tick(self) -> None:
        """
        Transmit if the deadline has passed, then move it back into the future.
        """

        with self._lock:
            now = self._monotonic()
            if self._destinations is not None and now >= self._next_transmit:
                self._transmit_locked()
            while self._next_transmit <= now:
                self._next_transmit += self._interval

    def _transmit_locked(self) -> None:
        sock = self._socket
        if sock is None or not self._destinations:
            return
        for packet in (self._call_packet, self._parameter_packet):
            if packet is None:
                continue
            LOG.debug("Sending %r packet to %d destinations.", packet[:4], len(self._destinations))
            for destination in self._destinations:
                try:
                    sock.sendto(packet, destination)
                except OSError as exc:
                    # Would-block and friends; the next interval retries.
                    LOG.debug("Send to %s:%d failed: %s", destination[0], destination[1], exc)

    def _drain(self, sock: socket.socket) -> None:
        while True:
            try:
                datagram, sender = sock.recvfrom(MAX_DATAGRAM)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as exc:
                LOG.debug("Receive failed: %s", exc)
                return
            self.handle_datagram(datagram, sender[0])

    def handle_datagram(self, datagram: bytes, sender_address: str) -> None:
        """
        Decode one datagram and dispatch it to the matching listener.
        """

        try:
            message = wire.decode(datagram)
        except wire.WireError as exc:
            LOG.debug("Dropping datagram from %s: %s", sender_address, exc)
            return

        with self._lock:
            call_listener = self._call_listener
            parameter_listener = self._parameter_listener

        try:
            if isinstance(message, wire.CallMessage):
                if call_listener is None:
                    return
                call_listener.on_call_packet(list(message.addresses))
            else:
                if parameter_listener is None:
                    return
                parameter_listener.on_parameter_packet(
                    sender_address,
                    message.picture_parameters,
                    message.video_ssrc,
                    message.audio_ssrc,
                )
        except Exception:  # pragma: no cover - listener failures should not kill the worker
            LOG.exception("Announcement listener failed for datagram from %s.", sender_address)


__all__ = [
    "Announcer",
    "CallPacketListener",
    "ParameterPacketListener",
    "DEFAULT_PORT",
    "DEFAULT_INTERVAL",
]
