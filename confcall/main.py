"""
Command line entrypoint.

Either originate a call (``--start Bob Carol``) or wait for an invitation
(``--join``), then run media until interrupted. ``--api`` additionally serves
the status API with uvicorn and ``--trace`` adds rtpbin latency figures to it.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .api.server import create_app
from .config import CallSettings, SettingsError, load_settings
from .directory import DirectoryError, load_directory
from .rtp.tracer import LatencyTracer
from .session import ConferenceSession
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(session: ConferenceSession, settings: CallSettings) -> None:
    """
    Run the status API until a signal asks the server to exit.
    """

    import uvicorn

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Status API starting")
        try:
            yield
        finally:
            LOG.info("Status API shutting down")

    app = create_app(session, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def wait_for_signal() -> None:
    stop_event = threading.Event()

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, leaving call...", signum)
        stop_event.set()

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)
    while not stop_event.wait(0.5):
        pass


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Peer-to-peer video conference")
    parser.add_argument("--directory", default="directory.json", help="participant directory file")
    parser.add_argument("--profile", default="default", help="call profile to load")
    parser.add_argument("--profiles-file", default=None, help="alternative profiles.yaml")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--start", nargs="+", metavar="NAME", help="invite these participants")
    mode.add_argument("--join", action="store_true", help="wait for an invitation")
    mode.add_argument("--list", action="store_true", help="list invitable participants and exit")
    parser.add_argument("--timeout", type=float, default=None, help="seconds to wait for an invitation")
    parser.add_argument("--api", action="store_true", help="serve the status API")
    parser.add_argument("--trace", action="store_true", help="measure per-pad latency through rtpbin")
    parser.add_argument("--log-level", default="info", help="logging level")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.profile, args.profiles_file)
        directory = load_directory(args.directory)
    except (SettingsError, DirectoryError) as exc:
        LOG.error("%s", exc)
        return 2

    if args.list:
        for entry in directory.invitable():
            print(f"{entry.name}\t{entry.address}")
        return 0

    session = ConferenceSession(directory, settings, tracer=LatencyTracer() if args.trace else None)
    session.open()
    try:
        if args.start:
            session.start_call(args.start)
        else:
            LOG.info("Waiting for an invitation on port %d", session.announcer.local_port)
            session.join_call(session.wait_for_invitation(args.timeout))
        session.start_media()

        if args.api:
            asyncio.run(serve(session, settings))
        else:
            wait_for_signal()
    except DirectoryError as exc:
        LOG.error("%s", exc)
        return 2
    except TimeoutError:
        LOG.error("No invitation received within %s seconds", args.timeout)
        return 1
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(run())
