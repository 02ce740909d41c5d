"""Print conference announcements seen on the signalling port.

Handy when checking that peers on a LAN can hear each other before starting
media.

Examples
--------
Listen passively and print every CALL/PARM datagram::

    python scripts/announce_probe.py

Also announce a roster and fake parameters to two peers::

    python scripts/announce_probe.py --call 10.0.0.2 10.0.0.3 \
        --parameters Z0LAHtkA 1111 2222

Press Ctrl+C to stop.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import Iterable, List

from confcall.protocol.announcer import DEFAULT_INTERVAL, DEFAULT_PORT, Announcer
from confcall.utils.logging import configure_logging


class PrintingListener:
    def on_call_packet(self, addresses: List[str]) -> None:
        print(f"CALL {' '.join(addresses) or '(empty)'}", flush=True)

    def on_parameter_packet(self, address: str, picture_parameters: str, video_ssrc: int, audio_ssrc: int) -> None:
        print(f"PARM from {address}: video={video_ssrc} audio={audio_ssrc} sprop={picture_parameters}", flush=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="confcall announcement probe")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="signalling port")
    parser.add_argument("--interval", type=float, default=DEFAULT_INTERVAL, help="seconds between announcements")
    parser.add_argument("--call", nargs="+", default=[], metavar="ADDRESS", help="roster to announce")
    parser.add_argument(
        "--parameters",
        nargs=3,
        metavar=("SPROP", "VIDEO_SSRC", "AUDIO_SSRC"),
        help="parameters to announce",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Optional duration in seconds; 0 means run until interrupted.",
    )
    parser.add_argument("--log-level", default="warning", help="logging level")
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    listener = PrintingListener()
    announcer = Announcer(port=args.port, interval=args.interval)
    announcer.set_call_packet_listener(listener)
    announcer.set_parameter_packet_listener(listener)
    if args.call:
        announcer.configure_participant_list(args.call)
    if args.parameters:
        sprop, video_ssrc, audio_ssrc = args.parameters
        announcer.send_parameters(sprop, int(video_ssrc), int(audio_ssrc))

    stop = False

    def _handle_signal(signum: int, _frame) -> None:
        nonlocal stop
        stop = True

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    announcer.start()
    started = time.monotonic()
    try:
        while not stop:
            if args.duration and time.monotonic() - started >= args.duration:
                break
            time.sleep(0.1)
    finally:
        announcer.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
