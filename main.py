from __future__ import annotations

import argparse
import logging
import signal
import sys
from types import FrameType

from msgboard.client import run_poster
from msgboard.persistence import DEFAULT_BOARD_FILE
from msgboard.server import DEFAULT_HOST, DEFAULT_PORT, run_server
from msgboard.state import ServerState


def register_shutdown_handler(state: ServerState) -> None:
    """Ask the server to wind down on SIGTERM / SIGINT."""

    def _stop(_signum: int, _frame: FrameType | None) -> None:
        state.running.clear()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)


def configure_logging(log_file: str | None, log_level: str) -> None:
    fmt = "%(asctime)s %(levelname)s %(filename)s:%(lineno)s %(name)s %(message)s"
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_file:
        logging.basicConfig(level=level, format=fmt, filename=log_file, force=True)
    else:
        logging.basicConfig(level=level, format=fmt, stream=sys.stdout, force=True)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Concurrent message board server")
    p.add_argument("--log-file", "-l")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    p.add_argument("--mode", choices=["server", "poster"], default="server")

    p.add_argument("--host", default=None, help="Bind address (server) or server host (poster)")
    p.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server TCP port")

    p.add_argument(
        "--board-file",
        nargs="?",
        const=DEFAULT_BOARD_FILE,
        help=f"Load/save the board (default file: {DEFAULT_BOARD_FILE})",
    )
    p.add_argument("--report-csv", help="Append monitor rows to this CSV file")
    p.add_argument("--status-json", help="Write the latest monitor status here")
    p.add_argument(
        "--monitor-interval",
        type=float,
        default=5.0,
        help="Seconds between monitor snapshots (0 disables the monitor)",
    )

    p.add_argument("--author", help="Fixed author for poster mode")
    p.add_argument("--count", type=int, default=0, help="Stop after N posts (poster mode)")
    rate = p.add_mutually_exclusive_group()
    rate.add_argument("--posts-per-minute", type=int, help="Average posts per minute (poster mode)")
    rate.add_argument("--posts-per-second", type=float, help="Average posts per second (poster mode)")

    args = p.parse_args(argv)

    # Normalize to posts_per_minute for poster mode
    if args.posts_per_minute is None and args.posts_per_second is None:
        args.posts_per_minute = 60
    elif args.posts_per_second is not None:
        args.posts_per_minute = int(args.posts_per_second * 60)

    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_file, args.log_level)
    log = logging.getLogger(__name__)

    if args.mode == "poster":
        host = args.host or "127.0.0.1"
        log.info("Posting to %s:%d", host, args.port)
        try:
            accepted = run_poster(
                host,
                args.port,
                args.posts_per_minute,
                author=args.author,
                count=args.count,
            )
        except KeyboardInterrupt:
            return 0
        log.info("Poster finished after %d post(s)", accepted)
        return 0

    host = args.host or DEFAULT_HOST
    state = ServerState()
    register_shutdown_handler(state)
    log.info("Starting message board on %s:%d", host, args.port)
    try:
        run_server(
            host,
            args.port,
            board_file=args.board_file,
            report_csv=args.report_csv,
            status_json=args.status_json,
            monitor_interval=args.monitor_interval,
            state=state,
        )
    except OSError as e:
        log.error("Server failed to start: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
