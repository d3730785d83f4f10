"""
Headless observer of a running board.

Reads the shared state the same way any monitor surface must: one resource at
a time, each under its own lock. The only thing it may change is the
``running`` flag, and it may add TEST events.
"""

import logging
import os
from pathlib import Path
import threading
import time

import msgspec
import numpy as np

from msgboard.models import BoardStatus, EventKind, EventRecord, Post
from msgboard.state import ServerState

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0
STATUS_EVENTS = 20
PERCENTILES = [50.0, 90.0, 99.0]

REPORT_HEADER = (
    "timestamp,board_size,total_received,active_connections,next_client_id,"
    "requests,avg_dispatch_ms,p50_ms,p90_ms,p99_ms\n"
)

_STATUS_ENCODER = msgspec.json.Encoder()


def collect_status(state: ServerState, events: int = STATUS_EVENTS) -> BoardStatus:
    board = state.board
    registry = state.registry
    return BoardStatus(
        timestamp=time.time(),
        running=state.running.is_set(),
        board_size=board.size(),
        total_received=board.total_received(),
        active_connections=registry.active_count(),
        next_client_id=registry.next_client_id(),
        total_connections=registry.total_connections(),
        connections=registry.connection_statuses(),
        events=state.events.iterate_newest_first()[:events],
    )


def search_posts(state: ServerState, text: str) -> list[Post]:
    """Case-insensitive substring search over author, title and body."""
    needle = text.casefold()
    return [
        p
        for p in state.board.snapshot_filtered()
        if needle in p.author.casefold()
        or needle in p.title.casefold()
        or needle in p.body.casefold()
    ]


def request_shutdown(state: ServerState) -> None:
    state.running.clear()


def emit_test_event(state: ServerState, text: str) -> EventRecord:
    return state.events.log(EventKind.TEST, text)


def percentiles_ms(durations_s: list[float], ps: list[float] = PERCENTILES) -> dict[float, float]:
    if not durations_s:
        return {p: 0.0 for p in ps}

    arr = np.fromiter(durations_s, dtype=np.float64) * 1000.0
    vals = np.percentile(arr, ps, method="linear")
    return dict(zip(ps, vals.tolist()))


class Monitor:
    """Periodic summary: log line, optional CSV report row, optional JSON status."""

    def __init__(
        self,
        state: ServerState,
        *,
        interval: float = DEFAULT_INTERVAL,
        report_csv: str | os.PathLike | None = None,
        status_json: str | os.PathLike | None = None,
    ):
        self.state = state
        self.interval = interval
        self.report_csv = Path(report_csv) if report_csv else None
        self.status_json = Path(status_json) if status_json else None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, daemon=True, name="monitor")
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._safe_tick()  # final snapshot

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self._safe_tick()

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception as e:
            # Keep observing; a bad tick must not take the monitor down.
            logger.error(f"Monitor tick failed: {e!r}")

    def tick(self) -> BoardStatus:
        status = collect_status(self.state)
        durations = self.state.registry.drain_durations()
        avg_ms = (sum(durations) / len(durations) * 1000.0) if durations else 0.0
        pct = percentiles_ms(durations)
        p50, p90, p99 = pct[50.0], pct[90.0], pct[99.0]

        logger.info(
            f"[BOARD] posts={status.board_size}, received={status.total_received}, "
            f"active={status.active_connections}, next_id={status.next_client_id}, "
            f"requests={len(durations)}, avg_dispatch={avg_ms:.3f} ms, "
            f"p50={p50:.3f} ms, p90={p90:.3f} ms, p99={p99:.3f} ms"
        )

        if self.report_csv is not None:
            new = not self.report_csv.exists()
            with open(self.report_csv, "a", buffering=1) as fh:
                if new:
                    fh.write(REPORT_HEADER)
                fh.write(
                    f"{time.strftime('%Y-%m-%d %H:%M:%S')},"
                    f"{status.board_size},{status.total_received},"
                    f"{status.active_connections},{status.next_client_id},"
                    f"{len(durations)},{avg_ms:.3f},{p50:.3f},{p90:.3f},{p99:.3f}\n"
                )

        if self.status_json is not None:
            tmp = self.status_json.with_name(self.status_json.name + ".tmp")
            tmp.write_bytes(encode_status(status))
            os.replace(tmp, self.status_json)

        return status


def encode_status(status: BoardStatus) -> bytes:
    return _STATUS_ENCODER.encode(status)
