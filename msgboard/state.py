"""
Shared, thread-safe server state.

Three resources, each behind its own lock: the board, the event log, and the
client registry. No code path holds two of these locks at once, and no lock is
held while doing socket I/O. Readers get copies taken under the lock.
"""

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
import logging
import socket
import threading
import time
from typing import Deque

from msgboard.models import (
    ConnectionStatus,
    EventKind,
    EventRecord,
    Post,
    PostDraft,
)

logger: logging.Logger = logging.getLogger(__name__)
event_logger: logging.Logger = logging.getLogger("msgboard.events")

EVENT_LOG_CAPACITY = 100
DURATION_SAMPLES = 10_000

_EVENT_LEVELS = {
    EventKind.ERROR: logging.ERROR,
    EventKind.WARNING: logging.WARNING,
}


class BoardError(Exception):
    pass


class EmptyBatchError(BoardError):
    pass


class BoardStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._posts: list[Post] = []
        self._total_received = 0

    def append_batch(self, drafts: Sequence[PostDraft], client_id: int) -> int:
        """Append a whole batch, tagged with ``client_id``. All or nothing."""
        if not drafts:
            raise EmptyBatchError("No posts to add")
        posts = [
            Post(author=d.author, title=d.title, body=d.body, client_id=client_id)
            for d in drafts
        ]
        with self._lock:
            self._posts.extend(posts)
            self._total_received += len(posts)
        return len(posts)

    def snapshot_filtered(self, author_filter: str = "", title_filter: str = "") -> list[Post]:
        """Posts in insertion order; an empty filter matches everything."""
        with self._lock:
            return [
                p
                for p in self._posts
                if (not author_filter or p.author == author_filter)
                and (not title_filter or p.title == title_filter)
            ]

    def replace(self, posts: Iterable[Post]) -> None:
        """Install a loaded board. ``total_received`` is left alone."""
        posts = list(posts)
        with self._lock:
            self._posts = posts

    def size(self) -> int:
        with self._lock:
            return len(self._posts)

    def total_received(self) -> int:
        with self._lock:
            return self._total_received


class EventLog:
    def __init__(self, capacity: int = EVENT_LOG_CAPACITY) -> None:
        self._lock = threading.Lock()
        self._records: Deque[EventRecord] = deque()
        self.capacity = capacity

    def log(self, kind: EventKind, text: str, raw: str | None = None) -> EventRecord:
        record = EventRecord(
            timestamp=time.strftime("%H:%M:%S"), kind=kind, text=text, raw=raw
        )
        with self._lock:
            self._records.append(record)
            while len(self._records) > self.capacity:
                self._records.popleft()

        event_logger.log(_EVENT_LEVELS.get(kind, logging.INFO), "[%s] %s", kind.value, text)
        if raw is not None:
            event_logger.debug("[%s] raw=%r", kind.value, raw)
        return record

    def iterate_newest_first(self) -> list[EventRecord]:
        with self._lock:
            return list(reversed(self._records))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass(slots=True, eq=False)
class ClientHandle:
    """One registered connection. The registry hands out copies of the set of
    handles; writes from different threads serialize on ``send_lock``."""

    client_id: int
    conn: socket.socket
    peer: str
    connected_at: float = field(default_factory=time.time)
    requests: int = 0
    last_command: str | None = None
    send_lock: threading.Lock = field(default_factory=threading.Lock)

    def send(self, data: bytes) -> None:
        # sendall keeps writing until every byte is out and retries EINTR.
        with self.send_lock:
            self.conn.sendall(data)

    def shutdown(self) -> None:
        """Unblock the session's pending read from outside its thread."""
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("shutdown of client #%d: %r", self.client_id, e)


class ClientRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[int, ClientHandle] = {}
        self._next_client_id = 1
        self._total_connections = 0
        self._durations: Deque[float] = deque(maxlen=DURATION_SAMPLES)

    def register(self, conn: socket.socket, peer: str = "") -> ClientHandle:
        with self._lock:
            client_id = self._next_client_id
            self._next_client_id += 1
            handle = ClientHandle(client_id=client_id, conn=conn, peer=peer)
            self._handles[client_id] = handle
            self._total_connections += 1
        return handle

    def unregister(self, client_id: int) -> None:
        with self._lock:
            self._handles.pop(client_id, None)

    def snapshot(self) -> list[ClientHandle]:
        with self._lock:
            return list(self._handles.values())

    def record_dispatch(self, client_id: int, command: str, seconds: float) -> None:
        with self._lock:
            handle = self._handles.get(client_id)
            if handle is not None:
                handle.requests += 1
                handle.last_command = command
            self._durations.append(seconds)

    def drain_durations(self) -> list[float]:
        with self._lock:
            out = list(self._durations)
            self._durations.clear()
        return out

    def connection_statuses(self) -> list[ConnectionStatus]:
        with self._lock:
            return [
                ConnectionStatus(
                    client_id=h.client_id,
                    peer=h.peer,
                    connected_at=h.connected_at,
                    requests=h.requests,
                    last_command=h.last_command,
                )
                for h in self._handles.values()
            ]

    def active_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def next_client_id(self) -> int:
        with self._lock:
            return self._next_client_id

    def total_connections(self) -> int:
        with self._lock:
            return self._total_connections


@dataclass(slots=True)
class ServerState:
    board: BoardStore = field(default_factory=BoardStore)
    events: EventLog = field(default_factory=EventLog)
    registry: ClientRegistry = field(default_factory=ClientRegistry)
    running: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        self.running.set()
