from enum import Enum

import msgspec


class EventKind(str, Enum):
    CONNECT = "CONNECT"
    DISCONNECT = "DISCONNECT"
    POST = "POST"
    POST_ERROR = "POST_ERROR"
    GET_BOARD = "GET_BOARD"
    QUIT = "QUIT"
    ERROR = "ERROR"
    WARNING = "WARNING"
    SERVER = "SERVER"
    TEST = "TEST"


class ParseErrorKind(str, Enum):
    EMPTY = "EMPTY"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    BAD_POST_SHAPE = "BAD_POST_SHAPE"
    EMPTY_BODY = "EMPTY_BODY"
    TOO_LARGE = "TOO_LARGE"


class PostDraft(msgspec.Struct, frozen=True):
    author: str
    title: str
    body: str


class Post(msgspec.Struct, frozen=True):
    author: str
    title: str
    body: str
    client_id: int


class EventRecord(msgspec.Struct, frozen=True):
    timestamp: str  # HH:MM:SS wall clock
    kind: EventKind
    text: str
    raw: str | None = None


# ---------- parse outcomes ----------


class GetBoardRequest(msgspec.Struct, frozen=True, tag=True):
    author_filter: str = ""
    title_filter: str = ""


class PostRequest(msgspec.Struct, frozen=True, tag=True):
    posts: list[PostDraft]


class QuitRequest(msgspec.Struct, frozen=True, tag=True):
    pass


class ParseFailure(msgspec.Struct, frozen=True, tag=True):
    kind: ParseErrorKind
    detail: str
    token: str = ""


Request = GetBoardRequest | PostRequest | QuitRequest
ParseOutcome = Request | ParseFailure


class Response(msgspec.Struct, frozen=True):
    """A decoded server transmission.

    ``posts`` is only populated for ``GET_BOARD``; every other token keeps its
    raw field list in ``fields``.
    """

    token: str
    fields: list[str] = []
    posts: list[PostDraft] = []


# ---------- observer snapshots ----------


class ConnectionStatus(msgspec.Struct):
    client_id: int
    peer: str
    connected_at: float  # Unix timestamp
    requests: int
    last_command: str | None


class BoardStatus(msgspec.Struct):
    timestamp: float
    running: bool
    board_size: int
    total_received: int
    active_connections: int
    next_client_id: int
    total_connections: int
    connections: list[ConnectionStatus]
    events: list[EventRecord]
