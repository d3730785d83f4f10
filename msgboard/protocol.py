"""
protocol.py: the board's text framing.

Wire shape (every transmission, client or server, ends with the terminator):

    COMMAND}+{field}+{field ... }#{field}+{field ... }}&{{

- ``}+{`` separates fields, ``}#{`` separates records, ``}}&{{`` ends the
  transmission. Fields are never escaped; callers keep separators out of them.
- Client commands: GET_BOARD, POST, QUIT. Server tokens: POST_OK, POST_ERROR,
  GET_BOARD, GET_BOARD_ERROR, INVALID_COMMAND (plus QUIT and SERVER notices).

Fields travel as bytes. We decode them as UTF-8 with ``surrogateescape`` so any
byte sequence survives a decode/encode cycle unchanged and str equality is
byte equality.
"""

from collections.abc import Iterable

from msgboard.models import (
    GetBoardRequest,
    ParseFailure,
    ParseErrorKind,
    ParseOutcome,
    Post,
    PostDraft,
    PostRequest,
    QuitRequest,
    Response,
)

ENCODING = "utf-8"
ERRORS = "surrogateescape"

FIELD_SEP = "}+{"
RECORD_SEP = "}#{"
TERMINATOR = "}}&{{"
TERMINATOR_BYTES = TERMINATOR.encode(ENCODING)

# client commands
GET_BOARD = "GET_BOARD"
POST = "POST"
QUIT = "QUIT"

# server responses
POST_OK = "POST_OK"
POST_ERROR = "POST_ERROR"
GET_BOARD_ERROR = "GET_BOARD_ERROR"
INVALID_COMMAND = "INVALID_COMMAND"
SERVER = "SERVER"

CLIENT_COMMANDS = frozenset({GET_BOARD, POST, QUIT})
RESPONSE_TOKENS = frozenset(
    {POST_OK, POST_ERROR, GET_BOARD, GET_BOARD_ERROR, INVALID_COMMAND, QUIT, SERVER}
)

MSG_EMPTY = "Empty message received."
MSG_NO_TRIPLES = "POST contains no (Author, Title, Message) sets."
MSG_NOT_TRIPLES = "POST requires triples of Author, Title, Message."
MSG_EMPTY_BODY = "POST message cannot be empty."

BYE_FIELDS = ("SERVER", "BYE!!!", "Server says: BYE!!!")
SHUTDOWN_FIELDS = ("SHUTDOWN", "Server is shutting down")


def to_text(data: bytes) -> str:
    return data.decode(ENCODING, ERRORS)


def to_bytes(text: str) -> bytes:
    return text.encode(ENCODING, ERRORS)


def display_text(text: str) -> str:
    """Printable form of client-supplied text (undecodable bytes become U+FFFD)."""
    return text.encode(ENCODING, ERRORS).decode(ENCODING, "replace")


# ---------- decoding (client -> server) ----------


def _tokenize(text: str) -> list[str]:
    """
    Flatten a transmission into one field list, treating record separators
    as field separators.

    A record after the first may repeat the command token
    (``POST}+{a}+{t}+{b}#{POST}+{a}+{t}+{b}``); that repeat is dropped when the
    rest of the record is a whole number of triples.
    """
    records = text.split(RECORD_SEP)
    fields = records[0].split(FIELD_SEP)
    command = fields[0]
    for record in records[1:]:
        parts = record.split(FIELD_SEP)
        if len(parts) > 1 and parts[0] == command and (len(parts) - 1) % 3 == 0:
            parts = parts[1:]
        fields.extend(parts)
    return fields


def parse_message(data: bytes) -> ParseOutcome:
    """
    Decode one transmission (bytes before the terminator) into a request or a
    ``ParseFailure``. Pure; performs no I/O.
    """
    if not data:
        return ParseFailure(kind=ParseErrorKind.EMPTY, detail=MSG_EMPTY)

    fields = _tokenize(to_text(data))
    command = fields[0]

    if command == GET_BOARD:
        author = fields[1] if len(fields) > 1 else ""
        title = fields[2] if len(fields) > 2 else ""
        return GetBoardRequest(author_filter=author, title_filter=title)

    if command == POST:
        payload = fields[1:]
        if not payload:
            return ParseFailure(kind=ParseErrorKind.BAD_POST_SHAPE, detail=MSG_NO_TRIPLES)
        if len(payload) % 3 != 0:
            return ParseFailure(kind=ParseErrorKind.BAD_POST_SHAPE, detail=MSG_NOT_TRIPLES)

        posts: list[PostDraft] = []
        for i in range(0, len(payload), 3):
            author, title, body = payload[i : i + 3]
            if not body:
                return ParseFailure(kind=ParseErrorKind.EMPTY_BODY, detail=MSG_EMPTY_BODY)
            posts.append(PostDraft(author=author, title=title, body=body))
        return PostRequest(posts=posts)

    if command == QUIT:
        return QuitRequest()

    return ParseFailure(
        kind=ParseErrorKind.UNKNOWN_COMMAND,
        detail=f"Invalid command: {command}",
        token=command,
    )


# ---------- encoding (server -> client) ----------


def _frame(token: str, fields: Iterable[str]) -> bytes:
    return to_bytes(FIELD_SEP.join([token, *fields]) + TERMINATOR)


def build_post_ok() -> bytes:
    return _frame(POST_OK, ("", "", ""))


def build_post_error(message: str) -> bytes:
    return _frame(POST_ERROR, ("", "", message))


def build_invalid_command(reason: str) -> bytes:
    return _frame(INVALID_COMMAND, ("", "", reason))


def build_get_board_error(message: str) -> bytes:
    return _frame(GET_BOARD_ERROR, ("", "", message))


def build_get_board(posts: Iterable[Post | PostDraft]) -> bytes:
    # The first post follows the token with a field separator; later posts are
    # introduced by a record separator and then a field separator.
    parts = [GET_BOARD]
    for i, post in enumerate(posts):
        if i:
            parts.append(RECORD_SEP)
        parts.append(FIELD_SEP.join(("", post.author, post.title, post.body)))
    parts.append(TERMINATOR)
    return to_bytes("".join(parts))


def build_quit() -> bytes:
    return _frame(QUIT, BYE_FIELDS)


def build_shutdown() -> bytes:
    return _frame(SERVER, SHUTDOWN_FIELDS)


def build_request(request: GetBoardRequest | PostRequest | QuitRequest) -> bytes:
    """Client-side encoder for the three commands."""
    if isinstance(request, GetBoardRequest):
        fields = [request.author_filter, request.title_filter]
        while fields and not fields[-1]:
            fields.pop()
        return _frame(GET_BOARD, fields)
    if isinstance(request, PostRequest):
        fields = []
        for draft in request.posts:
            fields.extend((draft.author, draft.title, draft.body))
        return _frame(POST, fields)
    return _frame(QUIT, ())


# ---------- response decoding (client side) ----------


class ProtocolError(ValueError):
    """A server transmission that does not match any response shape."""


def decode_response(data: bytes) -> Response:
    """Decode one server transmission (bytes before the terminator)."""
    if data.endswith(TERMINATOR_BYTES):
        data = data[: -len(TERMINATOR_BYTES)]
    text = to_text(data)
    if not text:
        raise ProtocolError("empty response")

    records = text.split(RECORD_SEP)
    head = records[0].split(FIELD_SEP)
    token = head[0]
    if token not in RESPONSE_TOKENS:
        raise ProtocolError(f"unknown response token: {token!r}")

    if token != GET_BOARD:
        if len(records) > 1:
            raise ProtocolError(f"{token} response carries {len(records)} records")
        return Response(token=token, fields=head[1:])

    posts: list[PostDraft] = []
    chunks = [head[1:]]
    for record in records[1:]:
        parts = record.split(FIELD_SEP)
        if parts[0]:
            raise ProtocolError("GET_BOARD record must open with a field separator")
        chunks.append(parts[1:])
    if chunks[0] == [] and len(chunks) == 1:
        return Response(token=token)
    for chunk in chunks:
        if len(chunk) != 3:
            raise ProtocolError(f"GET_BOARD record has {len(chunk)} fields, expected 3")
        posts.append(PostDraft(author=chunk[0], title=chunk[1], body=chunk[2]))
    return Response(token=token, posts=posts)


def encode_response(response: Response) -> bytes:
    if response.token == GET_BOARD:
        return build_get_board(response.posts)
    return _frame(response.token, response.fields)
