from enum import Enum, auto
import logging
import socket
import time

from msgboard import protocol
from msgboard.framing import FrameReader, FrameTooLarge
from msgboard.models import (
    EventKind,
    GetBoardRequest,
    ParseFailure,
    PostRequest,
    QuitRequest,
)
from msgboard.state import BoardError, ClientHandle, ServerState

logger: logging.Logger = logging.getLogger(__name__)

MAX_RESPONSE_SIZE = 16 * 1024 * 1024


class Phase(Enum):
    READING = auto()
    DISPATCHING = auto()
    CLOSING_GRACEFUL = auto()
    CLOSING_ABRUPT = auto()
    TERMINATED = auto()


class Session:
    """
    One accepted connection: read a transmission, parse it, apply it to the
    shared state, answer, repeat. Strictly sequential; the answer to one
    transmission is fully written before the next one is read.
    """

    def __init__(self, conn: socket.socket, peer: str, state: ServerState):
        self.conn = conn
        self.peer = peer
        self.state = state
        self.reader = FrameReader(conn)
        self.handle: ClientHandle | None = None
        self.phase = Phase.READING
        self._message = b""

    @property
    def client_id(self) -> int:
        return self.handle.client_id if self.handle else 0

    def register(self) -> ClientHandle:
        """Join the registry; the supervisor calls this before starting the thread."""
        if self.handle is None:
            self.handle = self.state.registry.register(self.conn, self.peer)
            self.state.events.log(
                EventKind.CONNECT, f"Client #{self.client_id} connected from {self.peer}"
            )
        return self.handle

    def run(self) -> None:
        self.register()
        try:
            while self.phase is not Phase.TERMINATED:
                if self.phase is Phase.READING:
                    self.phase = self._read()
                elif self.phase is Phase.DISPATCHING:
                    self.phase = self._dispatch(self._message)
                else:
                    self._close()
                    self.phase = Phase.TERMINATED
        except Exception:
            logger.exception("client #%d: session crashed", self.client_id)
            self._close()
            self.phase = Phase.TERMINATED

    # ---- states ----

    def _read(self) -> Phase:
        try:
            message = self.reader.read_next()
        except FrameTooLarge as e:
            self.state.events.log(EventKind.ERROR, f"Client #{self.client_id}: {e}")
            return self._send(protocol.build_invalid_command(str(e)))
        except OSError as e:
            self.state.events.log(
                EventKind.ERROR, f"Client #{self.client_id}: receive failed: {e}"
            )
            return Phase.CLOSING_ABRUPT

        if message is None:
            return Phase.CLOSING_ABRUPT
        self._message = message
        return Phase.DISPATCHING

    def _dispatch(self, message: bytes) -> Phase:
        t0 = time.perf_counter()
        outcome = protocol.parse_message(message)
        events = self.state.events
        cid = self.client_id
        after = Phase.READING

        if isinstance(outcome, ParseFailure):
            events.log(
                EventKind.ERROR,
                f"Client #{cid}: {protocol.display_text(outcome.detail)}",
                raw=self._raw(message),
            )
            command = outcome.kind.value
            response = protocol.build_invalid_command(outcome.detail)

        elif isinstance(outcome, QuitRequest):
            events.log(EventKind.QUIT, f"Client #{cid} requested disconnect")
            command = protocol.QUIT
            response = protocol.build_quit()
            after = Phase.CLOSING_GRACEFUL

        elif isinstance(outcome, GetBoardRequest):
            command = protocol.GET_BOARD
            response = self._get_board(outcome, message)

        elif isinstance(outcome, PostRequest):
            command = protocol.POST
            response = self._post(outcome, message)

        else:  # pragma: no cover - parse_message returns one of the above
            raise TypeError(f"unexpected parse outcome {outcome!r}")

        # Recorded before the answer goes out, so a client that has its answer
        # already sees this request in the registry.
        self.state.registry.record_dispatch(cid, command, time.perf_counter() - t0)
        next_phase = self._send(response)
        return after if next_phase is Phase.READING else next_phase

    def _get_board(self, request: GetBoardRequest, message: bytes) -> bytes:
        posts = self.state.board.snapshot_filtered(
            request.author_filter, request.title_filter
        )
        self.state.events.log(
            EventKind.GET_BOARD,
            f"Client #{self.client_id} requested board ({len(posts)} post(s))",
            raw=self._raw(message),
        )
        response = protocol.build_get_board(posts)
        if len(response) > MAX_RESPONSE_SIZE:
            reason = f"Board response exceeds {MAX_RESPONSE_SIZE} bytes; narrow the filters."
            self.state.events.log(EventKind.ERROR, f"Client #{self.client_id}: {reason}")
            response = protocol.build_get_board_error(reason)
        return response

    def _post(self, request: PostRequest, message: bytes) -> bytes:
        try:
            added = self.state.board.append_batch(request.posts, self.client_id)
        except BoardError as e:
            self.state.events.log(
                EventKind.POST_ERROR, f"Client #{self.client_id}: {e}", raw=self._raw(message)
            )
            return protocol.build_post_error(str(e))

        self.state.events.log(
            EventKind.POST,
            f"Client #{self.client_id} posted {added} message(s)",
            raw=self._raw(message),
        )
        return protocol.build_post_ok()

    # ---- helpers ----

    def _send(self, data: bytes) -> Phase:
        try:
            self.handle.send(data)
        except OSError as e:
            self.state.events.log(
                EventKind.ERROR, f"Client #{self.client_id}: send failed: {e}"
            )
            return Phase.CLOSING_ABRUPT
        return Phase.READING

    @staticmethod
    def _raw(message: bytes) -> str:
        return protocol.display_text(protocol.to_text(message) + protocol.TERMINATOR)

    def _close(self) -> None:
        graceful = self.phase is Phase.CLOSING_GRACEFUL
        try:
            self.conn.close()
        except OSError as e:
            logger.debug("client #%d: close failed: %r", self.client_id, e)
        if self.handle is not None:
            self.state.registry.unregister(self.client_id)
        self.state.events.log(
            EventKind.DISCONNECT,
            f"Client #{self.client_id} disconnected"
            + (" after QUIT" if graceful else f" ({self.peer})"),
        )
