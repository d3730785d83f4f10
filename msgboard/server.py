import logging
from pathlib import Path
import socket
import threading
import time

from msgboard import persistence, protocol
from msgboard.models import EventKind
from msgboard.monitor import Monitor
from msgboard.session import Session
from msgboard.state import ServerState

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 26500
DEFAULT_BACKLOG = 16

ACCEPT_POLL_INTERVAL = 0.5  # how often a blocked accept re-checks `running`
ACCEPT_ERROR_BACKOFF = 0.05
SHUTDOWN_BROADCASTS = 3
BROADCAST_INTERVAL = 0.05
SHUTDOWN_GRACE = 0.2
SESSION_JOIN_TIMEOUT = 2.0


class BoardServer:
    """
    Accept loop plus shutdown orchestration. Each accepted connection runs a
    ``Session`` in its own thread; sessions end on their own on QUIT, peer
    disconnect, or I/O error.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        state: ServerState | None = None,
        backlog: int = DEFAULT_BACKLOG,
    ):
        self.host = host
        self.port = port
        self.backlog = backlog
        self.state = state if state is not None else ServerState()
        self.listener: socket.socket | None = None
        self._threads: list[threading.Thread] = []

    @property
    def address(self) -> tuple[str, int]:
        if self.listener is None:
            return (self.host, self.port)
        return self.listener.getsockname()[:2]

    def bind(self) -> None:
        """Create, bind and listen. Failures are logged and re-raised."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            self.state.events.log(EventKind.ERROR, f"Socket creation failed: {e}")
            raise
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as e:
            self.state.events.log(EventKind.WARNING, f"Failed to set SO_REUSEADDR: {e}")
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            self.state.events.log(
                EventKind.ERROR, f"Failed to bind/listen on {self.host}:{self.port}: {e}"
            )
            raise
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        self.listener = sock
        host, port = self.address
        self.state.events.log(
            EventKind.SERVER, f"Server is listening for connections on {host}:{port}"
        )

    def serve_forever(self) -> None:
        if self.listener is None:
            self.bind()
        running = self.state.running
        try:
            while running.is_set():
                try:
                    conn, addr = self.listener.accept()
                except TimeoutError:
                    continue
                except OSError as e:
                    if not running.is_set():
                        break
                    self.state.events.log(
                        EventKind.WARNING, f"Failed to accept connection: {e}"
                    )
                    time.sleep(ACCEPT_ERROR_BACKOFF)
                    continue
                self._spawn(conn, f"{addr[0]}:{addr[1]}")
        finally:
            self._shutdown()

    def stop(self) -> None:
        self.state.running.clear()

    def _spawn(self, conn: socket.socket, peer: str) -> None:
        session = Session(conn, peer, self.state)
        try:
            conn.settimeout(None)
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            # Registered before the thread runs so the shutdown sweep always sees it.
            session.register()
            t = threading.Thread(target=session.run, daemon=True, name=f"session-{peer}")
            t.start()
        except (OSError, RuntimeError) as e:
            self.state.events.log(
                EventKind.WARNING, f"Failed to start session for {peer}: {e}"
            )
            if session.handle is not None:
                self.state.registry.unregister(session.client_id)
            conn.close()
            return
        self._threads = [th for th in self._threads if th.is_alive()]
        self._threads.append(t)

    def _shutdown(self) -> None:
        events = self.state.events
        self.state.running.clear()
        events.log(EventKind.SERVER, "Initiating server shutdown - disconnecting all clients")

        clients = self.state.registry.snapshot()
        goodbye = protocol.build_shutdown()
        for attempt in range(SHUTDOWN_BROADCASTS):
            for handle in clients:
                try:
                    handle.send(goodbye)
                except OSError as e:
                    logger.debug("shutdown notice to client #%d failed: %r", handle.client_id, e)
            if attempt < SHUTDOWN_BROADCASTS - 1:
                time.sleep(BROADCAST_INTERVAL)

        time.sleep(SHUTDOWN_GRACE)
        if self.listener is not None:
            self.listener.close()
            self.listener = None

        # Sessions still parked in a read see end-of-stream and close themselves.
        for handle in self.state.registry.snapshot():
            handle.shutdown()
        for t in self._threads:
            t.join(SESSION_JOIN_TIMEOUT)
        self._threads.clear()

        events.log(EventKind.SERVER, "Server shutdown complete")


def run_server(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    *,
    board_file: str | None = None,
    report_csv: str | None = None,
    status_json: str | None = None,
    monitor_interval: float = 0.0,
    state: ServerState | None = None,
) -> ServerState:
    """
    Run the board until ``state.running`` is cleared (signal handler or
    monitor). Raises OSError if the listening socket cannot be set up.
    """
    server = BoardServer(host, port, state=state)
    state = server.state

    if board_file and Path(board_file).exists():
        posts = persistence.load_board(board_file, events=state.events)
        state.board.replace(posts)
        state.events.log(EventKind.SERVER, f"Loaded {len(posts)} post(s) from {board_file}")

    server.bind()

    monitor = None
    if monitor_interval > 0:
        monitor = Monitor(
            state,
            interval=monitor_interval,
            report_csv=report_csv,
            status_json=status_json,
        )
        monitor.start()

    try:
        server.serve_forever()
    finally:
        try:
            if monitor is not None:
                monitor.stop()
        finally:
            if board_file:
                saved = persistence.save_board(
                    board_file, state.board.snapshot_filtered(), events=state.events
                )
                state.events.log(EventKind.SERVER, f"Saved {saved} post(s) to {board_file}")
    return state
