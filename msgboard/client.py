import logging
import random
import socket
import string
import time

from msgboard import protocol
from msgboard.framing import FrameReader
from msgboard.models import GetBoardRequest, PostDraft, PostRequest, QuitRequest, Response

logger: logging.Logger = logging.getLogger(__name__)

AUTHORS = ["Alice", "Bob", "Carol", "Dave", "Erin", ""]
TITLES = ["Hello", "Status", "Question", "Update", ""]


def random_words(n: int = 6) -> str:
    alphabet = string.ascii_lowercase
    return " ".join(
        "".join(random.choice(alphabet) for _ in range(random.randint(2, 8)))
        for _ in range(n)
    )


def random_draft(author: str | None = None) -> PostDraft:
    return PostDraft(
        author=random.choice(AUTHORS) if author is None else author,
        title=random.choice(TITLES),
        body=random_words(random.randint(3, 12)),
    )


class BoardClient:
    """Blocking request/response client; one outstanding request at a time."""

    def __init__(self, host: str = "127.0.0.1", port: int = 26500, *, timeout: float | None = 10.0):
        self.sock = socket.create_connection((host, port), timeout=timeout)
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self.reader = FrameReader(self.sock)

    def __enter__(self) -> "BoardClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.sock.close()

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data)

    def read_response(self) -> Response:
        data = self.reader.read_next()
        if data is None:
            raise ConnectionError("server closed the connection")
        return protocol.decode_response(data)

    def request(self, data: bytes) -> Response:
        self.send_raw(data)
        return self.read_response()

    def post(self, *drafts: PostDraft) -> Response:
        return self.request(protocol.build_request(PostRequest(posts=list(drafts))))

    def get_board(self, author: str = "", title: str = "") -> list[PostDraft]:
        resp = self.request(
            protocol.build_request(GetBoardRequest(author_filter=author, title_filter=title))
        )
        if resp.token != protocol.GET_BOARD:
            raise protocol.ProtocolError(f"GET_BOARD answered with {resp.token}")
        return resp.posts

    def quit(self) -> Response:
        return self.request(protocol.build_request(QuitRequest()))


def _connect_with_backoff(host: str, port: int) -> BoardClient:
    backoff = 0.25
    while True:
        try:
            return BoardClient(host, port)
        except OSError as e:
            # Jittered exponential backoff, capped
            sleep_s = min(5.0, backoff) * (0.5 + random.random())
            logger.warning(f"connect to {host}:{port} failed: {e!r}; retrying in {sleep_s:.2f}s")
            time.sleep(sleep_s)
            backoff = min(backoff * 2.0, 5.0)


def run_poster(
    host: str = "127.0.0.1",
    port: int = 26500,
    posts_per_minute: int = 60,
    *,
    author: str | None = None,
    count: int = 0,
    max_batch: int = 3,
) -> int:
    """
    Post synthetic entries at a jittered rate until ``count`` posts were
    accepted (0 means forever). Returns the number of accepted posts.
    """
    client = _connect_with_backoff(host, port)
    base_interval = 60.0 / max(posts_per_minute, 1)

    accepted = 0
    sent_count = 0
    last_report = time.time()
    try:
        while not count or accepted < count:
            batch_size = random.randint(1, max_batch)
            if count:
                batch_size = min(batch_size, count - accepted)
            drafts = [random_draft(author) for _ in range(batch_size)]
            try:
                resp = client.post(*drafts)
            except (OSError, protocol.ProtocolError) as e:
                logger.warning("post failed (%r); reconnecting", e)
                client.close()
                client = _connect_with_backoff(host, port)
                continue

            if resp.token == protocol.POST_OK:
                accepted += batch_size
                sent_count += batch_size
            elif resp.token == protocol.SERVER:
                logger.info("server is shutting down")
                break
            else:
                logger.warning("post rejected: %s %s", resp.token, resp.fields[-1:])

            # Jittered interval
            time.sleep(random.uniform(0.5 * base_interval, 1.5 * base_interval))

            now = time.time()
            if now - last_report >= 10.0:
                logger.info(
                    "posting rate: %.2f posts/s (over last %.1fs)",
                    sent_count / (now - last_report),
                    now - last_report,
                )
                sent_count = 0
                last_report = now

        try:
            client.quit()
        except (OSError, protocol.ProtocolError) as e:
            logger.debug("quit failed: %r", e)
    finally:
        client.close()
    return accepted
