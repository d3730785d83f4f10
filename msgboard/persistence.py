"""
Line-oriented board file shared with external tools.

Each post is one line: ``AUTHOR|TITLE|BODY|CLIENT_ID``. The client id is the
last ``|``-separated column and author/title the first two, so a body may
contain ``|``; author and title may not.
"""

from collections.abc import Iterable
import logging
import os
from pathlib import Path

from msgboard.models import EventKind, Post
from msgboard.protocol import ENCODING, ERRORS
from msgboard.state import EventLog

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_BOARD_FILE = "MessageBoard.txt"


def format_record(post: Post) -> str:
    return f"{post.author}|{post.title}|{post.body}|{post.client_id}\n"


def parse_record(line: str) -> Post:
    """Raises ValueError on a line that is not a board record."""
    line = line.rstrip("\n")
    head, sep, client_id = line.rpartition("|")
    if not sep:
        raise ValueError("missing client id column")
    parts = head.split("|", 2)
    if len(parts) != 3:
        raise ValueError(f"expected 4 columns, got {len(parts) + 1}")
    author, title, body = parts
    if not body:
        raise ValueError("empty body")
    return Post(author=author, title=title, body=body, client_id=int(client_id))


def load_board(path: str | os.PathLike, events: EventLog | None = None) -> list[Post]:
    posts: list[Post] = []
    with open(path, encoding=ENCODING, errors=ERRORS, newline="\n") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                posts.append(parse_record(line))
            except ValueError as e:
                msg = f"{path}:{lineno}: skipping malformed record ({e})"
                if events is not None:
                    events.log(EventKind.WARNING, msg)
                else:
                    logger.warning(msg)
    return posts


def unstorable_reason(post: Post) -> str | None:
    """Why ``post`` would not survive a save/load cycle, or None if it would."""
    if "|" in post.author or "|" in post.title:
        return "author or title contains '|'"
    if any(c in field for field in (post.author, post.title, post.body) for c in "\r\n"):
        return "field contains a line break"
    return None


def save_board(
    path: str | os.PathLike, posts: Iterable[Post], events: EventLog | None = None
) -> int:
    """
    Overwrite ``path`` atomically with the given posts. Posts the line format
    cannot hold are skipped with a warning. Returns the number written.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    written = 0
    with open(tmp, "w", encoding=ENCODING, errors=ERRORS, newline="\n") as fh:
        for post in posts:
            reason = unstorable_reason(post)
            if reason is not None:
                msg = f"{path}: not saving post by client #{post.client_id} ({reason})"
                if events is not None:
                    events.log(EventKind.WARNING, msg)
                else:
                    logger.warning(msg)
                continue
            fh.write(format_record(post))
            written += 1
    os.replace(tmp, path)
    return written
