"""Tests for the MessageBoard.txt collaborator."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from msgboard.models import EventKind, Post
from msgboard.persistence import format_record, load_board, parse_record, save_board
from msgboard.state import EventLog


class RecordTests(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(format_record(Post("Alice", "Hi", "hello", 3)), "Alice|Hi|hello|3\n")
        self.assertEqual(format_record(Post("", "", "anon", 1)), "||anon|1\n")

    def test_parse_keeps_pipes_in_body(self) -> None:
        self.assertEqual(parse_record("A|T|x|y|z|12\n"), Post("A", "T", "x|y|z", 12))

    def test_parse_rejects_malformed_lines(self) -> None:
        for line in ("no pipes", "A|T|7", "A|T||4", "A|T|B|notanint"):
            with self.subTest(line=line), self.assertRaises(ValueError):
                parse_record(line)


class LoadSaveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.path = Path(tempfile.mkdtemp()) / "MessageBoard.txt"

    def test_save_then_load(self) -> None:
        posts = [Post("Alice", "Hi", "hello", 1), Post("", "", "anon", 2)]
        save_board(self.path, posts)
        self.assertEqual(self.path.read_text(), "Alice|Hi|hello|1\n||anon|2\n")
        self.assertEqual(load_board(self.path), posts)

    def test_save_overwrites(self) -> None:
        save_board(self.path, [Post("A", "T", "old", 1)])
        save_board(self.path, [Post("B", "T", "new", 2)])
        self.assertEqual(self.path.read_text(), "B|T|new|2\n")

    def test_malformed_lines_are_skipped_with_warning(self) -> None:
        self.path.write_text("A|T|B|1\ngarbage\n\nC|T|D|2\n")
        events = EventLog()
        posts = load_board(self.path, events=events)
        self.assertEqual([p.body for p in posts], ["B", "D"])
        (warning,) = events.iterate_newest_first()
        self.assertEqual(warning.kind, EventKind.WARNING)
        self.assertIn(":2:", warning.text)

    def test_unstorable_posts_are_skipped_with_warning(self) -> None:
        posts = [
            Post("Alice", "Hi", "kept", 1),
            Post("A|B", "T", "pipe in author", 2),
            Post("A", "T", "line\nbreak", 3),
            Post("A", "T", "also|kept", 4),
        ]
        events = EventLog()
        self.assertEqual(save_board(self.path, posts, events=events), 2)
        self.assertEqual(self.path.read_text(), "Alice|Hi|kept|1\nA|T|also|kept|4\n")
        self.assertEqual([p.body for p in load_board(self.path)], ["kept", "also|kept"])
        warnings = [r for r in events.iterate_newest_first() if r.kind is EventKind.WARNING]
        self.assertEqual(len(warnings), 2)
        self.assertIn("client #3", warnings[0].text)

    def test_non_utf8_bytes_survive(self) -> None:
        self.path.write_bytes(b"\xff|T|b\x80dy|4\n")
        (post,) = load_board(self.path)
        save_board(self.path, [post])
        self.assertEqual(self.path.read_bytes(), b"\xff|T|b\x80dy|4\n")


if __name__ == "__main__":
    unittest.main()
