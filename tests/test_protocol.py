"""Tests for the board's text framing codec."""

from __future__ import annotations

import unittest

from msgboard import protocol
from msgboard.models import (
    GetBoardRequest,
    ParseErrorKind,
    ParseFailure,
    Post,
    PostDraft,
    PostRequest,
    QuitRequest,
    Response,
)


def body(wire: bytes) -> bytes:
    """Strip the terminator, as the reassembler does."""
    assert wire.endswith(protocol.TERMINATOR_BYTES)
    return wire[: -len(protocol.TERMINATOR_BYTES)]


class ParseMessageTests(unittest.TestCase):
    def test_empty_input(self) -> None:
        outcome = protocol.parse_message(b"")
        self.assertIsInstance(outcome, ParseFailure)
        self.assertEqual(outcome.kind, ParseErrorKind.EMPTY)
        self.assertEqual(outcome.detail, "Empty message received.")

    def test_unknown_command_carries_token(self) -> None:
        outcome = protocol.parse_message(b"FROBNICATE")
        self.assertEqual(outcome.kind, ParseErrorKind.UNKNOWN_COMMAND)
        self.assertEqual(outcome.token, "FROBNICATE")
        self.assertEqual(outcome.detail, "Invalid command: FROBNICATE")

    def test_commands_are_case_sensitive(self) -> None:
        outcome = protocol.parse_message(b"get_board")
        self.assertIsInstance(outcome, ParseFailure)
        self.assertEqual(outcome.kind, ParseErrorKind.UNKNOWN_COMMAND)

    def test_get_board_without_filters(self) -> None:
        self.assertEqual(protocol.parse_message(b"GET_BOARD"), GetBoardRequest())

    def test_get_board_filters(self) -> None:
        self.assertEqual(
            protocol.parse_message(b"GET_BOARD}+{Alice}+{Hi"),
            GetBoardRequest(author_filter="Alice", title_filter="Hi"),
        )
        self.assertEqual(
            protocol.parse_message(b"GET_BOARD}+{}+{Hi"),
            GetBoardRequest(author_filter="", title_filter="Hi"),
        )

    def test_get_board_filters_are_not_trimmed(self) -> None:
        outcome = protocol.parse_message(b"GET_BOARD}+{ Alice ")
        self.assertEqual(outcome.author_filter, " Alice ")

    def test_get_board_trailing_record_separator(self) -> None:
        self.assertEqual(
            protocol.parse_message(b"GET_BOARD}+{Alice}#{"),
            GetBoardRequest(author_filter="Alice"),
        )

    def test_single_post(self) -> None:
        outcome = protocol.parse_message(b"POST}+{Alice}+{Hi}+{hello")
        self.assertEqual(
            outcome, PostRequest(posts=[PostDraft(author="Alice", title="Hi", body="hello")])
        )

    def test_empty_author_and_title_are_accepted(self) -> None:
        outcome = protocol.parse_message(b"POST}+{}+{}+{anonymous")
        self.assertEqual(outcome.posts, [PostDraft(author="", title="", body="anonymous")])

    def test_batch_with_field_separators(self) -> None:
        outcome = protocol.parse_message(b"POST}+{A}+{T1}+{B1}+{B}+{T2}+{B2")
        self.assertEqual([p.body for p in outcome.posts], ["B1", "B2"])

    def test_batch_with_record_separators(self) -> None:
        outcome = protocol.parse_message(b"POST}+{A}+{T1}+{B1}#{B}+{T2}+{B2")
        self.assertEqual([p.author for p in outcome.posts], ["A", "B"])

    def test_batch_records_may_repeat_the_command(self) -> None:
        outcome = protocol.parse_message(b"POST}+{A}+{T1}+{B1}#{POST}+{B}+{T2}+{B2")
        self.assertIsInstance(outcome, PostRequest)
        self.assertEqual(
            outcome.posts,
            [
                PostDraft(author="A", title="T1", body="B1"),
                PostDraft(author="B", title="T2", body="B2"),
            ],
        )

    def test_post_without_payload(self) -> None:
        outcome = protocol.parse_message(b"POST")
        self.assertEqual(outcome.kind, ParseErrorKind.BAD_POST_SHAPE)
        self.assertEqual(outcome.detail, "POST contains no (Author, Title, Message) sets.")

    def test_post_with_partial_triple(self) -> None:
        outcome = protocol.parse_message(b"POST}+{Alice}+{Hi")
        self.assertEqual(outcome.kind, ParseErrorKind.BAD_POST_SHAPE)
        self.assertEqual(outcome.detail, "POST requires triples of Author, Title, Message.")

    def test_post_trailing_record_separator_is_a_bad_shape(self) -> None:
        outcome = protocol.parse_message(b"POST}+{A}+{T}+{B}#{")
        self.assertEqual(outcome.kind, ParseErrorKind.BAD_POST_SHAPE)

    def test_empty_body_rejects_whole_batch(self) -> None:
        outcome = protocol.parse_message(b"POST}+{A}+{T1}+{B1}#{B}+{T2}+{")
        self.assertEqual(outcome.kind, ParseErrorKind.EMPTY_BODY)
        self.assertEqual(outcome.detail, "POST message cannot be empty.")

    def test_quit_ignores_extra_fields(self) -> None:
        self.assertEqual(protocol.parse_message(b"QUIT"), QuitRequest())
        self.assertEqual(protocol.parse_message(b"QUIT}+{now}#{please"), QuitRequest())

    def test_non_utf8_bytes_survive(self) -> None:
        raw = b"POST}+{\xff\xfe}+{t}+{\x80body"
        outcome = protocol.parse_message(raw)
        draft = outcome.posts[0]
        self.assertEqual(protocol.to_bytes(draft.author), b"\xff\xfe")
        self.assertEqual(protocol.to_bytes(draft.body), b"\x80body")


class BuildResponseTests(unittest.TestCase):
    def test_post_ok(self) -> None:
        self.assertEqual(protocol.build_post_ok(), b"POST_OK}+{}+{}+{}}&{{")

    def test_post_error(self) -> None:
        self.assertEqual(
            protocol.build_post_error("No posts to add"),
            b"POST_ERROR}+{}+{}+{No posts to add}}&{{",
        )

    def test_invalid_command(self) -> None:
        self.assertEqual(
            protocol.build_invalid_command("POST message cannot be empty."),
            b"INVALID_COMMAND}+{}+{}+{POST message cannot be empty.}}&{{",
        )

    def test_get_board_error(self) -> None:
        self.assertEqual(
            protocol.build_get_board_error("too big"),
            b"GET_BOARD_ERROR}+{}+{}+{too big}}&{{",
        )

    def test_empty_board(self) -> None:
        self.assertEqual(protocol.build_get_board([]), b"GET_BOARD}}&{{")

    def test_board_with_posts(self) -> None:
        posts = [
            Post(author="Alice", title="Hi", body="hello", client_id=1),
            Post(author="Bob", title="", body="yo", client_id=2),
        ]
        self.assertEqual(
            protocol.build_get_board(posts),
            b"GET_BOARD}+{Alice}+{Hi}+{hello}#{}+{Bob}+{}+{yo}}&{{",
        )

    def test_quit_and_shutdown(self) -> None:
        self.assertEqual(
            protocol.build_quit(), b"QUIT}+{SERVER}+{BYE!!!}+{Server says: BYE!!!}}&{{"
        )
        self.assertEqual(
            protocol.build_shutdown(), b"SERVER}+{SHUTDOWN}+{Server is shutting down}}&{{"
        )

    def test_build_request(self) -> None:
        self.assertEqual(protocol.build_request(GetBoardRequest()), b"GET_BOARD}}&{{")
        self.assertEqual(
            protocol.build_request(GetBoardRequest(title_filter="Hi")),
            b"GET_BOARD}+{}+{Hi}}&{{",
        )
        self.assertEqual(
            protocol.build_request(PostRequest(posts=[PostDraft("A", "T", "B")])),
            b"POST}+{A}+{T}+{B}}&{{",
        )
        self.assertEqual(protocol.build_request(QuitRequest()), b"QUIT}}&{{")


class DecodeResponseTests(unittest.TestCase):
    def test_server_responses_round_trip(self) -> None:
        posts = [Post("Alice", "Hi", "hello", 1), Post("", "", "x", 2), Post("C", "T", "z", 3)]
        for wire in (
            protocol.build_post_ok(),
            protocol.build_post_error("No posts to add"),
            protocol.build_invalid_command("Invalid command: FROBNICATE"),
            protocol.build_get_board_error("too big"),
            protocol.build_get_board([]),
            protocol.build_get_board(posts[:1]),
            protocol.build_get_board(posts),
            protocol.build_quit(),
            protocol.build_shutdown(),
        ):
            with self.subTest(wire=wire):
                self.assertEqual(protocol.encode_response(protocol.decode_response(body(wire))), wire)

    def test_get_board_posts(self) -> None:
        resp = protocol.decode_response(b"GET_BOARD}+{Alice}+{Hi}+{hello}#{}+{Bob}+{}+{yo")
        self.assertEqual(resp.token, "GET_BOARD")
        self.assertEqual(
            resp.posts,
            [PostDraft("Alice", "Hi", "hello"), PostDraft("Bob", "", "yo")],
        )

    def test_accepts_terminated_input(self) -> None:
        resp = protocol.decode_response(b"POST_OK}+{}+{}+{}}&{{")
        self.assertEqual(resp, Response(token="POST_OK", fields=["", "", ""]))

    def test_rejects_unknown_token(self) -> None:
        with self.assertRaises(protocol.ProtocolError):
            protocol.decode_response(b"HELLO}+{x")

    def test_rejects_bad_board_record(self) -> None:
        with self.assertRaises(protocol.ProtocolError):
            protocol.decode_response(b"GET_BOARD}+{A}+{T}+{B}#{A2}+{T2}+{B2")
        with self.assertRaises(protocol.ProtocolError):
            protocol.decode_response(b"GET_BOARD}+{A}+{T")


if __name__ == "__main__":
    unittest.main()
