"""Tests for archive format detection and message parsers."""

from __future__ import annotations

import json
import unittest

from linkshelf.app.import_adapters import (
    ChatGPTExportParser,
    PlainChatParser,
    StructuredChatParser,
    decode_archive,
    get_message_parser,
    parse_archive,
)
from linkshelf.app.import_contract import MessageParser, ParsedMessage


class TestChatGPTExportParser(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = ChatGPTExportParser()

    def test_classic_mapping_parts_are_joined(self) -> None:
        raw = json.dumps([{"mapping": {"a": {"message": {"content": {"parts": ["hello", "world"]}}}}}])
        self.assertEqual(self.parser.merge_text(raw), "hello\nworld")

        messages = parse_archive("conversations.json", raw)
        self.assertEqual(messages, (ParsedMessage(date="", time="", sender="ChatGPT", content="hello\nworld"),))

    def test_classic_fragments_across_conversations_use_separator(self) -> None:
        raw = json.dumps(
            [
                {
                    "mapping": {
                        "root": {"message": None},
                        "a": {"message": {"content": {"parts": ["first"]}}},
                        "b": {"message": {"content": "plain string"}},
                    }
                },
                {"mapping": {"c": {"message": {"content": {"parts": ["second", None]}}}}},
            ]
        )
        self.assertEqual(
            self.parser.merge_text(raw),
            "first\n\n---\n\nplain string\n\n---\n\nsecond\n",
        )

    def test_simple_messages_shape(self) -> None:
        raw = json.dumps(
            {
                "messages": [
                    {"content": "verbatim"},
                    {"content": [{"text": "part one"}, {"type": "image"}, {"text": "part two"}]},
                    {"content": 42},
                ]
            }
        )
        self.assertEqual(
            self.parser.merge_text(raw),
            "verbatim\n\n---\n\npart one\n\npart two\n\n---\n\n",
        )

    def test_unrecognised_shape_and_invalid_json_yield_none(self) -> None:
        self.assertIsNone(self.parser.merge_text('{"conversations": []}'))
        self.assertIsNone(self.parser.merge_text("[1, 2, 3]"))
        self.assertIsNone(self.parser.merge_text("{not json"))
        self.assertIsNone(self.parser.parse("a.json", "{not json"))


class TestStructuredChatParser(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = StructuredChatParser()

    def test_headers_start_messages(self) -> None:
        raw = "[01/02/2024, 10:00:00] Alice: Check https://example.com\n[01/02/2024, 10:01:00] Bob: ok"
        messages = self.parser.parse("chat.txt", raw)
        self.assertEqual(
            messages,
            (
                ParsedMessage(date="01/02/2024", time="10:00:00", sender="Alice", content="Check https://example.com"),
                ParsedMessage(date="01/02/2024", time="10:01:00", sender="Bob", content="ok"),
            ),
        )

    def test_continuation_lines_are_appended_verbatim(self) -> None:
        continuation = ["  quoted line", "", "```code block```"]
        raw = "\n".join(["[01/02/2024, 10:00:00] Alice: start", *continuation])
        (message,) = self.parser.parse("chat.txt", raw)
        self.assertEqual(message.content.split("\n")[1:], continuation)

    def test_lines_before_first_header_are_dropped(self) -> None:
        raw = "preamble\nmore preamble\n[01/02/2024, 10:00:00] Alice: hi"
        (message,) = self.parser.parse("chat.txt", raw)
        self.assertEqual(message.content, "hi")

    def test_crlf_line_endings(self) -> None:
        raw = "[01/02/2024, 10:00:00] Alice: hi\r\nsecond line\r\n[01/02/2024, 10:00:05] Bob: yo"
        messages = self.parser.parse("chat.txt", raw)
        self.assertEqual([m.content for m in messages], ["hi\nsecond line", "yo"])

    def test_no_headers_yields_empty(self) -> None:
        self.assertEqual(self.parser.parse("chat.txt", "just some text"), ())


class TestPlainChatParser(unittest.TestCase):
    def test_unbracketed_style(self) -> None:
        raw = "12/09/2024, 21:17 - John: message one\ncontinued\n\n12/09/2024, 9:18 PM - Jane: reply"
        messages = PlainChatParser().parse("chat.txt", raw)
        self.assertEqual(len(messages), 2)
        self.assertEqual(messages[0].sender, "John")
        self.assertEqual(messages[0].content, "message one\ncontinued")
        self.assertEqual(messages[1].time, "9:18 PM")


class TestParseArchive(unittest.TestCase):
    def test_txt_without_structure_falls_back_to_whole_file(self) -> None:
        raw = "hello there\nsee https://example.com"
        self.assertEqual(parse_archive("notes.txt", raw), (ParsedMessage("", "", "unknown", raw),))

    def test_json_with_unknown_shape_falls_back_to_whole_file(self) -> None:
        raw = '{"something": "else"}'
        self.assertEqual(parse_archive("export.json", raw), (ParsedMessage("", "", "unknown", raw),))

    def test_other_extension_is_plain_text(self) -> None:
        raw = "[01/02/2024, 10:00:00] Alice: hi"
        self.assertEqual(parse_archive("chat.md", raw), (ParsedMessage("", "", "unknown", raw),))

    def test_extension_match_is_case_insensitive(self) -> None:
        raw = "[01/02/2024, 10:00:00] Alice: hi"
        (message,) = parse_archive("CHAT.TXT", raw)
        self.assertEqual(message.sender, "Alice")

    def test_failing_parser_falls_through(self) -> None:
        class _Broken(MessageParser):
            name = "broken"

            def parse(self, filename, raw_text):
                raise RuntimeError("boom")

        messages = parse_archive("a.txt", "text", parsers=[_Broken(), "plain_text"])
        self.assertEqual(messages, (ParsedMessage("", "", "unknown", "text"),))

    def test_parser_names_resolve_through_registry(self) -> None:
        self.assertIsInstance(get_message_parser("chatgpt"), ChatGPTExportParser)
        self.assertIsInstance(get_message_parser("Structured-Chat"), StructuredChatParser)
        self.assertIsInstance(get_message_parser("plain chat"), PlainChatParser)
        self.assertIsNone(get_message_parser("pdf"))

        raw = "12/03/2024, 21:17 - Ana: hello"
        (message,) = parse_archive("chat.txt", raw, parsers=["plain_chat"])
        self.assertEqual(message.sender, "Ana")
        with self.assertRaises(ValueError):
            parse_archive("chat.txt", raw, parsers=["pdf"])

    def test_decode_archive_strips_bom_and_replaces_invalid_bytes(self) -> None:
        self.assertEqual(decode_archive(b"\xef\xbb\xbfhello"), "hello")
        self.assertEqual(decode_archive(b"a\xffb"), "a�b")


if __name__ == "__main__":
    unittest.main()
