"""Tests for import contract models and helpers."""

from __future__ import annotations

import unittest
from dataclasses import FrozenInstanceError

from linkshelf.app.import_contract import (
    ArchiveImportResult,
    EnrichedLink,
    ParsedMessage,
    WriteTally,
    checksum_payload,
)


class TestImportContract(unittest.TestCase):
    def test_models_are_immutable(self) -> None:
        message = ParsedMessage(date="01/02/2024", time="10:00:00", sender="Alice", content="hi")
        with self.assertRaises(FrozenInstanceError):
            message.content = "changed"

        link = EnrichedLink(url="https://example.com", title="Example")
        with self.assertRaises(FrozenInstanceError):
            link.title = ""

    def test_checksum_is_deterministic(self) -> None:
        payload = {"a": 1, "b": 2}
        reordered = {"b": 2, "a": 1}
        self.assertEqual(checksum_payload(payload), checksum_payload(reordered))
        self.assertEqual(checksum_payload(b"raw"), checksum_payload(b"raw"))
        self.assertNotEqual(checksum_payload(b"raw"), checksum_payload(b"other"))

    def test_import_result_counts_fold_both_tallies(self) -> None:
        result = ArchiveImportResult(archive_id="archive-1", storage_path="archives/u/1_a.txt", filename="a.txt")
        result.parsed_messages = 3
        result.skipped_messages = 1
        result.notes.record_success("note-1")
        result.notes.record_failure("disk full")
        result.links.record_success("link-1")
        result.links.record_success("link-2")

        self.assertTrue(result.has_failures)
        self.assertEqual(
            result.counts(),
            {
                "messages": 3,
                "skipped_messages": 1,
                "notes": {"written": 1, "failed": 1},
                "links": {"written": 2, "failed": 0},
            },
        )

    def test_write_tally_starts_empty(self) -> None:
        tally = WriteTally()
        self.assertEqual(tally.as_counts(), {"written": 0, "failed": 0})


if __name__ == "__main__":
    unittest.main()
