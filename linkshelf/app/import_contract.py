"""Shared contracts for archive import.

This module defines immutable data models and the parser strategy interface
that every export format implementation follows before its output is handed
to link enrichment and persistence.
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def checksum_payload(payload: Mapping[str, Any] | Iterable[Mapping[str, Any]] | str | bytes) -> str:
    """Create a deterministic checksum for archive provenance."""

    if isinstance(payload, bytes):
        return hashlib.sha256(payload).hexdigest()
    if isinstance(payload, str):
        normalized = payload
    elif isinstance(payload, Mapping):
        normalized = json.dumps(dict(payload), sort_keys=True, separators=(",", ":"))
    elif isinstance(payload, Iterable):
        normalized = json.dumps(list(payload), sort_keys=True, separators=(",", ":"))
    else:
        normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"))

    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ParsedMessage:
    """One message recovered from an export file.

    ``date`` and ``time`` are kept in the export's own format and are empty
    strings when the source carries no timestamp.
    """

    date: str
    time: str
    sender: str
    content: str


@dataclass(frozen=True)
class EnrichedLink:
    url: str
    title: str


@dataclass
class WriteTally:
    """Accumulated outcome of a run of independent record writes."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def record_success(self, record_id: str) -> None:
        self.succeeded.append(record_id)

    def record_failure(self, reason: str) -> None:
        self.failed.append(reason)

    def as_counts(self) -> Dict[str, int]:
        return {"written": len(self.succeeded), "failed": len(self.failed)}


@dataclass
class ArchiveImportResult:
    """Aggregate outcome of one archive import."""

    archive_id: str
    storage_path: str
    filename: str
    parsed_messages: int = 0
    skipped_messages: int = 0
    notes: WriteTally = field(default_factory=WriteTally)
    links: WriteTally = field(default_factory=WriteTally)

    @property
    def has_failures(self) -> bool:
        return bool(self.notes.failed or self.links.failed)

    def counts(self) -> Dict[str, Any]:
        return {
            "messages": self.parsed_messages,
            "skipped_messages": self.skipped_messages,
            "notes": self.notes.as_counts(),
            "links": self.links.as_counts(),
        }


class MessageParser(ABC):
    """Contract shared by each export format parser."""

    name: str = "generic"

    @abstractmethod
    def parse(self, filename: str, raw_text: str) -> Optional[Tuple[ParsedMessage, ...]]:
        """Return parsed messages, or ``None``/empty when the format is not recognised."""

    def accepts(self, filename: str) -> bool:
        return True
