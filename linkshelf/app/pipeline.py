"""Archive import pipeline: parse, persist notes, enrich and persist links.

Order of operations for one import:
1) Upload the raw file to the blob store (failure aborts the import)
2) Write one archive metadata record referencing the blob path
3) For each parsed message in order, skip blank content, write the note,
   then extract, enrich and write its links one at a time

Note and link writes are independent: a failed write is logged, tallied and
skipped, and the batch carries on.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from . import blobs, storage
from .enrichment import DEFAULT_CONCURRENCY, TitleResolverFn, enrich_links, fallback_title
from .import_adapters import decode_archive, parse_archive
from .import_contract import (
    ArchiveImportResult,
    EnrichedLink,
    ParsedMessage,
    WriteTally,
    checksum_payload,
    now_iso,
)
from .links import extract_links

LOGGER = logging.getLogger(__name__)


class DuplicateLinkError(ValueError):
    """Raised when a link already exists in the same user/category scope."""


def _write(collection: str, record: Dict[str, Any], tally: WriteTally) -> Optional[str]:
    try:
        record_id = storage.insert_record(collection, record)
    except Exception as exc:
        LOGGER.error("Failed to write %s record: %s", collection, exc)
        tally.record_failure(str(exc))
        return None
    tally.record_success(record_id)
    return record_id


def _new_links(user_id: str, category_id: str, urls: Sequence[str]) -> List[str]:
    fresh = []
    for url in urls:
        try:
            exists = storage.record_exists("links", {"user_id": user_id, "category_id": category_id, "url": url})
        except Exception as exc:
            LOGGER.error("Existing-link check failed for %s: %s", url, exc)
            exists = False
        if exists:
            LOGGER.info("Skipping existing link %s in %s", url, category_id)
            continue
        fresh.append(url)
    return fresh


async def _persist_message(
    message: ParsedMessage,
    user_id: str,
    category_id: str,
    archive_id: str,
    resolver: TitleResolverFn,
    concurrency: int,
    skip_existing_links: bool,
    result: ArchiveImportResult,
) -> None:
    _write(
        "notes",
        {
            "user_id": user_id,
            "category_id": category_id,
            "sender": message.sender,
            "text": message.content,
            "date": message.date,
            "time": message.time,
            "archive_id": archive_id,
        },
        result.notes,
    )

    urls = extract_links(message.content)
    if skip_existing_links:
        urls = _new_links(user_id, category_id, urls)
    if not urls:
        return

    enriched: List[EnrichedLink] = await enrich_links(urls, resolver, concurrency)
    # Sequential writes, in extraction order.
    for link in enriched:
        if not link.url:
            continue
        _write(
            "links",
            {
                "user_id": user_id,
                "category_id": category_id,
                "url": link.url,
                "title": link.title,
                "archive_id": archive_id,
            },
            result.links,
        )


async def import_archive(
    user_id: str,
    category_id: str,
    filename: str,
    raw: bytes,
    resolver: TitleResolverFn,
    concurrency: int = DEFAULT_CONCURRENCY,
    skip_existing_links: bool = False,
) -> ArchiveImportResult:
    """Import one export file into the ``(user_id, category_id)`` scope.

    Raises ``blobs.UploadError`` when the raw file cannot be stored; in that
    case nothing is written to the record store.
    """

    text = decode_archive(raw)
    messages = parse_archive(filename, text)

    storage_path = blobs.archive_blob_path(user_id, filename)
    blobs.upload(storage_path, raw)

    archive_id = storage.insert_record(
        "archives",
        {
            "user_id": user_id,
            "category_id": category_id,
            "storage_path": storage_path,
            "filename": filename,
            "checksum": checksum_payload(raw),
        },
    )
    result = ArchiveImportResult(
        archive_id=archive_id,
        storage_path=storage_path,
        filename=filename,
        parsed_messages=len(messages),
    )

    for message in messages:
        if not message.content.strip():
            result.skipped_messages += 1
            continue
        await _persist_message(
            message,
            user_id=user_id,
            category_id=category_id,
            archive_id=archive_id,
            resolver=resolver,
            concurrency=concurrency,
            skip_existing_links=skip_existing_links,
            result=result,
        )

    LOGGER.info(
        "Imported %s for %s/%s: %d note(s), %d link(s), %d failed write(s)",
        filename,
        user_id,
        category_id,
        len(result.notes.succeeded),
        len(result.links.succeeded),
        len(result.notes.failed) + len(result.links.failed),
    )
    return result


def add_note(user_id: str, category_id: str, text: str) -> Dict[str, Any]:
    trimmed = (text or "").strip()
    if not trimmed:
        raise ValueError("note text is empty")
    note_id = storage.insert_record("notes", {"user_id": user_id, "category_id": category_id, "text": trimmed})
    return storage.get_record("notes", note_id) or {"id": note_id}


async def add_link(user_id: str, category_id: str, url: str, resolver: TitleResolverFn) -> Dict[str, Any]:
    """Add a manually entered link unless the scope already holds it."""

    trimmed = (url or "").strip()
    if not trimmed:
        raise ValueError("link url is empty")
    if storage.record_exists("links", {"user_id": user_id, "category_id": category_id, "url": trimmed}):
        raise DuplicateLinkError("This link already exists in this category.")

    title: Optional[str] = None
    try:
        title = await resolver(trimmed)
    except Exception as exc:
        LOGGER.warning("Title resolution failed for %s: %s", trimmed, exc)

    link_id = storage.insert_record(
        "links",
        {
            "user_id": user_id,
            "category_id": category_id,
            "url": trimmed,
            "title": fallback_title(trimmed, title),
        },
    )
    return storage.get_record("links", link_id) or {"id": link_id}


def _split_created_at(created_at: Optional[str]) -> tuple:
    try:
        moment = datetime.fromisoformat(created_at or "")
    except ValueError:
        return "", ""
    return moment.strftime("%d/%m/%Y"), moment.strftime("%H:%M:%S")


def export_category(user_id: str, category_id: str, fmt: str = "json") -> str:
    """Render all notes and links of a category as JSON or chat-style text."""

    notes = storage.query_records("notes", {"user_id": user_id, "category_id": category_id})
    links = storage.query_records("links", {"user_id": user_id, "category_id": category_id})

    if fmt == "json":
        payload = {
            "categoryId": category_id,
            "exportedAt": now_iso(),
            "notes": [
                {
                    "text": note["text"],
                    "sender": note.get("sender") or "",
                    "date": note.get("date") or "",
                    "time": note.get("time") or "",
                    "createdAt": note["created_at"],
                }
                for note in notes
            ],
            "links": [
                {
                    "url": link["url"],
                    "title": link.get("title") or link["url"],
                    "createdAt": link["created_at"],
                }
                for link in links
            ],
        }
        return json.dumps(payload, indent=2)

    if fmt == "txt":
        lines = []
        for note in notes:
            created_date, created_time = _split_created_at(note.get("created_at"))
            date = note.get("date") or created_date
            time = note.get("time") or created_time
            sender = note.get("sender") or "Me"
            lines.append(f"[{date}, {time}] {sender}: {note['text']}")
        for link in links:
            created_date, created_time = _split_created_at(link.get("created_at"))
            lines.append(f"[{created_date}, {created_time}] {link.get('title') or ''}: {link['url']}")
        return "\n".join(lines)

    raise ValueError(f"unsupported export format '{fmt}'")
