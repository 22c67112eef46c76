"""FastAPI backend for linkshelf archive imports, notes and links."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from . import blobs, pipeline, storage
from .enrichment import DEFAULT_CONCURRENCY
from .import_contract import now_iso
from .title_service import describe_resolver, load_title_resolver

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="linkshelf API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_RECORD_COLLECTIONS = {"notes", "links"}


class NoteCreate(BaseModel):
    text: str


class LinkCreate(BaseModel):
    url: str


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


_enrich_concurrency = _env_int("LINKSHELF_ENRICH_CONCURRENCY", DEFAULT_CONCURRENCY)
_skip_existing_links = _env_flag("LINKSHELF_IMPORT_SKIP_EXISTING_LINKS")
storage.set_db_path_override(os.getenv("LINKSHELF_DB_PATH"))
blobs.set_blob_root_override(os.getenv("LINKSHELF_BLOB_DIR"))


@app.on_event("startup")
def _startup() -> None:
    storage.ensure_schema()


title_resolver = load_title_resolver()


def _require_user(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def _require_collection(collection: str) -> str:
    if collection not in _RECORD_COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"unknown collection '{collection}'")
    return collection


def _event_for(
    user_id: str,
    event_type: str,
    message: str,
    level: str = "info",
    payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return storage.append_event(event_type, message, level, payload=payload, user_id=user_id)


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "service": "linkshelf",
        "title_resolver": describe_resolver(title_resolver),
        "enrich_concurrency": _enrich_concurrency,
        "updated_at": now_iso(),
    }


@app.post("/api/categories/{category_id}/import")
async def import_archive_file(
    category_id: str,
    source_file: UploadFile = File(...),
    user_id: str = Depends(_require_user),
) -> Dict[str, Any]:
    raw_data = await source_file.read()
    filename = source_file.filename or "archive.txt"
    try:
        result = await pipeline.import_archive(
            user_id=user_id,
            category_id=category_id,
            filename=filename,
            raw=raw_data,
            resolver=title_resolver,
            concurrency=_enrich_concurrency,
            skip_existing_links=_skip_existing_links,
        )
    except blobs.UploadError as exc:
        _event_for(
            user_id,
            "import.failed",
            f"Import failed for {filename}: {exc}",
            "error",
            {"user_id": user_id, "category_id": category_id, "filename": filename},
        )
        raise HTTPException(status_code=502, detail=f"Upload failed: {exc}")
    except Exception as exc:
        LOGGER.exception("Import of %s failed", filename)
        _event_for(
            user_id,
            "import.failed",
            f"Import failed for {filename}: {exc}",
            "error",
            {"user_id": user_id, "category_id": category_id, "filename": filename},
        )
        raise HTTPException(status_code=500, detail=f"Import failed: {exc}")

    counts = result.counts()
    _event_for(
        user_id,
        "import.completed",
        f"Imported {filename} into {category_id}",
        "warning" if result.has_failures else "info",
        {"archive_id": result.archive_id, "user_id": user_id, "category_id": category_id, "counts": counts},
    )
    return {
        "status": "completed",
        "archive_id": result.archive_id,
        "storage_path": result.storage_path,
        "filename": result.filename,
        "counts": counts,
        "updated_at": now_iso(),
    }


@app.get("/api/categories/{category_id}/notes")
def list_notes(
    category_id: str,
    q: Optional[str] = None,
    user_id: str = Depends(_require_user),
) -> Dict[str, Any]:
    rows = storage.search_records("notes", user_id, category_id, q)
    return {"notes": rows, "updated_at": now_iso()}


@app.post("/api/categories/{category_id}/notes")
def create_note(category_id: str, payload: NoteCreate, user_id: str = Depends(_require_user)) -> Dict[str, Any]:
    try:
        note = pipeline.add_note(user_id, category_id, payload.text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"note": note}


@app.get("/api/categories/{category_id}/links")
def list_links(
    category_id: str,
    q: Optional[str] = None,
    user_id: str = Depends(_require_user),
) -> Dict[str, Any]:
    rows = storage.search_records("links", user_id, category_id, q)
    return {"links": rows, "updated_at": now_iso()}


@app.post("/api/categories/{category_id}/links")
async def create_link(category_id: str, payload: LinkCreate, user_id: str = Depends(_require_user)) -> Dict[str, Any]:
    try:
        link = await pipeline.add_link(user_id, category_id, payload.url, title_resolver)
    except pipeline.DuplicateLinkError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"link": link}


@app.delete("/api/categories/{category_id}/{collection}")
def delete_category_records(
    category_id: str,
    collection: str,
    user_id: str = Depends(_require_user),
) -> Dict[str, Any]:
    _require_collection(collection)
    deleted = storage.delete_scope(collection, user_id, category_id)
    _event_for(
        user_id,
        "records.deleted",
        f"Deleted {deleted} {collection} from {category_id}",
        "info",
        {"user_id": user_id, "category_id": category_id, "collection": collection},
    )
    return {"deleted": deleted, "updated_at": now_iso()}


@app.delete("/api/{collection}/{record_id}")
def delete_record(collection: str, record_id: str, user_id: str = Depends(_require_user)) -> Dict[str, Any]:
    _require_collection(collection)
    if not storage.delete_record(collection, record_id, user_id):
        raise HTTPException(status_code=404, detail=f"{collection} record '{record_id}' not found")
    return {"deleted": record_id, "updated_at": now_iso()}


@app.get("/api/categories/{category_id}/export")
def export_category(
    category_id: str,
    export_format: str = Query(default="json", alias="format"),
    user_id: str = Depends(_require_user),
) -> Response:
    try:
        body = pipeline.export_category(user_id, category_id, export_format)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    disposition = {"Content-Disposition": f'attachment; filename="collection_{category_id}.{export_format}"'}
    if export_format == "txt":
        return PlainTextResponse(body, headers=disposition)
    return Response(content=body, media_type="application/json", headers=disposition)


@app.get("/api/events")
def get_events(limit: int = 25, user_id: str = Depends(_require_user)) -> Dict[str, Any]:
    events = storage.list_events(limit, user_id=user_id)
    return {"events": events, "updated_at": now_iso()}
