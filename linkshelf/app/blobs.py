"""Filesystem blob store for raw archive uploads."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional


class UploadError(RuntimeError):
    """Raised when a raw archive cannot be stored."""


_BLOB_ROOT_OVERRIDE: Optional[Path] = None


def set_blob_root_override(path: Optional[str]) -> None:
    global _BLOB_ROOT_OVERRIDE
    if path:
        _BLOB_ROOT_OVERRIDE = Path(path)
    else:
        _BLOB_ROOT_OVERRIDE = None


def _resolve_blob_root() -> Path:
    if _BLOB_ROOT_OVERRIDE is not None:
        return _BLOB_ROOT_OVERRIDE

    env_path = os.getenv("LINKSHELF_BLOB_DIR")
    if env_path:
        return Path(env_path)

    return Path(__file__).resolve().parents[2] / "data" / "blobs"


def archive_blob_path(user_id: str, filename: str, now_ms: Optional[int] = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"archives/{user_id}/{timestamp}_{filename}"


def upload(path: str, data: bytes) -> None:
    root = _resolve_blob_root().resolve()
    target = (root / path).resolve()
    if root not in target.parents:
        raise UploadError(f"blob path escapes the store root: {path}")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as exc:
        raise UploadError(f"could not write blob {path}: {exc}") from exc


def read(path: str) -> bytes:
    root = _resolve_blob_root().resolve()
    target = (root / path).resolve()
    if root not in target.parents:
        raise FileNotFoundError(path)
    return target.read_bytes()
