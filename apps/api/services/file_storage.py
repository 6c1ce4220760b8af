"""
Upload storage on the shared uploads volume.

The API writes, the worker reads. Paths stored in the database are absolute.
"""

from __future__ import annotations

import os
import time
from pathlib import Path

from core.config import settings


def safe_filename(name: str, default: str = "upload.png") -> str:
    base = os.path.basename(name or "")
    if not base:
        return default
    keep = []
    for ch in base:
        if ch.isalnum() or ch in (".", "_", "-"):
            keep.append(ch)
        else:
            keep.append("_")
    return "".join(keep)[:180]


def save_scan_image(client_id: int, original_filename: str, data: bytes) -> str:
    """Store scan bytes under <UPLOADS_DIR>/inbody-scans/<client_id>/ and return the path."""
    scan_dir = Path(settings.UPLOADS_DIR) / "inbody-scans" / str(client_id)
    scan_dir.mkdir(parents=True, exist_ok=True)
    stored_path = scan_dir / f"{int(time.time() * 1000)}-{safe_filename(original_filename)}"
    stored_path.write_bytes(data)
    return str(stored_path)


def read_file(path: str) -> bytes:
    stored = Path(path or "")
    if not stored.is_file():
        raise FileNotFoundError(f"Stored file missing: {path}")
    return stored.read_bytes()


def delete_file(path: str) -> None:
    """Remove a stored upload; a file that is already gone is fine."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
