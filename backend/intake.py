"""
intake.py
=========
Upload intake: validate the multipart image field and stage it on disk.

  • read_upload()    — checks presence, declared MIME type and size, and
                       returns an UploadedImage. Nothing touches the disk
                       until every check has passed.
  • staged_upload()  — async context manager that writes the bytes under
                       UPLOAD_DIR with a collision-free name and removes the
                       file exactly once when the block exits, whatever the
                       exit path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import UploadFile

from backend.errors import ValidationError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_NAME_LEN = 64


@dataclass(frozen=True)
class UploadedImage:
    data: bytes
    content_type: str
    filename: str
    size: int


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

async def read_upload(upload: Optional[UploadFile], max_bytes: int) -> UploadedImage:
    """Validate an inbound file and read it into memory (at most max_bytes + 1)."""
    if upload is None or not upload.filename:
        raise ValidationError("No image file uploaded.")

    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise ValidationError("Invalid file type. Only images are allowed.")

    # Starlette has already spooled the part to a temp file; reading one byte
    # past the limit caps what is copied into memory.
    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(
            f"File too large. Maximum size is {_format_limit(max_bytes)}."
        )
    if not data:
        raise ValidationError("Uploaded file is empty.")

    return UploadedImage(
        data=data,
        content_type=content_type,
        filename=upload.filename,
        size=len(data),
    )


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------

def staged_filename(original: str) -> str:
    """`<time_ns>-<uuid8>-<sanitised original basename>`."""
    base = os.path.basename(original.replace("\\", "/")) or "upload"
    safe = _SAFE_NAME.sub("_", base).strip("._") or "upload"
    return f"{time.time_ns()}-{uuid.uuid4().hex[:8]}-{safe[-_MAX_NAME_LEN:]}"


@asynccontextmanager
async def staged_upload(uploaded: UploadedImage, upload_dir: str) -> AsyncIterator[str]:
    """Write the upload to upload_dir and yield its path; always remove it."""
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, staged_filename(uploaded.filename))

    # The write runs on a worker thread so the event loop keeps taking uploads.
    write = asyncio.ensure_future(asyncio.to_thread(_write_new, path, uploaded.data))
    try:
        await asyncio.shield(write)
    except asyncio.CancelledError:
        # The thread cannot be interrupted; drop the file once it lands.
        write.add_done_callback(lambda fut: _discard_written(fut, path))
        raise

    logger.debug("Staged upload %s (%d bytes)", path, uploaded.size)
    try:
        yield path
    finally:
        _remove(path)


def _write_new(path: str, data: bytes) -> None:
    # "xb" refuses to overwrite, so two requests can never share a file.
    fh = open(path, "xb")
    try:
        with fh:
            fh.write(data)
    except BaseException:
        _remove(path)
        raise


def _discard_written(write: "asyncio.Future[None]", path: str) -> None:
    if not write.cancelled() and write.exception() is None:
        _remove(path)


def _remove(path: str) -> None:
    try:
        os.unlink(path)
        logger.debug("Removed staged upload %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Failed to remove staged upload %s: %s", path, exc)


def _format_limit(max_bytes: int) -> str:
    if max_bytes >= 1024 * 1024:
        return f"{max_bytes / (1024 * 1024):g} MB"
    return f"{max_bytes} bytes"
