"""Size-checked reading of uploaded import files."""

from __future__ import annotations

from os import SEEK_END

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from formengine.core.config import settings
from formengine.core.exceptions import ParseError


MULTIPART_OVERHEAD_BYTES = 64 * 1024


def content_length_exceeds_limit(content_length_header: str | None) -> bool:
    """Cheap pre-check on the request's Content-Length before touching the body."""
    if not content_length_header:
        return False
    try:
        content_length = int(content_length_header)
    except (TypeError, ValueError):
        return False
    return content_length > settings.IMPORT_MAX_FILE_SIZE_BYTES + MULTIPART_OVERHEAD_BYTES


async def read_import_upload(file: UploadFile) -> bytes:
    """
    Read an uploaded spreadsheet into memory.

    The spooled file is measured with a seek first, so oversized uploads are
    rejected without loading them. Raises ParseError for empty or oversized
    files.
    """

    def _measure() -> int:
        stream = file.file
        original_pos = stream.tell()
        try:
            stream.seek(0, SEEK_END)
            return stream.tell()
        finally:
            stream.seek(original_pos)

    size = await run_in_threadpool(_measure)
    if size == 0:
        raise ParseError("File is empty")
    if size > settings.IMPORT_MAX_FILE_SIZE_BYTES:
        raise ParseError(f"File size exceeds {settings.import_max_file_size_mb:g}MB limit")
    return await file.read()
