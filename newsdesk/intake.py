"""Multipart upload intake: limits, type filtering and writing files to disk."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from starlette.datastructures import FormData, UploadFile

from .errors import UploadLimitError
from .storage import UploadStorage, directory_for_field, generate_filename

logger = logging.getLogger(__name__)


SINGLE_UPLOAD_FIELDS = ("image", "featuredImage", "avatar")
BATCH_UPLOAD_FIELDS = ("images", "gallery")

CHUNK_SIZE = 1024 * 1024


@dataclass
class StoredFile:
    fieldname: str
    original_name: str
    mimetype: str
    directory: str
    filename: str
    path: Path
    size: int


def _mb(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):g}MB"


def collect_files(
    form: FormData,
    *,
    allowed_fields: Sequence[str],
    max_count: int,
    max_files: int,
) -> List[Tuple[str, UploadFile]]:
    """Pick the file parts out of a parsed form and enforce count/field/type limits."""
    files = [
        (field, value)
        for field, value in form.multi_items()
        if isinstance(value, UploadFile) and value.filename
    ]
    if len(files) > max_files:
        raise UploadLimitError(
            f"Too many files. Maximum is {max_files} files.", code="LIMIT_FILE_COUNT"
        )
    if len(files) > max_count or any(field not in allowed_fields for field, _ in files):
        raise UploadLimitError(
            "Unexpected field name for file upload.", code="LIMIT_UNEXPECTED_FILE"
        )
    for _, upload in files:
        check_mimetype(upload.content_type)
    return files


def check_mimetype(content_type: Optional[str]) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise UploadLimitError(
            "Only image files (JPEG, PNG, GIF, WebP) are allowed.", code="INVALID_FILE_TYPE"
        )


async def store_upload(
    storage: UploadStorage,
    fieldname: str,
    upload: UploadFile,
    *,
    max_size: int,
) -> StoredFile:
    """Stream ``upload`` into its destination directory under a generated name."""
    directory = directory_for_field(fieldname)
    filename = generate_filename(fieldname, upload.filename or "")
    path = storage.path_for(directory, filename)
    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise UploadLimitError(
                        f"File too large. Maximum size is {_mb(max_size)}.",
                        code="LIMIT_FILE_SIZE",
                    )
                out.write(chunk)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    logger.info("Stored upload %s (%s bytes) in %s", filename, size, directory)
    return StoredFile(
        fieldname=fieldname,
        original_name=upload.filename or filename,
        mimetype=upload.content_type or "application/octet-stream",
        directory=directory,
        filename=filename,
        path=path,
        size=size,
    )


@contextmanager
def discard_on_error(storage: UploadStorage, paths: List[Path]) -> Iterator[List[Path]]:
    """Delete every path collected in ``paths`` if the block exits with an exception."""
    try:
        yield paths
    except BaseException:
        logger.warning("Discarding %d file(s) after failed upload", len(paths))
        storage.remove(paths)
        raise
