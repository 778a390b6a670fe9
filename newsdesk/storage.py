"""Local filesystem layout for uploaded images and their variants.

Originals live in ``<root>/<directory>/<filename>`` and derived variants in
``<root>/<directory>/variants/<stem>-<variant>.<ext>``.
"""

import logging
import os
import random
import time
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional

from .errors import ImageValidationError

logger = logging.getLogger(__name__)


ARTICLE_DIR = "articles"
AUTHOR_DIR = "authors"
IMAGE_DIR = "images"
TEMP_DIR = "temp"
UPLOAD_DIRS = (IMAGE_DIR, ARTICLE_DIR, AUTHOR_DIR)
VARIANTS_SUBDIR = "variants"

_FIELD_DIRECTORIES = {
    "featuredImage": ARTICLE_DIR,
    "gallery": ARTICLE_DIR,
    "avatar": AUTHOR_DIR,
}


def validate_filename(filename: str) -> str:
    """Reject names that could escape the upload directories."""
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        raise ImageValidationError("Invalid filename")
    return filename


def directory_for_field(fieldname: str) -> str:
    return _FIELD_DIRECTORIES.get(fieldname, IMAGE_DIR)


def generate_filename(fieldname: str, original_name: str) -> str:
    ext = os.path.splitext(PurePosixPath(original_name.replace("\\", "/")).name)[1].lower()
    millis = int(time.time() * 1000)
    suffix = random.randint(0, 10**9)
    return f"{fieldname}-{millis}-{suffix}{ext}"


def image_id_for(filename: str) -> str:
    return os.path.splitext(filename)[0]


def variant_filename(filename: str, variant: str, ext: str) -> str:
    return f"{image_id_for(filename)}-{variant}.{ext}"


class UploadStorage:
    def __init__(self, root: Path, public_prefix: str = "/uploads") -> None:
        self.root = Path(root)
        self.public_prefix = "/" + public_prefix.strip("/")

    def init_directories(self) -> None:
        """Create every upload directory; raises ``OSError`` when the root is not writable."""
        for name in UPLOAD_DIRS:
            self.variants_dir(name).mkdir(parents=True, exist_ok=True)
        (self.root / TEMP_DIR).mkdir(parents=True, exist_ok=True)
        logger.info("Upload directories ready under %s", self.root)

    def path_for(self, directory: str, filename: str) -> Path:
        return self.root / directory / filename

    def variants_dir(self, directory: str) -> Path:
        return self.root / directory / VARIANTS_SUBDIR

    def variant_path(self, directory: str, filename: str) -> Path:
        return self.variants_dir(directory) / filename

    def url_for(self, directory: str, filename: str) -> str:
        return f"{self.public_prefix}/{directory}/{filename}"

    def variant_url(self, directory: str, filename: str) -> str:
        return f"{self.public_prefix}/{directory}/{VARIANTS_SUBDIR}/{filename}"

    def probe(self, filename: str) -> Optional[str]:
        """Find which upload directory holds ``filename`` by checking each in turn."""
        for directory in UPLOAD_DIRS:
            if self.path_for(directory, filename).is_file():
                return directory
        return None

    def probe_variant(self, filename: str) -> Optional[str]:
        for directory in UPLOAD_DIRS:
            if self.variant_path(directory, filename).is_file():
                return directory
        return None

    def variant_files(self, directory: str, filename: str) -> List[Path]:
        stem = image_id_for(filename)
        folder = self.variants_dir(directory)
        if not folder.is_dir():
            return []
        return sorted(p for p in folder.glob(f"{stem}-*") if p.is_file())

    def remove(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Error deleting file %s", path)
