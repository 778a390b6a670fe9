from typing import Any, Dict, Iterable, Mapping

from sqlalchemy.orm import Session

from .errors import ImageValidationError
from .models import ImageMetadata


TEXT_FIELDS = ("alt_text", "title", "description", "caption", "credit", "copyright")
MIN_ALT_TEXT_LENGTH = 3


def clean_tags(tags: Iterable[Any]) -> list:
    return [t.strip() for t in tags if isinstance(t, str) and t.strip()]


def sanitize_metadata(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Trim every field and fill missing ones with empty values.

    Idempotent: sanitizing an already sanitized mapping returns an equal one.
    """
    clean: Dict[str, Any] = {}
    for field in TEXT_FIELDS:
        value = metadata.get(field)
        clean[field] = value.strip() if isinstance(value, str) else ""
    tags = metadata.get("tags")
    clean["tags"] = clean_tags(tags) if isinstance(tags, (list, tuple)) else []
    return clean


def metadata_as_dict(record: ImageMetadata) -> Dict[str, Any]:
    data = {field: getattr(record, field) or "" for field in TEXT_FIELDS}
    data["tags"] = list(record.tags or [])
    return data


def apply_update(db: Session, image_id: str, changes: Mapping[str, Any]) -> ImageMetadata:
    """Merge the submitted fields into the stored metadata of ``image_id``.

    Fields absent from ``changes`` keep their stored values. Alt text must be
    at least three characters once trimmed, and cannot stay empty.
    """
    record = db.query(ImageMetadata).filter(ImageMetadata.image_id == image_id).one_or_none()
    current = metadata_as_dict(record) if record else sanitize_metadata({})

    if "alt_text" in changes:
        alt_text = changes["alt_text"]
        if not isinstance(alt_text, str) or len(alt_text.strip()) < MIN_ALT_TEXT_LENGTH:
            raise ImageValidationError(
                "Alt text is required and must be at least 3 characters long"
            )
    elif not current["alt_text"]:
        raise ImageValidationError("Alt text is required and must be at least 3 characters long")

    merged = sanitize_metadata({**current, **{k: v for k, v in changes.items() if v is not None}})

    if record is None:
        record = ImageMetadata(image_id=image_id)
        db.add(record)
    for field, value in merged.items():
        setattr(record, field, value)
    db.commit()
    db.refresh(record)
    return record


def seed_alt_text(db: Session, image_id: str, alt_text: str) -> None:
    """Create the metadata row for a fresh upload when an alt text came with it."""
    clean = sanitize_metadata({"alt_text": alt_text})
    if not clean["alt_text"]:
        return
    record = ImageMetadata(image_id=image_id, **clean)
    db.add(record)
