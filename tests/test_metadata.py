import pytest

from newsdesk.errors import ImageValidationError
from newsdesk.metadata import apply_update, metadata_as_dict, sanitize_metadata, seed_alt_text
from newsdesk.models import ImageMetadata


def test_sanitize_fills_missing_fields():
    assert sanitize_metadata({}) == {
        "alt_text": "",
        "title": "",
        "description": "",
        "caption": "",
        "credit": "",
        "copyright": "",
        "tags": [],
    }


def test_sanitize_trims_and_drops_bad_tags():
    clean = sanitize_metadata(
        {"alt_text": "  A cat  ", "title": 42, "tags": [" news ", "", 7, "sport"]}
    )
    assert clean["alt_text"] == "A cat"
    assert clean["title"] == ""
    assert clean["tags"] == ["news", "sport"]


def test_sanitize_is_idempotent():
    raw = {"alt_text": " x y ", "caption": "\tcap\n", "tags": [" a ", "b "]}
    once = sanitize_metadata(raw)
    assert sanitize_metadata(once) == once


def test_apply_update_requires_alt_text_on_first_write(db_session):
    with pytest.raises(ImageValidationError) as exc:
        apply_update(db_session, "image-1-1", {"title": "No alt"})
    assert exc.value.message == "Alt text is required and must be at least 3 characters long"


@pytest.mark.parametrize("alt_text", ["ab", "   ab   ", "", None])
def test_apply_update_rejects_short_alt_text(db_session, alt_text):
    with pytest.raises(ImageValidationError):
        apply_update(db_session, "image-1-1", {"alt_text": alt_text})


def test_apply_update_merges_with_stored_values(db_session):
    apply_update(
        db_session,
        "image-1-1",
        {"alt_text": "Harbour at dawn", "title": "Harbour", "credit": "Desk", "tags": ["port"]},
    )

    record = apply_update(db_session, "image-1-1", {"title": "  New title  "})

    assert metadata_as_dict(record) == {
        "alt_text": "Harbour at dawn",
        "title": "New title",
        "description": "",
        "caption": "",
        "credit": "Desk",
        "copyright": "",
        "tags": ["port"],
    }
    assert db_session.query(ImageMetadata).count() == 1


def test_seed_alt_text_ignores_blank(db_session):
    seed_alt_text(db_session, "image-2-2", "   ")
    seed_alt_text(db_session, "image-3-3", " Seeded ")
    db_session.commit()

    rows = {r.image_id: r.alt_text for r in db_session.query(ImageMetadata).all()}
    assert rows == {"image-3-3": "Seeded"}
