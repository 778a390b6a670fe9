from pathlib import Path

import pytest

from newsdesk.errors import ImageValidationError
from newsdesk.intake import discard_on_error
from newsdesk.storage import (
    UploadStorage,
    directory_for_field,
    generate_filename,
    image_id_for,
    validate_filename,
    variant_filename,
)


@pytest.mark.parametrize("name", ["", "../etc/passwd", "a..b.jpg", "dir/file.jpg", "dir\\file.jpg"])
def test_validate_filename_rejects_traversal(name):
    with pytest.raises(ImageValidationError) as exc:
        validate_filename(name)
    assert exc.value.message == "Invalid filename"


def test_validate_filename_accepts_plain_names():
    assert validate_filename("image-1-2.jpg") == "image-1-2.jpg"


def test_directory_for_field():
    assert directory_for_field("featuredImage") == "articles"
    assert directory_for_field("gallery") == "articles"
    assert directory_for_field("avatar") == "authors"
    assert directory_for_field("image") == "images"
    assert directory_for_field("images") == "images"


def test_generate_filename_shape_and_uniqueness():
    names = {generate_filename("image", "Holiday Photo.JPG") for _ in range(50)}
    assert len(names) == 50
    for name in names:
        assert name.startswith("image-")
        assert name.endswith(".jpg")


def test_generate_filename_ignores_client_path():
    name = generate_filename("avatar", "..\\..\\evil/face.png")
    validate_filename(name)
    assert name.startswith("avatar-")
    assert name.endswith(".png")


def test_variant_naming():
    assert image_id_for("image-1-2.jpeg") == "image-1-2"
    assert variant_filename("image-1-2.jpeg", "thumbnail", "webp") == "image-1-2-thumbnail.webp"


def test_storage_layout(tmp_path):
    storage = UploadStorage(tmp_path, "uploads/")
    storage.init_directories()

    for directory in ("images", "articles", "authors"):
        assert (tmp_path / directory / "variants").is_dir()
    assert (tmp_path / "temp").is_dir()
    assert storage.url_for("images", "a.jpg") == "/uploads/images/a.jpg"
    assert storage.variant_url("authors", "a-small.webp") == "/uploads/authors/variants/a-small.webp"


def test_probe_and_variant_files(tmp_path):
    storage = UploadStorage(tmp_path)
    storage.init_directories()
    storage.path_for("authors", "avatar-1-2.jpg").write_bytes(b"x")
    for name in ("avatar-1-2-small.webp", "avatar-1-2-small.jpg", "avatar-1-23-small.jpg"):
        storage.variant_path("authors", name).write_bytes(b"x")

    assert storage.probe("avatar-1-2.jpg") == "authors"
    assert storage.probe("missing.jpg") is None
    assert storage.probe_variant("avatar-1-2-small.webp") == "authors"
    assert [p.name for p in storage.variant_files("authors", "avatar-1-2.jpg")] == [
        "avatar-1-2-small.jpg",
        "avatar-1-2-small.webp",
    ]


def test_discard_on_error_removes_written_files(tmp_path):
    storage = UploadStorage(tmp_path)
    first = tmp_path / "one.jpg"
    second = tmp_path / "two.jpg"

    with pytest.raises(RuntimeError):
        with discard_on_error(storage, []) as written:
            for path in (first, second):
                path.write_bytes(b"data")
                written.append(path)
            raise RuntimeError("boom")

    assert not first.exists()
    assert not second.exists()


def test_discard_on_error_keeps_files_on_success(tmp_path):
    storage = UploadStorage(tmp_path)
    kept = tmp_path / "kept.jpg"

    with discard_on_error(storage, []) as written:
        kept.write_bytes(b"data")
        written.append(kept)

    assert Path(kept).exists()
