from unittest.mock import patch

import pytest
from PIL import Image

from newsdesk.variants import (
    IMAGE_VARIANTS,
    compression_ratio,
    encode,
    generate_variants,
    negotiate_format,
    read_source_info,
    resize_cover,
    should_resize,
)


def test_variant_configuration():
    expected = {
        "thumbnail": (150, 150, 80),
        "small": (400, 300, 85),
        "medium": (800, 600, 85),
        "large": (1200, 900, 90),
    }
    for name, (width, height, quality) in expected.items():
        profile = IMAGE_VARIANTS[name]
        assert (profile.width, profile.height, profile.quality) == (width, height, quality)
    assert IMAGE_VARIANTS["original"].quality == 95
    assert IMAGE_VARIANTS["original"].width is None


@pytest.mark.parametrize(
    "source, target, expected",
    [
        ((1920, 1080), (800, 600), True),
        ((400, 300), (800, 600), False),
        ((1000, 800), (800, 600), True),
        ((700, 700), (800, 600), True),
        ((800, 600), (800, 600), False),
    ],
)
def test_should_resize(source, target, expected):
    assert should_resize(source, target) is expected


def test_compression_ratio():
    assert compression_ratio(1_000_000, 250_000) == "75.0%"
    assert compression_ratio(500_000, 100_000) == "80.0%"
    assert compression_ratio(2_000_000, 1_000_000) == "50.0%"
    assert compression_ratio(0, 10) == "0.0%"


def test_negotiate_format():
    assert negotiate_format("image/avif,image/webp,*/*") == "webp"
    assert negotiate_format("image/png,image/*") == "jpeg"
    assert negotiate_format("") == "jpeg"
    assert negotiate_format(None) == "jpeg"


def test_resize_cover_fills_target_exactly():
    img = Image.new("RGB", (2000, 1000), (10, 20, 30))
    out = resize_cover(img, IMAGE_VARIANTS["medium"])
    assert out.size == (800, 600)


def test_resize_cover_never_upscales_small_sources():
    img = Image.new("RGB", (320, 240))
    for profile in IMAGE_VARIANTS.values():
        out = resize_cover(img, profile)
        assert out.width <= 320 and out.height <= 240


def test_resize_cover_keeps_original_size():
    img = Image.new("RGB", (3000, 2000))
    assert resize_cover(img, IMAGE_VARIANTS["original"]).size == (3000, 2000)


def test_generate_variants_writes_webp_and_jpeg(tmp_path):
    source = tmp_path / "image-1-2.jpg"
    Image.new("RGB", (2000, 1500), (120, 80, 40)).save(source, format="JPEG")
    written = []

    variants = generate_variants(source, source.name, tmp_path / "variants", written=written)

    assert len(variants) == 10
    assert sorted(p.name for p in written) == sorted(v.filename for v in variants)
    medium = {v.format: v for v in variants if v.name == "medium"}
    assert medium["webp"].filename == "image-1-2-medium.webp"
    assert medium["jpeg"].filename == "image-1-2-medium.jpg"
    with Image.open(medium["webp"].path) as img:
        assert img.size == (800, 600)
        assert img.format == "WEBP"
    with Image.open(medium["jpeg"].path) as img:
        assert img.size == (800, 600)
        assert img.format == "JPEG"
    original = [v for v in variants if v.name == "original"]
    assert {(v.width, v.height) for v in original} == {(2000, 1500)}


def test_generate_variants_handles_transparency(tmp_path):
    source = tmp_path / "avatar-1-2.png"
    Image.new("RGBA", (500, 500), (0, 0, 0, 0)).save(source, format="PNG")

    variants = generate_variants(source, source.name, tmp_path / "variants")

    assert len(variants) == 10
    assert read_source_info(source).has_alpha is True


def test_generate_variants_skips_failed_encodes(tmp_path):
    source = tmp_path / "image-3-4.jpg"
    Image.new("RGB", (300, 300)).save(source, format="JPEG")
    real_encode = encode

    def flaky_encode(img, fmt, quality):
        if fmt == "webp":
            raise OSError("encoder unavailable")
        return real_encode(img, fmt, quality)

    with patch("newsdesk.variants.encode", side_effect=flaky_encode):
        variants = generate_variants(source, source.name, tmp_path / "variants")

    assert {v.format for v in variants} == {"jpeg"}
    assert len(variants) == 5
    assert list((tmp_path / "variants").glob("*.webp")) == []


def test_original_variant_goes_through_tinify_when_enabled(tmp_path, monkeypatch):
    source = tmp_path / "image-5-6.jpg"
    Image.new("RGB", (100, 100)).save(source, format="JPEG")
    calls = []

    def fake_compress(data):
        calls.append(len(data))
        return data

    monkeypatch.setattr("newsdesk.variants.tinify_client.is_enabled", lambda: True)
    monkeypatch.setattr("newsdesk.variants.tinify_client.compress", fake_compress)

    generate_variants(source, source.name, tmp_path / "variants")

    # one call per output format of the original variant only
    assert len(calls) == 2


def test_end_to_end_medium_variant_from_large_jpeg(tmp_path):
    source = tmp_path / "image-7-8.jpg"
    Image.new("RGB", (2000, 1500), (1, 2, 3)).save(source, format="JPEG")

    variants = generate_variants(source, source.name, tmp_path / "variants")

    chosen = next(v for v in variants if v.name == "medium" and v.format == negotiate_format("image/webp"))
    assert (chosen.width, chosen.height) == (800, 600)
    fallback = next(v for v in variants if v.name == "medium" and v.format == negotiate_format("*/*"))
    assert fallback.path.suffix == ".jpg"


@pytest.mark.parametrize(
    "source, expected",
    [
        ((700, 700), (700, 525)),
        ((1000, 500), (667, 500)),
        ((640, 1200), (640, 480)),
    ],
)
def test_resize_cover_crops_without_enlarging_mixed_sources(source, expected):
    img = Image.new("RGB", source)
    out = resize_cover(img, IMAGE_VARIANTS["medium"])
    assert out.size == expected
    assert out.width <= source[0] and out.height <= source[1]


def test_resize_cover_scales_when_both_axes_exceed():
    img = Image.new("RGB", (900, 600))
    assert resize_cover(img, IMAGE_VARIANTS["medium"]).size == (800, 600)
