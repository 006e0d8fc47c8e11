"""Tests for the compression ladder."""

import io

import pytest
from PIL import Image

from attachment_shrinker.core.errors import ImageProcessingError
from attachment_shrinker.imaging.compressor import (
    CompressionEngine,
    compress_to_budget,
    encode_jpeg,
    is_image_file,
    load_image,
    resize_longest_side,
    to_jpeg_name,
)


@pytest.mark.parametrize(
    "name",
    ["Photo.PNG", "photo.png", "a.jpg", "b.JPEG", "c.heic", "d.HEIF", "e.webp", "f.avif", "g.tiff", "h.TIF"],
)
def test_image_extensions(name: str) -> None:
    assert is_image_file(name)


@pytest.mark.parametrize("name", ["report.pdf", "notes.txt", "archive.png.zip", "jpg", "photo"])
def test_non_image_names(name: str) -> None:
    assert not is_image_file(name)


def test_jpeg_name_replaces_extension() -> None:
    assert to_jpeg_name("scan.png") == "scan.jpg"
    assert to_jpeg_name("IMG_0001.HEIC") == "IMG_0001.jpg"
    assert to_jpeg_name("photo.jpeg") == "photo.jpg"
    assert to_jpeg_name("my.holiday.webp") == "my.holiday.jpg"


def test_under_budget_returns_none(noise_image) -> None:
    data = noise_image(32, 32)
    assert CompressionEngine().compress(data, "small.png", len(data), 80) is None


def test_non_image_returns_none() -> None:
    assert CompressionEngine().compress(b"%PDF" * 1000, "report.pdf", 10, 80) is None


def test_quality_ladder_picks_best_fitting_quality(noise_image) -> None:
    data = noise_image(160, 160)
    image = load_image(data)
    size_80 = len(encode_jpeg(image, 80))
    size_60 = len(encode_jpeg(image, 60))
    assert size_60 < size_80 < len(data)
    budget = (size_60 + size_80) // 2

    result = CompressionEngine().compress(data, "noise.png", budget, 80)

    assert result is not None
    assert result.outcome.quality == 60
    assert result.outcome.compressed_size_bytes == size_60
    assert result.outcome.resized_to is None
    assert not result.outcome.best_effort
    assert result.outcome.new_name == "noise.jpg"


def test_start_quality_skips_higher_steps(noise_image) -> None:
    data = noise_image(160, 160)
    image = load_image(data)
    size_40 = len(encode_jpeg(image, 40))

    result = CompressionEngine().compress(data, "noise.png", len(data) - 1, 50)

    assert result is not None
    assert result.outcome.quality == 40
    assert result.outcome.compressed_size_bytes == size_40


def test_small_image_gets_best_effort_without_resize(noise_image) -> None:
    data = noise_image(100, 100)
    image = load_image(data)
    size_40 = len(encode_jpeg(image, 40))

    result = CompressionEngine().compress(data, "tiny.png", 100, 80)

    assert result is not None
    assert result.outcome.best_effort
    assert result.outcome.resized_to is None
    assert result.outcome.quality == 40
    assert len(result.data) == size_40
    assert result.outcome.compressed_size_bytes > 100


def test_resize_phase_runs_after_quality_phase(noise_image) -> None:
    data = noise_image(400, 200)
    engine = CompressionEngine(resize_steps=(300, 200))
    image = load_image(data)
    size_q40 = len(encode_jpeg(image, 40))
    size_300 = len(encode_jpeg(resize_longest_side(image, 300), 40))
    assert size_300 < size_q40
    budget = (size_300 + size_q40) // 2

    result = engine.compress(data, "wide.png", budget, 80)

    assert result is not None
    assert result.outcome.resized_to == 300
    assert result.outcome.quality == 40
    assert not result.outcome.best_effort
    with Image.open(io.BytesIO(result.data)) as decoded:
        assert decoded.size == (300, 150)
        assert decoded.format == "JPEG"


def test_resize_ladder_skips_steps_not_smaller_than_longest_side(noise_image) -> None:
    data = noise_image(150, 250)
    engine = CompressionEngine(resize_steps=(300, 250, 200, 100))

    result = engine.compress(data, "tall.png", 50, 80)

    assert result is not None
    assert result.outcome.best_effort
    assert result.outcome.resized_to == 100
    with Image.open(io.BytesIO(result.data)) as decoded:
        assert decoded.size == (60, 100)


def test_no_candidate_returns_none(noise_image) -> None:
    data = noise_image(64, 64)
    assert CompressionEngine().compress(data, "tiny.png", 10, 30) is None


def test_alpha_is_flattened(noise_image) -> None:
    data = noise_image(120, 120, mode="RGBA")

    result = compress_to_budget(data, "alpha.png", len(data) - 1, 80)

    assert result is not None
    with Image.open(io.BytesIO(result.data)) as decoded:
        assert decoded.mode == "RGB"


def test_undecodable_data_raises() -> None:
    with pytest.raises(ImageProcessingError):
        CompressionEngine().compress(b"not an image" * 100, "fake.jpg", 10, 80)


def test_empty_quality_ladder_rejected() -> None:
    with pytest.raises(ValueError):
        CompressionEngine(quality_steps=())
