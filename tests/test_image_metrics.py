"""Unit tests for image metrics."""

from __future__ import annotations

import random

import pytest
from PIL import Image

from conftest import split_image
from src.services.image_metrics import (
    TEXT_RATIO_PLACEHOLDER,
    compute_metrics,
    compute_metrics_async,
    dominant_color,
    edge_density,
    saturation_from_means,
)


def noise_image(size: tuple[int, int] = (32, 32), seed: int = 42) -> Image.Image:
    rng = random.Random(seed)
    data = bytes(rng.randrange(256) for _ in range(size[0] * size[1] * 3))
    return Image.frombytes("RGB", size, data)


# =============================================================================
# Saturation
# =============================================================================


class TestSaturation:
    @pytest.mark.parametrize("level", [0, 1, 64, 128, 200, 255])
    def test_gray_is_unsaturated(self, level: int) -> None:
        assert saturation_from_means(level, level, level) == 0.0

    def test_pure_red_is_fully_saturated(self) -> None:
        assert saturation_from_means(255, 0, 0) == pytest.approx(1.0)

    def test_muted_color(self) -> None:
        assert saturation_from_means(200, 100, 100) == pytest.approx(0.476, abs=1e-3)

    def test_saturation_from_image_uses_mean_color(self) -> None:
        # Red and cyan halves average to gray
        image = Image.new("RGB", (10, 10), (255, 0, 0))
        image.paste((0, 255, 255), (5, 0, 10, 10))

        assert compute_metrics(image).saturation == pytest.approx(0.0, abs=1e-9)


# =============================================================================
# Brightness and contrast
# =============================================================================


class TestBrightnessContrast:
    def test_black_and_white(self) -> None:
        black = compute_metrics(Image.new("RGB", (8, 8), (0, 0, 0)))
        white = compute_metrics(Image.new("RGB", (8, 8), (255, 255, 255)))

        assert black.brightness == 0.0
        assert white.brightness == pytest.approx(1.0)
        assert black.contrast == 0.0
        assert white.contrast == pytest.approx(0.0, abs=1e-6)

    def test_split_image_contrast(self) -> None:
        metrics = compute_metrics(split_image())

        assert metrics.brightness == pytest.approx(0.5)
        assert metrics.contrast == pytest.approx(0.5)

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_values_are_normalized(self, seed: int) -> None:
        metrics = compute_metrics(noise_image(seed=seed))

        assert 0.0 <= metrics.brightness <= 1.0
        assert 0.0 <= metrics.contrast <= 1.0
        assert 0.0 <= metrics.saturation <= 1.0
        assert 0.0 <= metrics.edge_density <= 1.0

    def test_alpha_channel_is_ignored(self) -> None:
        rgba = Image.new("RGBA", (8, 8), (255, 255, 255, 0))

        assert compute_metrics(rgba).brightness == pytest.approx(1.0)


# =============================================================================
# Edge density
# =============================================================================


class TestEdgeDensity:
    @pytest.mark.parametrize("color", [(0, 0, 0), (128, 128, 128), (255, 0, 0), (255, 255, 255)])
    def test_uniform_image_has_no_edges(self, color: tuple[int, int, int]) -> None:
        assert edge_density(Image.new("RGB", (16, 16), color)) == 0.0

    def test_sharp_boundary_has_edges(self) -> None:
        assert edge_density(split_image()) > 0.0

    def test_tiny_image(self) -> None:
        assert edge_density(split_image((2, 2))) == 0.0


# =============================================================================
# Dominant color and placeholders
# =============================================================================


class TestDominantColor:
    def test_solid_red(self) -> None:
        r, g, b = dominant_color(Image.new("RGB", (10, 10), (255, 0, 0)))

        assert r >= 250
        assert g <= 5
        assert b <= 5

    def test_majority_color_wins(self) -> None:
        image = Image.new("RGB", (20, 20), (0, 0, 255))
        image.paste((255, 0, 0), (0, 0, 4, 4))

        r, g, b = dominant_color(image)

        assert b >= 250
        assert r <= 5


class TestComputeMetrics:
    def test_text_ratio_is_placeholder(self) -> None:
        metrics = compute_metrics(noise_image())

        assert metrics.text_ratio == TEXT_RATIO_PLACEHOLDER == 0.0

    def test_to_dict_keys(self) -> None:
        result = compute_metrics(Image.new("RGB", (4, 4), (10, 20, 30))).to_dict()

        assert set(result) == {
            "brightness",
            "contrast",
            "saturation",
            "dominantColor",
            "edgeDensity",
            "textRatio",
        }
        assert len(result["dominantColor"]) == 3

    def test_deterministic(self) -> None:
        image = noise_image()

        assert compute_metrics(image) == compute_metrics(image)

    def test_large_image_is_downscaled(self) -> None:
        image = Image.new("RGB", (2000, 1000), (0, 128, 0))

        metrics = compute_metrics(image, max_side=64)

        assert metrics.edge_density == 0.0
        assert image.size == (2000, 1000)

    @pytest.mark.asyncio
    async def test_async_matches_sync(self) -> None:
        image = noise_image()

        assert await compute_metrics_async(image) == compute_metrics(image)
