"""Image-level statistics computed from decoded pixel data.

All functions are pure and deterministic for identical pixel input.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from PIL import Image, ImageFilter, ImageStat

# Placeholder: text coverage is reported but not computed
TEXT_RATIO_PLACEHOLDER = 0.0

DOMINANT_PALETTE_SIZE = 8


@dataclass
class ImageMetrics:
    """Normalized image statistics."""

    brightness: float
    contrast: float
    saturation: float
    dominant_color: List[int] = field(default_factory=lambda: [0, 0, 0])
    edge_density: float = 0.0
    text_ratio: float = TEXT_RATIO_PLACEHOLDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brightness": self.brightness,
            "contrast": self.contrast,
            "saturation": self.saturation,
            "dominantColor": list(self.dominant_color),
            "edgeDensity": self.edge_density,
            "textRatio": self.text_ratio,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def saturation_from_means(r: float, g: float, b: float) -> float:
    """
    HSL saturation of the mean color (not per-pixel saturation).

    Args:
        r, g, b: Mean channel values on a 0-255 scale

    Returns:
        Saturation in [0, 1]; exactly 0 for any gray (r == g == b)
    """
    cmax = max(r, g, b) / 255.0
    cmin = min(r, g, b) / 255.0
    lightness = (cmax + cmin) / 2

    if lightness == 0 or cmax == cmin:
        return 0.0

    denominator = 1 - abs(2 * lightness - 1)
    if denominator <= 0:
        return 0.0
    return _clamp((cmax - cmin) / denominator)


def dominant_color(image: Image.Image) -> List[int]:
    """Most frequent color after adaptive palette quantization."""
    rgb = image if image.mode == "RGB" else image.convert("RGB")
    quantized = rgb.quantize(colors=DOMINANT_PALETTE_SIZE, method=Image.Quantize.MEDIANCUT)

    colors = quantized.getcolors(maxcolors=256) or []
    if not colors:
        return [0, 0, 0]

    _, index = max(colors, key=lambda item: item[0])
    palette = quantized.getpalette() or []
    r, g, b = palette[index * 3:index * 3 + 3]
    return [int(r), int(g), int(b)]


def edge_density(image: Image.Image) -> float:
    """
    Fraction of edge intensity over a grayscale edge map.

    Sum of edge-pixel intensities divided by (pixel_count * 255). The filter
    leaves the 1-pixel border unfiltered, so it is cropped before summing.
    """
    gray = image.convert("L")
    if gray.width < 3 or gray.height < 3:
        return 0.0

    edges = gray.filter(ImageFilter.FIND_EDGES)
    interior = edges.crop((1, 1, edges.width - 1, edges.height - 1))

    pixel_count = interior.width * interior.height
    histogram = interior.histogram()
    total = sum(level * count for level, count in enumerate(histogram))
    return _clamp(total / (pixel_count * 255.0))


def _downscale(image: Image.Image, max_side: Optional[int]) -> Image.Image:
    if not max_side or max(image.size) <= max_side:
        return image
    scaled = image.copy()
    scaled.thumbnail((max_side, max_side))
    return scaled


def compute_metrics(image: Image.Image, max_side: Optional[int] = 512) -> ImageMetrics:
    """
    Compute brightness, contrast, saturation, dominant color and edge density.

    Args:
        image: Decoded image (converted to RGB; alpha is ignored)
        max_side: Downscale so the longest side is at most this many pixels

    Returns:
        ImageMetrics with values normalized to [0, 1]
    """
    rgb = image if image.mode == "RGB" else image.convert("RGB")
    rgb = _downscale(rgb, max_side)

    stat = ImageStat.Stat(rgb)
    means = stat.mean[:3]
    stddevs = stat.stddev[:3]

    return ImageMetrics(
        brightness=_clamp(sum(means) / 3 / 255.0),
        contrast=_clamp(sum(stddevs) / 3 / 255.0),
        saturation=saturation_from_means(*means),
        dominant_color=dominant_color(rgb),
        edge_density=edge_density(rgb),
    )


async def compute_metrics_async(image: Image.Image, max_side: Optional[int] = 512) -> ImageMetrics:
    """Run compute_metrics in a worker thread."""
    return await asyncio.to_thread(compute_metrics, image, max_side)
