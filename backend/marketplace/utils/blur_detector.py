from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
from PIL import Image, features

from marketplace.config import BlurThresholds, blur_thresholds

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"JPEG", "PNG", "WEBP"}


@dataclass(frozen=True)
class BlurResult:
    success: bool
    # 0.0 = sharp, 1.0 = very blurry. Logging only; never drives accept/reject.
    blur_score: float
    is_blurry: bool
    quality_rating: str
    variance: float | None = None
    blur_severity: str | None = None
    method: str = "laplacian"
    width: int = 0
    height: int = 0
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _very_poor(error: str, *, width: int = 0, height: int = 0) -> BlurResult:
    return BlurResult(
        success=False,
        blur_score=1.0,
        is_blurry=True,
        quality_rating="very_poor",
        method="none",
        width=width,
        height=height,
        error=error,
    )


def laplacian_variance(gray: np.ndarray) -> float:
    """
    Variance of |4*c - top - bottom - left - right| over interior pixels
    (the 1-pixel border is excluded).
    """
    g = gray.astype(np.int64)
    center = g[1:-1, 1:-1]
    lap = np.abs(4 * center - g[:-2, 1:-1] - g[2:, 1:-1] - g[1:-1, :-2] - g[1:-1, 2:])
    return float(lap.var())


def to_gray(img: Image.Image) -> np.ndarray:
    rgb = np.asarray(img.convert("RGB"), dtype=np.float64)
    gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    # Truncate like an integer cast of the luminance value.
    return np.floor(gray).astype(np.int64)


def variance_to_blur_score(variance: float) -> float:
    if variance < 100:
        score = 0.8 + (100 - variance) / 100 * 0.2
    elif variance < 500:
        score = 0.5 + (500 - variance) / 400 * 0.3
    elif variance < 1000:
        score = 0.3 + (1000 - variance) / 500 * 0.2
    elif variance < 2000:
        score = 0.1 + (2000 - variance) / 1000 * 0.2
    else:
        score = min(0.1, max(0.0, 0.1 - (variance - 2000) / 10000))
    return max(0.0, min(1.0, score))


def variance_to_quality(variance: float) -> str:
    if variance < 100:
        return "very_poor"
    if variance < 500:
        return "poor"
    if variance < 1000:
        return "acceptable"
    return "good"


def _can_decode(fmt: str) -> bool:
    if fmt == "WEBP":
        return bool(features.check("webp"))
    return True


class BlurDetector:
    """
    Laplacian-variance sharpness classifier for uploaded property photos.

    Only `is_blurry` feeds the automated reject/queue decision:
    variance < high  -> HIGH severity, blurry (reject)
    high <= v < medium -> MEDIUM severity, accepted (wide-angle / outdoor shots)
    v >= medium -> LOW severity, accepted

    When pixel decoding is unavailable the detector falls back to a cruder
    bytes-per-pixel heuristic that uses its own `blur_score > 0.4` cut-off.
    """

    def __init__(self, thresholds: BlurThresholds | None = None, *, decode_pixels: bool = True) -> None:
        self.thresholds = thresholds or blur_thresholds()
        self.decode_pixels = decode_pixels

    def classify(self, variance: float) -> tuple[str, bool]:
        if variance < self.thresholds.high:
            return "HIGH", True
        if variance < self.thresholds.medium:
            return "MEDIUM", False
        return "LOW", False

    def detect(self, image_path: str) -> BlurResult:
        if not os.path.isfile(image_path):
            return _very_poor("Image file not found")
        try:
            with Image.open(image_path) as img:
                fmt = (img.format or "").upper()
                width, height = img.size
                if fmt not in SUPPORTED_FORMATS:
                    return _very_poor("Unsupported image type", width=width, height=height)
                if not self.decode_pixels or not _can_decode(fmt):
                    logger.warning("BlurDetector: pixel decoding unavailable for %s, using fallback method", fmt)
                    return self._fallback(image_path, width, height)
                if width < 3 or height < 3:
                    return _very_poor("Image too small", width=width, height=height)
                try:
                    gray = to_gray(img)
                except OSError as exc:
                    return _very_poor(f"Failed to load image ({exc.__class__.__name__})", width=width, height=height)
        except Exception as exc:
            logger.warning("BlurDetector: invalid image %s: %s", image_path, exc)
            return _very_poor("Invalid image file")

        variance = laplacian_variance(gray)
        severity, is_blurry = self.classify(variance)
        logger.debug(
            "BlurDetector: variance=%s high_threshold=%s medium_threshold=%s severity=%s is_blurry=%s",
            variance,
            self.thresholds.high,
            self.thresholds.medium,
            severity,
            is_blurry,
        )
        return BlurResult(
            success=True,
            blur_score=round(variance_to_blur_score(variance), 3),
            is_blurry=is_blurry,
            quality_rating=variance_to_quality(variance),
            variance=round(variance, 2),
            blur_severity=severity,
            width=width,
            height=height,
        )

    def _fallback(self, image_path: str, width: int, height: int) -> BlurResult:
        pixels = int(width) * int(height)
        if pixels <= 0:
            return _very_poor("Invalid image", width=width, height=height)
        bytes_per_pixel = os.path.getsize(image_path) / pixels
        if bytes_per_pixel < 0.5:
            score = 0.7
        elif bytes_per_pixel < 1.0:
            score = 0.4
        elif bytes_per_pixel < 2.0:
            score = 0.2
        else:
            score = 0.1
        is_blurry = score > 0.4
        logger.debug("BlurDetector (fallback): blur_score=%s is_blurry=%s", score, is_blurry)
        return BlurResult(
            success=True,
            blur_score=round(score, 3),
            is_blurry=is_blurry,
            quality_rating="poor" if is_blurry else "acceptable",
            method="fallback",
            width=width,
            height=height,
        )
