from __future__ import annotations

import logging
import math
import os

from PIL import Image, ImageDraw, ImageFont

from marketplace.config import WatermarkSettings, watermark_settings

logger = logging.getLogger(__name__)

# Relative anchor points for the diagonal pattern (x, y as fractions of the usable area).
_DIAGONAL_ANCHORS = [
    (0.2, 0.3), (0.5, 0.3), (0.8, 0.3),
    (0.2, 0.7), (0.5, 0.7), (0.8, 0.7),
]


def _text_mask(text: str, scale: int) -> Image.Image:
    """Binary "L" mask of `text` in the default bitmap font, scaled up by `scale`."""
    font = ImageFont.load_default()
    measure = ImageDraw.Draw(Image.new("L", (1, 1)))
    left, top, right, bottom = measure.textbbox((0, 0), text, font=font)
    w, h = max(1, right - left), max(1, bottom - top)
    mask = Image.new("L", (w, h), 0)
    ImageDraw.Draw(mask).text((-left, -top), text, fill=255, font=font)
    scale = max(1, min(5, int(scale)))
    if scale > 1:
        mask = mask.resize((w * scale, h * scale), Image.NEAREST)
    # Only keep strong text pixels so JPEG sources never get a boxed background.
    return mask.point(lambda v: 255 if v > 200 else 0)


def _diagonal_positions(width: int, height: int, text_w: int, text_h: int, angle: float, count: int) -> list[tuple[int, int]]:
    margin_x, margin_y = width * 0.1, height * 0.1
    usable_w, usable_h = width - 2 * margin_x, height - 2 * margin_y
    rad = math.radians(angle)
    cx, cy = width / 2, height / 2
    out: list[tuple[int, int]] = []
    for x_ratio, y_ratio in _DIAGONAL_ANCHORS[: max(0, count)]:
        dx = margin_x + x_ratio * usable_w - cx
        dy = margin_y + y_ratio * usable_h - cy
        x = int(cx + (dx * math.cos(rad) - dy * math.sin(rad)) - text_w / 2)
        y = int(cy + (dx * math.sin(rad) + dy * math.cos(rad)) - text_h / 2)
        out.append((max(0, min(x, width - text_w)), max(0, min(y, height - text_h))))
    return out


def add_watermark(image_path: str, settings: WatermarkSettings | None = None) -> bool:
    """
    Stamp the marketplace watermark onto an image file in place.

    Draws a rotated diagonal pattern plus a bottom-right corner mark.
    Returns False (and logs) on any failure; callers treat watermarking as best-effort.
    """
    s = settings or watermark_settings()
    if not os.path.isfile(image_path):
        logger.warning("Watermark: image file not found: %s", image_path)
        return False
    try:
        with Image.open(image_path) as src:
            fmt = (src.format or "").upper()
            if fmt not in {"JPEG", "PNG", "WEBP"}:
                logger.warning("Watermark: unsupported image type %s: %s", fmt, image_path)
                return False
            src.load()
            base = src.convert("RGBA")

        width, height = base.size
        scale = max(1, min(2, int(min(width, height) / 280)))
        mask = _text_mask(s.text, scale)
        text_w, text_h = mask.size
        alpha = int(round(255 * (127 - max(0, min(127, int(s.opacity)))) / 127))
        fill = (*s.color, alpha)

        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        positions = _diagonal_positions(width, height, text_w, text_h, s.angle, s.max_diagonal_marks)
        positions.append((max(0, width - text_w - s.corner_padding), max(0, height - text_h - s.corner_padding)))
        for x, y in positions:
            overlay.paste(fill, (x, y, x + text_w, y + text_h), mask)

        out = Image.alpha_composite(base, overlay)
        if fmt == "JPEG":
            out.convert("RGB").save(image_path, format="JPEG", quality=90)
        elif fmt == "PNG":
            out.save(image_path, format="PNG", compress_level=9)
        else:
            out.save(image_path, format="WEBP", quality=90)
        return True
    except Exception:
        logger.warning("Watermark: failed to watermark %s", image_path, exc_info=True)
        return False
