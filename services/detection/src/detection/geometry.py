"""Box coordinate conversions between normalized, pixel and display spaces.

Normalized boxes have their origin at the bottom-left corner of the image;
pixel and display boxes have it at the top-left corner, like numpy rows.
"""
from __future__ import annotations

from vision_shared.events.schemas import Rect


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def pixels_to_normalized(
    x1: float, y1: float, x2: float, y2: float, width: int, height: int
) -> Rect:
    """Convert a top-left-origin pixel xyxy box to a normalized bottom-left-origin Rect."""
    nx1 = _clamp(x1 / width, 0.0, 1.0)
    nx2 = _clamp(x2 / width, 0.0, 1.0)
    ny_top = _clamp(y1 / height, 0.0, 1.0)
    ny_bottom = _clamp(y2 / height, 0.0, 1.0)
    return Rect(x=nx1, y=1.0 - ny_bottom, width=nx2 - nx1, height=ny_bottom - ny_top)


def normalized_to_pixels(box: Rect, width: int, height: int) -> tuple[int, int, int, int]:
    """Convert a normalized box to integer pixel xyxy bounds clipped to the image.

    The result may be empty (x2 <= x1 or y2 <= y1) when the box lies outside
    the image.
    """
    x1 = int(round(_clamp(box.min_x, 0.0, 1.0) * width))
    x2 = int(round(_clamp(box.max_x, 0.0, 1.0) * width))
    y1 = int(round(_clamp(1.0 - box.max_y, 0.0, 1.0) * height))
    y2 = int(round(_clamp(1.0 - box.min_y, 0.0, 1.0) * height))
    return x1, y1, x2, y2


def to_display_rect(box: Rect, display_width: float, display_height: float) -> Rect:
    """Map a normalized box into a top-left-origin presentation space."""
    return Rect(
        x=box.min_x * display_width,
        y=(1.0 - box.max_y) * display_height,
        width=box.width * display_width,
        height=box.height * display_height,
    )


def scale_about_center(box: Rect, factor: float) -> Rect:
    """Grow (or shrink) a box around its centre by ``factor``."""
    cx = box.x + box.width / 2
    cy = box.y + box.height / 2
    w = box.width * factor
    h = box.height * factor
    return Rect(x=cx - w / 2, y=cy - h / 2, width=w, height=h)
