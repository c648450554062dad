"""
Region geometry for facecloak.

Regions are normalized rectangles in [0, 1] with a bottom-left origin and Y
increasing upward, the convention face detectors report in. Pixel work
happens on top-left origin numpy arrays, so every conversion to pixels goes
through to_pixel_rect(), which flips the Y axis and adds the coverage
margins.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Region:
    """Normalized face rectangle, bottom-left origin."""
    x: float
    y: float
    w: float
    h: float

    def __post_init__(self):
        if self.w <= 0 or self.h <= 0:
            raise ValueError(f"Region width and height must be positive, got w={self.w} h={self.h}")

    @property
    def area(self) -> float:
        return self.w * self.h

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.w, self.h)


@dataclass(frozen=True)
class PixelRect:
    """Pixel rectangle, top-left origin. May extend past the frame."""
    x: float
    y: float
    w: float
    h: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)

    def clip(self, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
        """
        Integer (x0, y0, x1, y1) of the part of the rect inside a frame.

        Returns:
            Bounds suitable for array slicing, or None if nothing is visible
        """
        x0 = max(0, int(round(self.x)))
        y0 = max(0, int(round(self.y)))
        x1 = min(width, int(round(self.x + self.w)))
        y1 = min(height, int(round(self.y + self.h)))
        if x1 <= x0 or y1 <= y0:
            return None
        return x0, y0, x1, y1


def iou(a: Region, b: Region) -> float:
    """Intersection over union of two regions in the same coordinate space."""
    ix0 = max(a.x, b.x)
    iy0 = max(a.y, b.y)
    ix1 = min(a.x + a.w, b.x + b.w)
    iy1 = min(a.y + a.h, b.y + b.h)
    if ix1 <= ix0 or iy1 <= iy0:
        return 0.0

    intersection = (ix1 - ix0) * (iy1 - iy0)
    union = a.area + b.area - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def smooth(old: Region, new: Region, factor: float) -> Region:
    """Exponential smoothing, `factor` being the weight of the new region."""
    keep = 1.0 - factor
    return Region(
        x=old.x * keep + new.x * factor,
        y=old.y * keep + new.y * factor,
        w=old.w * keep + new.w * factor,
        h=old.h * keep + new.h * factor,
    )


def to_pixel_rect(region: Region, width: int, height: int,
                  margin_x: float = 0.4, margin_y: float = 0.5) -> PixelRect:
    """
    Convert a normalized region to an expanded pixel rectangle.

    The rect grows by `margin_x` of its width on the left and on the right
    and by `margin_y` of its height above and below, so foreheads and chins
    are covered and not only the raw detection box.

    Args:
        region: Normalized region, bottom-left origin
        width: Frame width in pixels
        height: Frame height in pixels
        margin_x: Horizontal margin per side, relative to the region width
        margin_y: Vertical margin per side, relative to the region height

    Returns:
        PixelRect with a top-left origin
    """
    pw = region.w * width
    ph = region.h * height
    px = region.x * width
    py = (1.0 - region.y - region.h) * height

    dx = pw * margin_x
    dy = ph * margin_y
    return PixelRect(x=px - dx, y=py - dy, w=pw + 2 * dx, h=ph + 2 * dy)


def from_pixel_box(x: float, y: float, w: float, h: float,
                   width: int, height: int) -> Optional[Region]:
    """
    Convert a top-left origin pixel box to a normalized region.

    The box is clipped to the frame first; a box with no visible area
    yields None.
    """
    x0 = min(max(x, 0.0), width)
    y0 = min(max(y, 0.0), height)
    x1 = min(max(x + w, 0.0), width)
    y1 = min(max(y + h, 0.0), height)
    if x1 <= x0 or y1 <= y0:
        return None

    nw = (x1 - x0) / width
    nh = (y1 - y0) / height
    return Region(x=x0 / width, y=1.0 - y1 / height, w=nw, h=nh)
