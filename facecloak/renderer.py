"""
Effect rendering module for facecloak.

This module composites concealment effects over face regions:
- Gaussian blur and pixelation, blended through a radial mask so the
  effect fades out towards the edge of the expanded face box
- Emoji covers drawn with Pillow on an opaque disk and alpha-composited
  over the face

Regions are applied independently, in order, on a copy of the frame.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .errors import RenderError
from .geometry import PixelRect, Region, to_pixel_rect

logger = logging.getLogger(__name__)


class EffectKind(Enum):
    """Concealment effect applied to a face."""
    BLUR = "blur"
    PIXELATE = "pixelate"
    EMOJI = "emoji"


@dataclass(frozen=True)
class EffectAssignment:
    """A region and the effect that conceals it."""
    region: Region
    kind: EffectKind = EffectKind.BLUR


class EffectRenderer:
    """Base class for effect renderers."""

    def apply(self, frame: np.ndarray, assignments: Sequence[EffectAssignment]) -> np.ndarray:
        """
        Return a new frame with every assigned region concealed.

        Raises:
            RenderError: If compositing cannot complete
        """
        raise NotImplementedError


class OpenCVEffectRenderer(EffectRenderer):
    """Effect renderer backed by OpenCV filters and Pillow text drawing."""

    def __init__(self, blur_radius: int = 30, pixelate_divisions: int = 8,
                 margin_x: float = 0.4, margin_y: float = 0.5,
                 mask_inner_ratio: float = 0.35, mask_outer_ratio: float = 0.65,
                 pixelate_mask_inner_ratio: float = 0.4, pixelate_mask_outer_ratio: float = 0.6,
                 emoji: str = "🙂", emoji_font: Optional[Path] = None,
                 emoji_backdrop: str = "#FFCC4D"):
        self.blur_radius = blur_radius
        self.pixelate_divisions = pixelate_divisions
        self.margin_x = margin_x
        self.margin_y = margin_y
        self.mask_inner_ratio = mask_inner_ratio
        self.mask_outer_ratio = mask_outer_ratio
        self.pixelate_mask_inner_ratio = pixelate_mask_inner_ratio
        self.pixelate_mask_outer_ratio = pixelate_mask_outer_ratio
        self.emoji = emoji
        self.emoji_font = emoji_font
        self.emoji_backdrop = emoji_backdrop
        self._handlers = {
            EffectKind.BLUR: self._apply_blur,
            EffectKind.PIXELATE: self._apply_pixelate,
            EffectKind.EMOJI: self._apply_emoji,
        }

    @classmethod
    def from_config(cls, config) -> "OpenCVEffectRenderer":
        return cls(
            blur_radius=config.blur_radius,
            pixelate_divisions=config.pixelate_divisions,
            margin_x=config.margin_x,
            margin_y=config.margin_y,
            mask_inner_ratio=config.mask_inner_ratio,
            mask_outer_ratio=config.mask_outer_ratio,
            pixelate_mask_inner_ratio=config.pixelate_mask_inner_ratio,
            pixelate_mask_outer_ratio=config.pixelate_mask_outer_ratio,
            emoji=config.emoji,
            emoji_font=config.emoji_font,
            emoji_backdrop=config.emoji_backdrop,
        )

    def apply(self, frame: np.ndarray, assignments: Sequence[EffectAssignment]) -> np.ndarray:
        if frame.ndim != 3 or frame.shape[2] != 3:
            raise RenderError(f"Expected an HxWx3 frame, got shape {frame.shape}")

        output = frame.copy()
        if not assignments:
            return output

        height, width = frame.shape[:2]
        for assignment in assignments:
            rect = to_pixel_rect(assignment.region, width, height, self.margin_x, self.margin_y)
            handler = self._handlers.get(assignment.kind)
            if handler is None:
                raise RenderError(f"Unsupported effect kind: {assignment.kind}")
            try:
                output = handler(output, rect)
            except RenderError:
                raise
            except (cv2.error, ValueError, OSError) as e:
                raise RenderError(f"{assignment.kind.value} effect failed: {e}") from e

        return output

    def _padded_bounds(self, rect: PixelRect, pad: int, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
        """Bounds of the rect plus `pad` pixels, clipped to the frame."""
        grown = PixelRect(rect.x - pad, rect.y - pad, rect.w + 2 * pad, rect.h + 2 * pad)
        return grown.clip(width, height)

    def _radial_mask(self, rect: PixelRect, bounds: Tuple[int, int, int, int],
                     inner_ratio: float, outer_ratio: float) -> np.ndarray:
        """
        Float mask over `bounds`: 1 inside the inner radius, fading linearly
        to 0 at the outer radius, centred on the rect.
        """
        x0, y0, x1, y1 = bounds
        cx, cy = rect.center
        inner = min(rect.w, rect.h) * inner_ratio
        outer = max(rect.w, rect.h) * outer_ratio

        ys, xs = np.mgrid[y0:y1, x0:x1].astype(np.float32)
        distance = np.sqrt((xs + 0.5 - cx) ** 2 + (ys + 0.5 - cy) ** 2)
        if outer <= inner:
            return (distance <= outer).astype(np.float32)
        return np.clip((outer - distance) / (outer - inner), 0.0, 1.0)

    def _blend(self, frame: np.ndarray, effect: np.ndarray, mask: np.ndarray,
               bounds: Tuple[int, int, int, int]) -> np.ndarray:
        x0, y0, x1, y1 = bounds
        region = frame[y0:y1, x0:x1].astype(np.float32)
        alpha = mask[..., None]
        blended = effect.astype(np.float32) * alpha + region * (1.0 - alpha)
        frame[y0:y1, x0:x1] = np.clip(blended + 0.5, 0, 255).astype(np.uint8)
        return frame

    def _apply_blur(self, frame: np.ndarray, rect: PixelRect) -> np.ndarray:
        height, width = frame.shape[:2]
        # Blur a padded window so the kernel sees real pixels at the region edge
        pad = int(self.blur_radius * 2)
        window = self._padded_bounds(rect, pad, width, height)
        if window is None:
            return frame

        x0, y0, x1, y1 = window
        kernel = 2 * int(self.blur_radius) + 1
        blurred = cv2.GaussianBlur(frame[y0:y1, x0:x1], (kernel, kernel), self.blur_radius / 2.0)

        target = rect.clip(width, height)
        if target is None:
            return frame
        tx0, ty0, tx1, ty1 = target
        effect = blurred[ty0 - y0:ty1 - y0, tx0 - x0:tx1 - x0]
        mask = self._radial_mask(rect, target, self.mask_inner_ratio, self.mask_outer_ratio)
        return self._blend(frame, effect, mask, target)

    def _apply_pixelate(self, frame: np.ndarray, rect: PixelRect) -> np.ndarray:
        height, width = frame.shape[:2]
        target = rect.clip(width, height)
        if target is None:
            return frame

        x0, y0, x1, y1 = target
        block = max(1, int(round(max(rect.w, rect.h) / self.pixelate_divisions)))
        roi = frame[y0:y1, x0:x1]
        small_w = max(1, (x1 - x0) // block)
        small_h = max(1, (y1 - y0) // block)
        small = cv2.resize(roi, (small_w, small_h), interpolation=cv2.INTER_AREA)
        mosaic = cv2.resize(small, (x1 - x0, y1 - y0), interpolation=cv2.INTER_NEAREST)
        mask = self._radial_mask(rect, target,
                                 self.pixelate_mask_inner_ratio, self.pixelate_mask_outer_ratio)
        return self._blend(frame, mosaic, mask, target)

    def _load_font(self, size: int):
        if self.emoji_font is not None:
            return ImageFont.truetype(str(self.emoji_font), size)
        return ImageFont.load_default(size=size)

    def _apply_emoji(self, frame: np.ndarray, rect: PixelRect) -> np.ndarray:
        height, width = frame.shape[:2]
        side = max(1, int(round(max(rect.w, rect.h) * 1.2)))
        cx, cy = rect.center

        glyph = Image.new("RGBA", (side, side), (0, 0, 0, 0))
        draw = ImageDraw.Draw(glyph)
        # The disk covers the face; the glyph alone may be only an outline
        draw.ellipse((0, 0, side - 1, side - 1), fill=self.emoji_backdrop)
        font = self._load_font(max(1, int(side * 0.85)))
        draw.text((side / 2, side / 2), self.emoji, font=font, anchor="mm",
                  embedded_color=True, fill=(40, 40, 40, 255))

        cover = PixelRect(cx - side / 2.0, cy - side / 2.0, side, side)
        target = cover.clip(width, height)
        if target is None:
            return frame

        x0, y0, x1, y1 = target
        ox = x0 - int(round(cover.x))
        oy = y0 - int(round(cover.y))
        rgba = np.asarray(glyph, dtype=np.uint8)[oy:oy + (y1 - y0), ox:ox + (x1 - x0)]
        if rgba.shape[0] != y1 - y0 or rgba.shape[1] != x1 - x0:
            # Rounding can leave the glyph one pixel short of the target
            rgba = cv2.resize(rgba, (x1 - x0, y1 - y0), interpolation=cv2.INTER_LINEAR)

        alpha = rgba[..., 3].astype(np.float32) / 255.0
        return self._blend(frame, rgba[..., :3], alpha, target)


def assign_effect(regions: Sequence[Region], kind: EffectKind) -> List[EffectAssignment]:
    """Pair every region with the same effect kind, keeping region order."""
    return [EffectAssignment(region=region, kind=kind) for region in regions]
