"""
Region-of-Interest Module

Geometry value types and the two operations that move image data across the
ROI boundary:

- extract_roi: cut the (clipped) ROI out of a source image
- composite_roi: paste a processed ROI back into a full-size canvas

Tools compute geometry relative to the extracted sub-image and add the
clipped ROI origin (``roi_offset``) back before reporting or drawing.
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    """A 2-D point in pixel coordinates."""

    x: float
    y: float

    def offset(self, dx: float, dy: float) -> "Point":
        return Point(self.x + dx, self.y + dy)

    def as_int(self) -> Tuple[int, int]:
        return int(round(self.x)), int(round(self.y))


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle: top-left corner plus extent."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def offset(self, dx: int, dy: int) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def intersection_over_union(self, other: "Rect") -> float:
        """Overlap ratio of two rectangles; 0.0 when either is empty."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)

        intersection = max(0, right - left) * max(0, bottom - top)
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


def roi_enabled(roi: Rect, use_roi: bool) -> bool:
    """True if the ROI should restrict processing (flag set, positive extent)."""
    return bool(use_roi) and roi is not None and not roi.is_empty


def clip_roi(roi: Rect, image_shape: Tuple[int, ...]) -> Rect:
    """
    Clip an ROI to the bounds of an image.

    The result is the intersection of the ROI with ``[0, width] x [0, height]``.
    Negative origins are moved to zero and oversized extents are cut at the
    image border. When the ROI lies completely outside the image the result
    is an empty rectangle.

    Args:
        roi: Requested region of interest
        image_shape: Shape of the image as (height, width[, channels])

    Returns:
        Clipped rectangle, always inside the image bounds

    Example:
        >>> clip_roi(Rect(-10, 20, 50, 500), (100, 200))
        Rect(x=0, y=20, width=40, height=80)
    """
    height, width = image_shape[:2]

    x0 = min(max(0, int(roi.x)), width)
    y0 = min(max(0, int(roi.y)), height)
    x1 = max(x0, min(width, int(roi.x) + int(roi.width)))
    y1 = max(y0, min(height, int(roi.y) + int(roi.height)))

    return Rect(x0, y0, x1 - x0, y1 - y0)


def roi_offset(image: np.ndarray, roi: Rect, use_roi: bool) -> Tuple[int, int]:
    """Origin of the clipped ROI in image coordinates, (0, 0) when unused."""
    if not roi_enabled(roi, use_roi):
        return 0, 0
    clipped = clip_roi(roi, image.shape)
    return clipped.x, clipped.y


def extract_roi(image: np.ndarray, roi: Rect, use_roi: bool) -> np.ndarray:
    """
    Extract the region of interest from an image.

    Always returns a deep copy so that tools never alias each other's buffers.

    Args:
        image: Source image
        roi: Region of interest
        use_roi: Whether the ROI is active

    Returns:
        Copy of the whole image when the ROI is disabled or degenerate,
        otherwise a copy of the clipped sub-region (possibly empty)
    """
    if not roi_enabled(roi, use_roi):
        return image.copy()

    clipped = clip_roi(roi, image.shape)
    if clipped.is_empty:
        logger.warning(
            f"ROI {roi.as_tuple()} does not overlap image of shape {image.shape[:2]}"
        )

    return image[clipped.y:clipped.bottom, clipped.x:clipped.right].copy()


def composite_roi(
    image: np.ndarray,
    processed: np.ndarray,
    roi: Rect,
    use_roi: bool,
    fill_color: Union[int, Tuple[int, ...]] = 0
) -> np.ndarray:
    """
    Place a processed ROI back into a full-size canvas.

    Pixels outside the clipped ROI are set to ``fill_color``. The canvas takes
    its height and width from ``image`` and its channel count and dtype from
    ``processed``. If ``processed`` does not match the clipped rectangle it is
    resized (linear interpolation) to fit.

    Args:
        image: Original full-size input image
        processed: Processed ROI image
        roi: Region of interest used for extraction
        use_roi: Whether the ROI is active
        fill_color: Value for pixels outside the ROI (default: black)

    Returns:
        Full-size image, or a copy of ``processed`` when the ROI is unused

    Example:
        >>> sub = extract_roi(image, Rect(10, 10, 50, 50), True)
        >>> full = composite_roi(image, 255 - sub, Rect(10, 10, 50, 50), True)
        >>> full.shape[:2] == image.shape[:2]
        True
    """
    if not roi_enabled(roi, use_roi):
        return processed.copy()

    height, width = image.shape[:2]
    canvas_shape = (height, width) + processed.shape[2:]
    canvas = np.empty(canvas_shape, dtype=processed.dtype)
    canvas[...] = fill_color

    clipped = clip_roi(roi, image.shape)
    if clipped.is_empty or processed.size == 0:
        return canvas

    if processed.shape[:2] != (clipped.height, clipped.width):
        logger.debug(
            f"Resizing processed ROI from {processed.shape[:2]} "
            f"to {(clipped.height, clipped.width)}"
        )
        processed = cv2.resize(
            processed,
            (clipped.width, clipped.height),
            interpolation=cv2.INTER_LINEAR
        )
        if processed.ndim < len(canvas_shape):
            processed = processed[:, :, np.newaxis]

    canvas[clipped.y:clipped.bottom, clipped.x:clipped.right] = processed

    return canvas
