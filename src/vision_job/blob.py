"""
Blob Analysis Module

Extracts connected foreground regions (blobs) from a binarized image and
characterizes them with shape and size descriptors.

Workflow:
1. Convert the working region to grayscale
2. Binarize (internal threshold) or treat the input as already binary
3. Find contours
4. Compute descriptors and apply inclusive range filters
5. Sort by the selected key and truncate to the maximum count
6. Render the overlay with ROI offset applied
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .base import VisionTool
from .errors import ErrorKind
from .parameters import Parameter
from .preprocessing import to_grayscale
from .results import Graphic, GraphicType, ToolResult
from .roi import Point, Rect
from .visualization import (
    CENTER_COLOR,
    palette_color,
    render_graphics,
    roi_graphic,
    text_graphic
)

logger = logging.getLogger(__name__)

BBOX_COLOR = (255, 255, 0)
MIN_FIT_POINTS = 5


class BlobSortBy(Enum):
    AREA = "area"
    PERIMETER = "perimeter"
    CENTER_X = "center_x"
    CENTER_Y = "center_y"
    CIRCULARITY = "circularity"
    ASPECT_RATIO = "aspect_ratio"


class RetrievalMode(Enum):
    EXTERNAL = "external"
    LIST = "list"
    CCOMP = "ccomp"
    TREE = "tree"


class ApproximationMode(Enum):
    NONE = "none"
    SIMPLE = "simple"
    TC89_L1 = "tc89_l1"
    TC89_KCOS = "tc89_kcos"


_RETRIEVAL_FLAGS = {
    RetrievalMode.EXTERNAL: cv2.RETR_EXTERNAL,
    RetrievalMode.LIST: cv2.RETR_LIST,
    RetrievalMode.CCOMP: cv2.RETR_CCOMP,
    RetrievalMode.TREE: cv2.RETR_TREE,
}

_APPROXIMATION_FLAGS = {
    ApproximationMode.NONE: cv2.CHAIN_APPROX_NONE,
    ApproximationMode.SIMPLE: cv2.CHAIN_APPROX_SIMPLE,
    ApproximationMode.TC89_L1: cv2.CHAIN_APPROX_TC89_L1,
    ApproximationMode.TC89_KCOS: cv2.CHAIN_APPROX_TC89_KCOS,
}


@dataclass(frozen=True)
class RotatedBox:
    """Rotated rectangle or ellipse: center, full side lengths, angle (degrees)."""

    center: Point
    width: float
    height: float
    angle: float


@dataclass
class BlobRecord:
    """Shape and size descriptors of one blob."""

    id: int
    contour: List[Point] = field(default_factory=list)
    area: float = 0.0
    perimeter: float = 0.0
    center_x: float = 0.0
    center_y: float = 0.0
    bounding_rect: Rect = Rect()
    min_area_rect: Optional[RotatedBox] = None
    fit_ellipse: Optional[RotatedBox] = None
    angle: float = 0.0
    circularity: float = 0.0
    aspect_ratio: float = 0.0
    convexity: float = 0.0
    solidity: float = 0.0
    extent: float = 0.0
    equivalent_diameter: float = 0.0

    def offset(self, dx: int, dy: int) -> "BlobRecord":
        """Copy of this record translated by (dx, dy)."""
        if dx == 0 and dy == 0:
            return replace(self)

        def shift_box(box: Optional[RotatedBox]) -> Optional[RotatedBox]:
            if box is None:
                return None
            return replace(box, center=box.center.offset(dx, dy))

        return replace(
            self,
            contour=[p.offset(dx, dy) for p in self.contour],
            center_x=self.center_x + dx,
            center_y=self.center_y + dy,
            bounding_rect=self.bounding_rect.offset(dx, dy),
            min_area_rect=shift_box(self.min_area_rect),
            fit_ellipse=shift_box(self.fit_ellipse)
        )


def _rotated_box(box: Tuple) -> RotatedBox:
    (cx, cy), (w, h), angle = box
    return RotatedBox(Point(float(cx), float(cy)), float(w), float(h), float(angle))


def compute_blob_properties(contour: np.ndarray, blob_id: int) -> BlobRecord:
    """
    Calculate the geometric descriptors of a contour.

    Args:
        contour: OpenCV contour (N x 1 x 2 int array)
        blob_id: Identifier to assign

    Returns:
        BlobRecord in the contour's coordinate frame

    Example:
        >>> blob = compute_blob_properties(contour, 0)
        >>> round(blob.circularity, 2)
        0.89
    """
    points = contour.reshape(-1, 2)

    area = float(cv2.contourArea(contour))
    perimeter = float(cv2.arcLength(contour, True))
    x, y, w, h = cv2.boundingRect(contour)
    bounding_rect = Rect(int(x), int(y), int(w), int(h))

    moments = cv2.moments(contour)
    if moments['m00'] > 0:
        center_x = moments['m10'] / moments['m00']
        center_y = moments['m01'] / moments['m00']
    else:
        center_x = x + w / 2.0
        center_y = y + h / 2.0

    min_area_rect = None
    fit_ellipse = None
    angle = 0.0
    if len(points) >= MIN_FIT_POINTS:
        min_area_rect = _rotated_box(cv2.minAreaRect(contour))
        angle = min_area_rect.angle
        fit_ellipse = _rotated_box(cv2.fitEllipse(contour))

    hull_area = float(cv2.contourArea(cv2.convexHull(contour)))
    convexity = area / hull_area if hull_area > 0 else 1.0
    rect_area = float(w * h)

    return BlobRecord(
        id=blob_id,
        contour=[Point(float(px), float(py)) for px, py in points],
        area=area,
        perimeter=perimeter,
        center_x=float(center_x),
        center_y=float(center_y),
        bounding_rect=bounding_rect,
        min_area_rect=min_area_rect,
        fit_ellipse=fit_ellipse,
        angle=angle,
        circularity=4 * math.pi * area / (perimeter * perimeter) if perimeter > 0 else 0.0,
        aspect_ratio=w / h if h > 0 else 0.0,
        convexity=convexity,
        # Same ratio as convexity; both names are part of the record
        solidity=convexity,
        extent=area / rect_area if rect_area > 0 else 0.0,
        equivalent_diameter=math.sqrt(4 * area / math.pi)
    )


def passes_filters(blob: BlobRecord, tool: "BlobTool") -> bool:
    """True if the blob lies inside every configured inclusive range."""
    return (
        tool.min_area <= blob.area <= tool.max_area
        and tool.min_perimeter <= blob.perimeter <= tool.max_perimeter
        and tool.min_circularity <= blob.circularity <= tool.max_circularity
        and tool.min_aspect_ratio <= blob.aspect_ratio <= tool.max_aspect_ratio
        and blob.convexity >= tool.min_convexity
    )


def sort_blobs(blobs: List[BlobRecord], sort_by: BlobSortBy, descending: bool) -> List[BlobRecord]:
    """Stable sort of blobs by the selected descriptor."""
    key = sort_by.value
    return sorted(blobs, key=lambda b: getattr(b, key), reverse=descending)


def get_blob_summary(blobs: List[BlobRecord]) -> dict:
    """
    Aggregate area statistics of a blob list.

    Example:
        >>> get_blob_summary(blobs)
        {'blob_count': 2, 'total_area': 4120.0, 'average_area': 2060.0, ...}
    """
    summary = {'blob_count': len(blobs)}
    if not blobs:
        return summary

    areas = [b.area for b in blobs]
    summary.update({
        'total_area': float(sum(areas)),
        'average_area': float(np.mean(areas)),
        'largest_blob_area': float(max(areas)),
        'smallest_blob_area': float(min(areas))
    })
    return summary


class BlobTool(VisionTool):
    """
    Blob extractor with multi-criterion filtering.

    Descriptors are computed in ROI-relative coordinates and translated to
    absolute image coordinates before they are reported or drawn.
    """

    tool_type = "blob"
    display_name = "Blob Analysis"
    PARAMETERS = (
        Parameter('use_internal_threshold', True),
        Parameter('threshold_value', 128.0, minimum=0.0, maximum=255.0),
        Parameter('invert_polarity', False),
        Parameter('min_area', 100.0, minimum=0.0),
        Parameter('max_area', float('inf'), minimum=0.0),
        Parameter('min_perimeter', 0.0, minimum=0.0),
        Parameter('max_perimeter', float('inf'), minimum=0.0),
        Parameter('min_circularity', 0.0, minimum=0.0, maximum=1.0),
        Parameter('max_circularity', 1.0, minimum=0.0, maximum=1.0),
        Parameter('min_aspect_ratio', 0.0, minimum=0.0),
        Parameter('max_aspect_ratio', float('inf'), minimum=0.0),
        Parameter('min_convexity', 0.0, minimum=0.0, maximum=1.0),
        Parameter('max_blob_count', 100, minimum=1),
        Parameter('sort_by', BlobSortBy.AREA),
        Parameter('sort_descending', True),
        Parameter('retrieval_mode', RetrievalMode.EXTERNAL),
        Parameter('approximation_mode', ApproximationMode.SIMPLE),
        Parameter('draw_contours', True),
        Parameter('draw_bounding_box', True),
        Parameter('draw_center_point', True),
        Parameter('draw_labels', True),
    )

    def _validate_ranges(self) -> None:
        self.max_area = max(self.max_area, self.min_area)
        self.max_perimeter = max(self.max_perimeter, self.min_perimeter)
        self.max_circularity = max(self.max_circularity, self.min_circularity)
        self.max_aspect_ratio = max(self.max_aspect_ratio, self.min_aspect_ratio)

    def binarize(self, gray: np.ndarray) -> np.ndarray:
        if self.use_internal_threshold:
            threshold_type = cv2.THRESH_BINARY_INV if self.invert_polarity else cv2.THRESH_BINARY
            _, binary = cv2.threshold(gray, self.threshold_value, 255, threshold_type)
            return binary

        # Input is assumed to be binary already
        return cv2.bitwise_not(gray) if self.invert_polarity else gray

    def find_blobs(self, binary: np.ndarray) -> List[BlobRecord]:
        """Contours, descriptors, filtering, sorting and truncation."""
        contours, _ = cv2.findContours(
            binary,
            _RETRIEVAL_FLAGS[self.retrieval_mode],
            _APPROXIMATION_FLAGS[self.approximation_mode]
        )
        logger.debug(f"{self.name}: found {len(contours)} contours")

        blobs = []
        for contour in contours:
            blob = compute_blob_properties(contour, len(blobs))
            if passes_filters(blob, self):
                blobs.append(blob)
            else:
                logger.debug(
                    f"Filtered contour: area={blob.area:.0f}, "
                    f"circularity={blob.circularity:.2f}, aspect={blob.aspect_ratio:.2f}"
                )

        blobs = sort_blobs(blobs, self.sort_by, self.sort_descending)
        return blobs[:self.max_blob_count]

    def _run(self, image: np.ndarray) -> ToolResult:
        offset_x, offset_y = self.roi_offset(image)

        gray = to_grayscale(self.extract_roi(image))
        binary = self.binarize(gray)
        blobs = [blob.offset(offset_x, offset_y) for blob in self.find_blobs(binary)]

        graphics = self._build_graphics(image, blobs)
        summary = get_blob_summary(blobs)

        logger.info(f"{self.name}: {len(blobs)} blobs")

        data = dict(summary)
        data['blobs'] = blobs
        if blobs:
            data['center_x'] = blobs[0].center_x
            data['center_y'] = blobs[0].center_y
            data['bounding_rect'] = blobs[0].bounding_rect

        return ToolResult(
            success=bool(blobs),
            message=(f"Blob analysis complete: {len(blobs)} blobs" if blobs
                     else "Blob analysis found no blobs matching the filters"),
            error=None if blobs else ErrorKind.NO_DETECTION,
            output_image=self.apply_roi_result(image, binary),
            overlay_image=render_graphics(image, graphics),
            data=data,
            graphics=graphics
        )

    def _build_graphics(self, image: np.ndarray, blobs: List[BlobRecord]) -> List[Graphic]:
        graphics = []

        if self.has_roi:
            graphics.append(roi_graphic(self.clipped_roi(image)))

        for i, blob in enumerate(blobs):
            color = palette_color(i)
            center = Point(blob.center_x, blob.center_y)

            if self.draw_contours:
                graphics.append(Graphic(
                    type=GraphicType.POLYGON,
                    points=blob.contour,
                    color=color
                ))

            if self.draw_bounding_box:
                rect = blob.bounding_rect
                graphics.append(Graphic(
                    type=GraphicType.RECTANGLE,
                    position=Point(rect.x, rect.y),
                    width=rect.width,
                    height=rect.height,
                    color=BBOX_COLOR,
                    thickness=1
                ))

            if self.draw_center_point:
                graphics.append(Graphic(
                    type=GraphicType.CROSSHAIR,
                    position=center,
                    width=10,
                    color=CENTER_COLOR
                ))

            if self.draw_labels:
                graphics.append(text_graphic(f"#{i}", center.offset(5, -5), scale=0.4))

        return graphics
