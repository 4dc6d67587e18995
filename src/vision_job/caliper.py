"""
Caliper Measurement Module

One-dimensional edge localization along a user-defined search segment.

Workflow:
1. Sample an intensity profile along the segment, averaging each sample
   across the perpendicular search width
2. Differentiate the profile with a symmetric linear-ramp kernel
3. Pick gradient extrema above the threshold as edge candidates
4. Report the strongest edge (single-edge mode) or the opposite-polarity
   pair whose separation is closest to the expected width (edge-pair mode)

Segment coordinates are relative to the working region (the clipped ROI when
one is used); reported positions are absolute image coordinates.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Tuple

import numpy as np

from .base import VisionTool
from .errors import ErrorKind
from .parameters import Parameter
from .preprocessing import to_grayscale
from .results import Graphic, GraphicType, ToolResult
from .roi import Point
from .visualization import render_graphics, roi_graphic, text_graphic

logger = logging.getLogger(__name__)

SEARCH_REGION_COLOR = (128, 128, 128)
CENTERLINE_COLOR = (0, 128, 255)
EDGE_COLOR = (0, 255, 0)
SECOND_EDGE_COLOR = (0, 255, 255)
WIDTH_COLOR = (255, 0, 255)


class EdgePolarity(Enum):
    DARK_TO_LIGHT = "dark_to_light"
    LIGHT_TO_DARK = "light_to_dark"
    ANY = "any"


class CaliperMode(Enum):
    SINGLE_EDGE = "single_edge"
    EDGE_PAIR = "edge_pair"


class Interpolation(Enum):
    BILINEAR = "bilinear"
    NEAREST = "nearest"


@dataclass(frozen=True)
class EdgeRecord:
    """An edge along the profile; ``x``/``y`` are filled in once located in the image."""

    position: float
    score: float
    polarity: EdgePolarity
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class EdgePair:
    first: EdgeRecord
    second: EdgeRecord
    width: float
    score: float


def _sample_nearest(gray: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    height, width = gray.shape
    ix = np.floor(xs + 0.5).astype(np.int64)
    iy = np.floor(ys + 0.5).astype(np.int64)
    valid = (ix >= 0) & (ix < width) & (iy >= 0) & (iy < height)

    values = np.zeros(xs.shape, dtype=np.float64)
    values[valid] = gray[iy[valid], ix[valid]]
    return values, valid


def _sample_bilinear(gray: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    height, width = gray.shape
    valid = (xs >= 0) & (xs <= width - 1) & (ys >= 0) & (ys <= height - 1)

    x0 = np.clip(np.floor(xs).astype(np.int64), 0, width - 1)
    y0 = np.clip(np.floor(ys).astype(np.int64), 0, height - 1)
    x1 = np.minimum(x0 + 1, width - 1)
    y1 = np.minimum(y0 + 1, height - 1)
    fx = np.clip(xs - x0, 0.0, 1.0)
    fy = np.clip(ys - y0, 0.0, 1.0)

    image = gray.astype(np.float64)
    top = image[y0, x0] * (1 - fx) + image[y0, x1] * fx
    bottom = image[y1, x0] * (1 - fx) + image[y1, x1] * fx
    values = top * (1 - fy) + bottom * fy

    return np.where(valid, values, 0.0), valid


def extract_profile(
    gray: np.ndarray,
    start: Point,
    direction: Tuple[float, float],
    normal: Tuple[float, float],
    length: float,
    search_width: int,
    interpolation: Interpolation = Interpolation.BILINEAR
) -> np.ndarray:
    """
    Sample a 1-D intensity profile along a search segment.

    Sample ``i`` lies at ``start + i * direction`` (one pixel apart) and is
    the mean over ``search_width`` perpendicular offsets one pixel apart,
    centred on the segment (``-(w-1)/2 .. (w-1)/2``). Offsets falling outside
    the image are left out of the mean; a sample with no valid offset is 0.

    Args:
        gray: 2-D intensity image
        start: Segment start in ``gray`` coordinates
        direction: Unit vector along the segment
        normal: Unit vector perpendicular to the segment
        length: Segment length in pixels
        search_width: Perpendicular band width in pixels
        interpolation: Pixel lookup method

    Returns:
        Float profile with ``int(length) + 1`` samples

    Example:
        >>> profile = extract_profile(gray, Point(10, 50), (1.0, 0.0), (0.0, 1.0), 100, 10)
        >>> profile.shape
        (101,)
    """
    band = max(1, int(search_width))
    steps = np.arange(int(length) + 1, dtype=np.float64)[:, np.newaxis]
    offsets = (np.arange(band, dtype=np.float64) - (band - 1) / 2.0)[np.newaxis, :]

    xs = start.x + steps * direction[0] + offsets * normal[0]
    ys = start.y + steps * direction[1] + offsets * normal[1]

    if interpolation == Interpolation.NEAREST:
        values, valid = _sample_nearest(gray, xs, ys)
    else:
        values, valid = _sample_bilinear(gray, xs, ys)

    counts = valid.sum(axis=1)
    sums = values.sum(axis=1)
    profile = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)

    logger.debug(f"Extracted profile: {len(profile)} samples, band {band}px")

    return profile


def compute_gradient(profile: np.ndarray, half_width: int) -> np.ndarray:
    """
    Differentiate a profile with the kernel ``g[i] = sum(p[i+j] * j) / (2h+1)``.

    Samples closer than ``half_width`` to either end are zero.
    """
    half_width = max(1, int(half_width))
    gradient = np.zeros(len(profile), dtype=np.float64)
    if len(profile) < 2 * half_width + 1:
        return gradient

    ramp = np.arange(-half_width, half_width + 1, dtype=np.float64)
    valid = np.correlate(np.asarray(profile, dtype=np.float64), ramp, mode='valid')
    gradient[half_width:len(profile) - half_width] = valid / (2 * half_width + 1)
    return gradient


def find_edges(
    gradient: np.ndarray,
    threshold: float,
    polarity: EdgePolarity = EdgePolarity.ANY,
    max_edges: int = 10,
    margin: int = 1
) -> List[EdgeRecord]:
    """
    Locate edge candidates in a gradient profile.

    A candidate has a magnitude above ``threshold`` and is a strict local
    extremum: a maximum for dark-to-light edges, a minimum for light-to-dark
    edges. A run of equal values counts as one extremum positioned at the
    middle of the run, since an ideal step spreads its response evenly over
    neighbouring samples.

    Args:
        gradient: Output of ``compute_gradient``
        threshold: Minimum absolute gradient
        polarity: Which edge direction to keep
        max_edges: Maximum number of edges returned
        margin: Zero-padded samples at each end (the kernel half-width);
            the first and last real samples only serve as neighbours

    Returns:
        Edges sorted by descending score
    """
    edges = []
    first = max(0, int(margin))
    last = len(gradient) - first - 1

    # Both neighbours of a candidate run must be real gradient samples
    i = first + 1
    while i < last:
        value = gradient[i]
        if abs(value) <= threshold:
            i += 1
            continue

        end = i
        while end + 1 <= last and gradient[end + 1] == value:
            end += 1
        if end >= last:
            break

        left = gradient[i - 1]
        right = gradient[end + 1]

        if value > 0 and value > left and value > right:
            found = EdgePolarity.DARK_TO_LIGHT
        elif value < 0 and value < left and value < right:
            found = EdgePolarity.LIGHT_TO_DARK
        else:
            found = None

        if found is not None and polarity in (EdgePolarity.ANY, found):
            edges.append(EdgeRecord(position=(i + end) / 2.0, score=float(abs(value)), polarity=found))

        i = end + 1

    edges.sort(key=lambda e: e.score, reverse=True)
    return edges[:max_edges]


def find_edge_pairs(edges: List[EdgeRecord], expected_width: float, tolerance: float) -> List[EdgePair]:
    """
    Pair opposite-polarity edges whose separation is within tolerance.

    Pairs are ranked by closeness to ``expected_width``; the mean score only
    breaks ties.
    """
    pairs = []

    for i, a in enumerate(edges):
        for b in edges[i + 1:]:
            if a.polarity == b.polarity:
                continue

            first, second = (a, b) if a.position <= b.position else (b, a)
            width = second.position - first.position
            if abs(width - expected_width) <= tolerance:
                pairs.append(EdgePair(first, second, width, (a.score + b.score) / 2.0))

    pairs.sort(key=lambda p: (abs(p.width - expected_width), -p.score))
    return pairs


class CaliperTool(VisionTool):
    """
    Edge-position and width measurement along a search segment.

    Example:
        >>> caliper = CaliperTool(start_x=10, start_y=50, end_x=190, end_y=50)
        >>> result = caliper.execute(image)
        >>> result.data['edge_x']
        99.5
    """

    tool_type = "caliper"
    display_name = "Caliper"
    PARAMETERS = (
        Parameter('start_x', 0.0),
        Parameter('start_y', 0.0),
        Parameter('end_x', 100.0),
        Parameter('end_y', 0.0),
        Parameter('search_width', 20, minimum=1),
        Parameter('polarity', EdgePolarity.DARK_TO_LIGHT),
        Parameter('edge_threshold', 30.0, minimum=1.0),
        Parameter('filter_half_width', 2, minimum=1, maximum=50),
        Parameter('mode', CaliperMode.SINGLE_EDGE),
        Parameter('expected_width', 50.0, minimum=1.0),
        Parameter('width_tolerance', 20.0, minimum=0.0),
        Parameter('max_edges', 10, minimum=1),
        Parameter('interpolation', Interpolation.BILINEAR),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        offset_x, offset_y = self.roi_offset(image)
        gray = to_grayscale(self.extract_roi(image))

        dx = self.end_x - self.start_x
        dy = self.end_y - self.start_y
        length = math.hypot(dx, dy)
        if length < 1:
            raise ValueError(f"Search segment too short ({length:.2f}px)")

        direction = (dx / length, dy / length)
        normal = (-direction[1], direction[0])
        start = Point(self.start_x, self.start_y)

        profile = extract_profile(
            gray, start, direction, normal, length, self.search_width, self.interpolation
        )
        gradient = compute_gradient(profile, self.filter_half_width)
        edges = find_edges(
            gradient,
            self.edge_threshold,
            self.polarity,
            self.max_edges,
            margin=self.filter_half_width
        )

        def locate(edge: EdgeRecord) -> EdgeRecord:
            return replace(
                edge,
                x=self.start_x + direction[0] * edge.position + offset_x,
                y=self.start_y + direction[1] * edge.position + offset_y
            )

        edges = [locate(edge) for edge in edges]
        logger.debug(f"{self.name}: {len(edges)} edge candidates along {length:.1f}px")

        graphics = self._search_region_graphics(image, normal, offset_x, offset_y)
        data = {'edge_count': len(edges), 'edges': edges}

        if self.mode == CaliperMode.SINGLE_EDGE:
            success = bool(edges)
            if success:
                edge = edges[0]
                data.update({
                    'edge_x': edge.x,
                    'edge_y': edge.y,
                    'edge_score': edge.score,
                    'edge_polarity': edge.polarity.value
                })
                graphics.append(self._edge_graphic(edge, normal, EDGE_COLOR))
                message = f"Edge found at ({edge.x:.1f}, {edge.y:.1f})"
            else:
                message = "No edge found"
        else:
            pairs = find_edge_pairs(edges, self.expected_width, self.width_tolerance)
            success = bool(pairs)
            if success:
                pair = pairs[0]
                center = Point((pair.first.x + pair.second.x) / 2.0, (pair.first.y + pair.second.y) / 2.0)
                data.update({
                    'width': pair.width,
                    'edge1_x': pair.first.x,
                    'edge1_y': pair.first.y,
                    'edge2_x': pair.second.x,
                    'edge2_y': pair.second.y,
                    'center_x': center.x,
                    'center_y': center.y
                })
                graphics.extend([
                    self._edge_graphic(pair.first, normal, EDGE_COLOR),
                    self._edge_graphic(pair.second, normal, SECOND_EDGE_COLOR),
                    Graphic(
                        type=GraphicType.LINE,
                        position=Point(pair.first.x, pair.first.y),
                        end_position=Point(pair.second.x, pair.second.y),
                        color=WIDTH_COLOR
                    ),
                    text_graphic(f"{pair.width:.2f}px", center.offset(5, -5))
                ])
                message = f"Width measured: {pair.width:.2f}px"
            else:
                message = "No edge pair found"

        logger.info(f"{self.name}: {message}")

        return ToolResult(
            success=success,
            message=message,
            error=None if success else ErrorKind.NO_DETECTION,
            output_image=self.apply_roi_result(image, gray),
            overlay_image=render_graphics(image, graphics),
            data=data,
            graphics=graphics
        )

    def _search_region_graphics(
        self,
        image: np.ndarray,
        normal: Tuple[float, float],
        offset_x: int,
        offset_y: int
    ) -> List[Graphic]:
        graphics = []
        if self.has_roi:
            graphics.append(roi_graphic(self.clipped_roi(image)))

        start = Point(self.start_x + offset_x, self.start_y + offset_y)
        end = Point(self.end_x + offset_x, self.end_y + offset_y)
        half_x = normal[0] * self.search_width / 2.0
        half_y = normal[1] * self.search_width / 2.0

        graphics.append(Graphic(
            type=GraphicType.POLYGON,
            points=[
                start.offset(half_x, half_y),
                start.offset(-half_x, -half_y),
                end.offset(-half_x, -half_y),
                end.offset(half_x, half_y)
            ],
            color=SEARCH_REGION_COLOR,
            thickness=1
        ))
        graphics.append(Graphic(
            type=GraphicType.LINE,
            position=start,
            end_position=end,
            color=CENTERLINE_COLOR,
            thickness=1
        ))
        return graphics

    def _edge_graphic(self, edge: EdgeRecord, normal: Tuple[float, float], color) -> Graphic:
        half_x = normal[0] * self.search_width / 2.0
        half_y = normal[1] * self.search_width / 2.0
        return Graphic(
            type=GraphicType.LINE,
            position=Point(edge.x + half_x, edge.y + half_y),
            end_position=Point(edge.x - half_x, edge.y - half_y),
            color=color
        )
