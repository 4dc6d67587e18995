"""
Template Matching Module

Locates a trained pattern image in the working region by normalized
correlation.

Modes:
- Simple: one correlation pass; repeatedly take the best peak and blank a
  template-sized window around it (collects up to twice the result count)
- Multi scale / angle: resample and rotate the template over the configured
  ranges, keeping the best peak of every (scale, angle) combination

Both modes finish with greedy non-maximum suppression and truncation to
``max_results``. Scores are "higher is better" for every metric.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .base import VisionTool
from .errors import ConfigurationIncompleteError, ErrorKind
from .parameters import Parameter
from .preprocessing import as_image_array, is_empty_image, to_grayscale
from .results import Graphic, GraphicType, ToolResult
from .roi import Point, Rect
from .visualization import CENTER_COLOR, render_graphics, roi_graphic, text_graphic

logger = logging.getLogger(__name__)

# Matches whose boxes overlap more than this (IoU) with a better match are dropped
NMS_OVERLAP_THRESHOLD = 0.5

# Scaled templates smaller than this (either side) are skipped
MIN_TEMPLATE_SIZE = 10

MATCH_COLOR = (0, 255, 0)
SCORE_COLOR = (255, 255, 0)


class MatchMethod(Enum):
    SQDIFF = "sqdiff"
    SQDIFF_NORMED = "sqdiff_normed"
    CCORR = "ccorr"
    CCORR_NORMED = "ccorr_normed"
    CCOEFF = "ccoeff"
    CCOEFF_NORMED = "ccoeff_normed"


_MATCH_FLAGS = {
    MatchMethod.SQDIFF: cv2.TM_SQDIFF,
    MatchMethod.SQDIFF_NORMED: cv2.TM_SQDIFF_NORMED,
    MatchMethod.CCORR: cv2.TM_CCORR,
    MatchMethod.CCORR_NORMED: cv2.TM_CCORR_NORMED,
    MatchMethod.CCOEFF: cv2.TM_CCOEFF,
    MatchMethod.CCOEFF_NORMED: cv2.TM_CCOEFF_NORMED,
}


@dataclass(frozen=True)
class MatchRecord:
    x: float
    y: float
    width: float
    height: float
    center_x: float
    center_y: float
    score: float
    scale: float = 1.0
    angle: float = 0.0

    @property
    def box(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    def offset(self, dx: float, dy: float) -> "MatchRecord":
        return replace(
            self,
            x=self.x + dx,
            y=self.y + dy,
            center_x=self.center_x + dx,
            center_y=self.center_y + dy
        )


def score_map(search: np.ndarray, template: np.ndarray, method: MatchMethod) -> np.ndarray:
    """
    Correlate ``template`` over ``search`` with higher-is-better scores.

    Square-difference metrics are inverted (``1 - value``) so that every
    method can be thresholded and ranked the same way.
    """
    scores = cv2.matchTemplate(search, template, _MATCH_FLAGS[method])
    if method in (MatchMethod.SQDIFF, MatchMethod.SQDIFF_NORMED):
        scores = 1.0 - scores
    return scores


def intersection_over_union(a: MatchRecord, b: MatchRecord) -> float:
    """Axis-aligned IoU of two match boxes."""
    left = max(a.x, b.x)
    top = max(a.y, b.y)
    right = min(a.x + a.width, b.x + b.width)
    bottom = min(a.y + a.height, b.y + b.height)

    intersection = max(0.0, right - left) * max(0.0, bottom - top)
    union = a.width * a.height + b.width * b.height - intersection
    return intersection / union if union > 0 else 0.0


def non_maximum_suppression(
    matches: List[MatchRecord],
    overlap_threshold: float = NMS_OVERLAP_THRESHOLD
) -> List[MatchRecord]:
    """
    Greedy non-maximum suppression.

    Matches are visited best first; a match is kept unless its IoU with an
    already kept match exceeds ``overlap_threshold``.

    Example:
        >>> kept = non_maximum_suppression(matches, overlap_threshold=0.5)
        >>> all(intersection_over_union(a, b) <= 0.5 for a in kept for b in kept if a is not b)
        True
    """
    kept = []
    for match in sorted(matches, key=lambda m: m.score, reverse=True):
        if all(intersection_over_union(match, other) <= overlap_threshold for other in kept):
            kept.append(match)
    return kept


def collect_simple_matches(
    search: np.ndarray,
    template: np.ndarray,
    method: MatchMethod,
    threshold: float,
    limit: int
) -> List[MatchRecord]:
    """
    Collect correlation peaks from a single pass, best first.

    After each peak a template-sized window centered on it is blanked out of
    the score map. Collection stops when the best remaining score drops below
    ``threshold`` or ``limit`` peaks have been taken.
    """
    t_height, t_width = template.shape[:2]
    scores = score_map(search, template, method).astype(np.float32)
    matches = []

    while len(matches) < limit:
        index = int(np.argmax(scores))
        y, x = np.unravel_index(index, scores.shape)
        score = float(scores[y, x])
        if not np.isfinite(score) or score < threshold:
            break

        matches.append(MatchRecord(
            x=float(x),
            y=float(y),
            width=float(t_width),
            height=float(t_height),
            center_x=x + t_width / 2.0,
            center_y=y + t_height / 2.0,
            score=score
        ))

        x0 = max(0, x - t_width // 2)
        y0 = max(0, y - t_height // 2)
        scores[y0:y + t_height // 2 + 1, x0:x + t_width // 2 + 1] = -np.inf

    logger.debug(f"Simple match collected {len(matches)} peaks")
    return matches


def _inclusive_range(start: float, stop: float, step: float) -> List[float]:
    count = int(np.floor((stop - start) / step + 1e-9)) + 1
    return [start + i * step for i in range(max(1, count))]


def rotate_template(template: np.ndarray, angle: float) -> np.ndarray:
    """Rotate about the template center, keeping its size (corners are cut)."""
    if abs(angle) <= 0.1:
        return template
    height, width = template.shape[:2]
    matrix = cv2.getRotationMatrix2D((width / 2.0, height / 2.0), angle, 1.0)
    return cv2.warpAffine(template, matrix, (width, height))


def collect_multi_scale_matches(
    search: np.ndarray,
    template: np.ndarray,
    method: MatchMethod,
    threshold: float,
    scales: List[float],
    angles: List[float]
) -> List[MatchRecord]:
    """
    Best peak for every (scale, angle) combination that reaches ``threshold``.

    Combinations whose template would be smaller than ``MIN_TEMPLATE_SIZE`` or
    larger than the search region are skipped.
    """
    s_height, s_width = search.shape[:2]
    t_height, t_width = template.shape[:2]
    matches = []

    for scale in scales:
        width = int(t_width * scale)
        height = int(t_height * scale)
        if width < MIN_TEMPLATE_SIZE or height < MIN_TEMPLATE_SIZE:
            continue
        if width > s_width or height > s_height:
            continue

        scaled = cv2.resize(template, (width, height))

        for angle in angles:
            rotated = rotate_template(scaled, angle)
            _, max_val, _, max_loc = cv2.minMaxLoc(score_map(search, rotated, method))

            logger.debug(f"scale={scale:.2f} angle={angle:.1f} score={max_val:.3f}")

            if max_val < threshold:
                continue

            x, y = max_loc
            matches.append(MatchRecord(
                x=float(x),
                y=float(y),
                width=float(width),
                height=float(height),
                center_x=x + width / 2.0,
                center_y=y + height / 2.0,
                score=float(max_val),
                scale=float(scale),
                angle=float(angle)
            ))

    return matches


class TemplateMatchTool(VisionTool):
    """
    Pattern search by template correlation.

    Example:
        >>> tool = TemplateMatchTool(match_threshold=0.9)
        >>> tool.train_pattern(image[40:90, 60:120])
        True
        >>> tool.execute(image).data['center_x']
        90.0
    """

    tool_type = "template_match"
    display_name = "Template Match"
    PARAMETERS = (
        Parameter('match_method', MatchMethod.CCOEFF_NORMED),
        Parameter('match_threshold', 0.8, minimum=0.0, maximum=1.0),
        Parameter('max_results', 10, minimum=1),
        Parameter('enable_multi_scale', False),
        Parameter('min_scale', 0.8, minimum=0.1),
        Parameter('max_scale', 1.2, minimum=0.1),
        Parameter('scale_step', 0.1, minimum=0.01),
        Parameter('enable_multi_angle', False),
        Parameter('min_angle', -15.0, minimum=-180.0, maximum=180.0),
        Parameter('max_angle', 15.0, minimum=-180.0, maximum=180.0),
        Parameter('angle_step', 5.0, minimum=0.1),
    )

    def __init__(self, name: Optional[str] = None, **params) -> None:
        self._template: Optional[np.ndarray] = None
        super().__init__(name, **params)

    def _validate_ranges(self) -> None:
        self.max_scale = max(self.max_scale, self.min_scale)
        self.max_angle = max(self.max_angle, self.min_angle)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    @property
    def template_image(self) -> Optional[np.ndarray]:
        return self._template

    @property
    def is_trained(self) -> bool:
        return self._template is not None

    def set_template(self, image: np.ndarray) -> None:
        self._template = as_image_array(image).copy()

    def train_pattern(self, image: np.ndarray, region: Optional[Rect] = None) -> bool:
        """
        Store a copy of the pattern to search for.

        Args:
            image: Pattern image, or the image to cut it from
            region: Optional rectangle of ``image`` holding the pattern

        Returns:
            True if a non-empty pattern was stored
        """
        if is_empty_image(image):
            logger.warning(f"{self.name}: cannot train on an empty image")
            return False

        pattern = as_image_array(image)
        if region is not None:
            pattern = pattern[region.y:region.bottom, region.x:region.right]
            if pattern.size == 0:
                logger.warning(f"{self.name}: training region {region.as_tuple()} is empty")
                return False

        self.set_template(pattern)
        logger.info(f"{self.name}: trained {pattern.shape[1]}x{pattern.shape[0]} template")
        return True

    def _copy_state_to(self, other: "TemplateMatchTool") -> None:
        if self._template is not None:
            other._template = self._template.copy()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, image: np.ndarray) -> ToolResult:
        if self._template is None:
            raise ConfigurationIncompleteError("Template image not set")

        work_image = self.extract_roi(image)
        search = to_grayscale(work_image)
        template = to_grayscale(self._template)
        offset_x, offset_y = self.roi_offset(image)

        if self.enable_multi_scale or self.enable_multi_angle:
            scales = (_inclusive_range(self.min_scale, self.max_scale, self.scale_step)
                      if self.enable_multi_scale else [1.0])
            angles = (_inclusive_range(self.min_angle, self.max_angle, self.angle_step)
                      if self.enable_multi_angle else [0.0])
            matches = collect_multi_scale_matches(
                search, template, self.match_method, self.match_threshold, scales, angles
            )
        else:
            if template.shape[0] > search.shape[0] or template.shape[1] > search.shape[1]:
                raise ValueError(
                    f"Template {template.shape[1]}x{template.shape[0]} is larger than "
                    f"search region {search.shape[1]}x{search.shape[0]}"
                )
            matches = collect_simple_matches(
                search, template, self.match_method, self.match_threshold, self.max_results * 2
            )

        matches = non_maximum_suppression(matches)[:self.max_results]
        matches = [match.offset(offset_x, offset_y) for match in matches]

        graphics = self._build_graphics(image, matches)
        data = {'match_count': len(matches), 'matches': matches}
        if matches:
            best = matches[0]
            data.update({
                'best_score': best.score,
                'center_x': best.center_x,
                'center_y': best.center_y,
                'best_angle': best.angle,
                'best_scale': best.scale
            })

        logger.info(f"{self.name}: {len(matches)} matches")

        return ToolResult(
            success=bool(matches),
            message=f"Template match complete: {len(matches)} found",
            error=None if matches else ErrorKind.NO_DETECTION,
            output_image=self.apply_roi_result(image, work_image),
            overlay_image=render_graphics(image, graphics),
            data=data,
            graphics=graphics
        )

    def _build_graphics(self, image: np.ndarray, matches: List[MatchRecord]) -> List[Graphic]:
        graphics = []
        if self.has_roi:
            graphics.append(roi_graphic(self.clipped_roi(image)))

        for match in matches:
            graphics.append(Graphic(
                type=GraphicType.RECTANGLE,
                position=Point(match.x, match.y),
                width=match.width,
                height=match.height,
                color=MATCH_COLOR
            ))
            graphics.append(Graphic(
                type=GraphicType.CROSSHAIR,
                position=Point(match.center_x, match.center_y),
                color=CENTER_COLOR
            ))
            graphics.append(text_graphic(
                f"{match.score:.2f}",
                Point(match.x, match.y - 5),
                color=SCORE_COLOR
            ))

        return graphics
