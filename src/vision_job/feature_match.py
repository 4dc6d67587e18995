"""
Feature Matching Module

Finds a trained pattern by local keypoint features, tolerating rotation,
scale and perspective changes that defeat template correlation.

Workflow:
1. Training: detect keypoints and descriptors on the pattern image
2. Detect keypoints and descriptors on the working region
3. Two-nearest-neighbour brute-force matching with the ratio test
4. RANSAC homography from the surviving correspondences
5. Project the pattern corners to get the detected quadrilateral, then
   derive center, scale and rotation from it
"""

import logging
import math
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .base import VisionTool
from .errors import ConfigurationIncompleteError, ErrorKind, NoDetectionError
from .parameters import Parameter
from .preprocessing import as_image_array, is_empty_image, to_grayscale
from .results import Graphic, GraphicType, ToolResult
from .roi import Point
from .visualization import CENTER_COLOR, render_graphics, roi_graphic

logger = logging.getLogger(__name__)

QUAD_COLOR = (0, 255, 0)
CENTER_MARKER_SIZE = 30


class DetectorType(Enum):
    ORB = "orb"
    AKAZE = "akaze"
    BRISK = "brisk"
    SIFT = "sift"


def create_detector(kind: DetectorType, max_features: int = 500):
    """
    Create an OpenCV keypoint detector/descriptor extractor.

    ``max_features`` caps ORB and SIFT; AKAZE and BRISK use their own
    response thresholds.
    """
    if kind == DetectorType.AKAZE:
        return cv2.AKAZE_create()
    if kind == DetectorType.BRISK:
        return cv2.BRISK_create()
    if kind == DetectorType.SIFT:
        return cv2.SIFT_create(nfeatures=max_features)
    return cv2.ORB_create(nfeatures=max_features)


def descriptor_norm(kind: DetectorType) -> int:
    """Hamming distance for binary descriptors, L2 for SIFT."""
    return cv2.NORM_L2 if kind == DetectorType.SIFT else cv2.NORM_HAMMING


def ratio_test(knn_matches: Sequence[Sequence], ratio: float) -> List:
    """
    Keep the nearest match when it is clearly better than the second nearest.

    Args:
        knn_matches: Output of ``BFMatcher.knnMatch(..., k=2)``
        ratio: Maximum allowed nearest / second-nearest distance ratio

    Returns:
        List of ``cv2.DMatch`` that passed
    """
    good = []
    for pair in knn_matches:
        if len(pair) >= 2 and pair[0].distance < ratio * pair[1].distance:
            good.append(pair[0])
    return good


def homography_geometry(
    homography: np.ndarray,
    width: float,
    height: float
) -> Tuple[List[Point], Point, float, float]:
    """
    Project a ``width`` x ``height`` pattern through a homography.

    Returns:
        (corners, center, scale, angle): corners in top-left, top-right,
        bottom-right, bottom-left order; center is the corner average; scale
        and angle (degrees) come from the projected top edge

    Raises:
        NoDetectionError: If the projection is degenerate
    """
    template_corners = np.float32([
        [0, 0],
        [width, 0],
        [width, height],
        [0, height]
    ]).reshape(-1, 1, 2)

    projected = cv2.perspectiveTransform(template_corners, homography).reshape(-1, 2)
    if not np.all(np.isfinite(projected)):
        raise NoDetectionError("Homography projects the pattern to infinity")

    corners = [Point(float(x), float(y)) for x, y in projected]
    center = Point(float(projected[:, 0].mean()), float(projected[:, 1].mean()))

    edge_x = projected[1, 0] - projected[0, 0]
    edge_y = projected[1, 1] - projected[0, 1]
    scale = math.hypot(edge_x, edge_y) / width if width > 0 else 0.0
    angle = math.degrees(math.atan2(edge_y, edge_x))

    return corners, center, float(scale), float(angle)


class FeatureMatchTool(VisionTool):
    """Keypoint-based pattern locator."""

    tool_type = "feature_match"
    display_name = "Feature Match"
    PARAMETERS = (
        Parameter('detector_type', DetectorType.ORB),
        Parameter('max_features', 500, minimum=10, maximum=10000),
        Parameter('ratio_threshold', 0.75, minimum=0.1, maximum=1.0),
        Parameter('min_match_count', 10, minimum=4, maximum=1000),
        Parameter('ransac_reproj_threshold', 5.0, minimum=0.1),
        Parameter('draw_matches', True),
    )

    def __init__(self, name: Optional[str] = None, **params) -> None:
        self._template: Optional[np.ndarray] = None
        self._template_keypoints: Optional[Tuple] = None
        self._template_descriptors: Optional[np.ndarray] = None
        self._trained_detector: Optional[DetectorType] = None
        super().__init__(name, **params)

    @property
    def template_image(self) -> Optional[np.ndarray]:
        return self._template

    @property
    def is_trained(self) -> bool:
        """True if the pattern was trained with the current ``detector_type``."""
        return (
            self._template_descriptors is not None
            and self._trained_detector == self.detector_type
        )

    def train_pattern(self, image: np.ndarray) -> bool:
        """
        Extract pattern features with the configured detector.

        Training fails (and leaves the tool untrained) when the pattern
        yields no more keypoints than ``min_match_count``.

        Returns:
            True if the pattern has enough keypoints
        """
        self._template = None
        self._template_keypoints = None
        self._template_descriptors = None
        self._trained_detector = None

        if is_empty_image(image):
            logger.warning(f"{self.name}: cannot train on an empty image")
            return False

        pattern = as_image_array(image).copy()
        detector = create_detector(self.detector_type, self.max_features)
        keypoints, descriptors = detector.detectAndCompute(to_grayscale(pattern), None)

        if descriptors is None or len(keypoints) <= self.min_match_count:
            logger.warning(
                f"{self.name}: training found {len(keypoints)} keypoints, "
                f"need more than {self.min_match_count}"
            )
            return False

        self._template = pattern
        self._template_keypoints = keypoints
        self._template_descriptors = descriptors
        self._trained_detector = self.detector_type
        logger.info(f"{self.name}: trained with {len(keypoints)} {self.detector_type.value} keypoints")
        return True

    def _copy_state_to(self, other: "FeatureMatchTool") -> None:
        if self._template is not None:
            other.train_pattern(self._template)

    def _run(self, image: np.ndarray) -> ToolResult:
        if not self.is_trained:
            if self._template is not None:
                raise ConfigurationIncompleteError(
                    f"Pattern trained with a different detector; retrain for {self.detector_type.value}"
                )
            raise ConfigurationIncompleteError("Pattern not trained")

        work_image = self.extract_roi(image)
        offset_x, offset_y = self.roi_offset(image)

        detector = create_detector(self.detector_type, self.max_features)
        keypoints, descriptors = detector.detectAndCompute(to_grayscale(work_image), None)

        if descriptors is None or len(keypoints) < self.min_match_count:
            raise NoDetectionError(
                f"Not enough features in search image ({len(keypoints)} found)"
            )

        matcher = cv2.BFMatcher(descriptor_norm(self.detector_type), crossCheck=False)
        knn_matches = matcher.knnMatch(self._template_descriptors, descriptors, k=2)
        good_matches = ratio_test(knn_matches, self.ratio_threshold)

        data = {
            'total_matches': len(knn_matches),
            'good_matches': len(good_matches),
            'template_keypoints': len(self._template_keypoints),
            'search_keypoints': len(keypoints)
        }
        logger.debug(f"{self.name}: {data}")

        graphics = []
        if self.has_roi:
            graphics.append(roi_graphic(self.clipped_roi(image)))

        if len(good_matches) < self.min_match_count:
            return ToolResult.failure(
                f"Not enough matches: {len(good_matches)} (need {self.min_match_count})",
                ErrorKind.NO_DETECTION,
                output_image=self.apply_roi_result(image, work_image),
                overlay_image=render_graphics(image, graphics),
                data=data,
                graphics=graphics
            )

        src_points = np.float32(
            [self._template_keypoints[m.queryIdx].pt for m in good_matches]
        ).reshape(-1, 1, 2)
        dst_points = np.float32(
            [keypoints[m.trainIdx].pt for m in good_matches]
        ).reshape(-1, 1, 2)

        homography, _ = cv2.findHomography(
            src_points, dst_points, cv2.RANSAC, self.ransac_reproj_threshold
        )
        if homography is None:
            raise NoDetectionError("Homography estimation failed")

        height, width = self._template.shape[:2]
        corners, center, scale, angle = homography_geometry(homography, width, height)
        corners = [corner.offset(offset_x, offset_y) for corner in corners]
        center = center.offset(offset_x, offset_y)

        data.update({
            'center_x': center.x,
            'center_y': center.y,
            'scale': scale,
            'angle': angle,
            'detected_corners': corners
        })

        graphics.append(Graphic(type=GraphicType.POLYGON, points=corners, color=QUAD_COLOR))
        graphics.append(Graphic(
            type=GraphicType.CROSSHAIR,
            position=center,
            width=CENTER_MARKER_SIZE,
            color=CENTER_COLOR
        ))

        auxiliary_images = {}
        if self.draw_matches:
            auxiliary_images['match_image'] = cv2.drawMatches(
                self._template, self._template_keypoints,
                work_image, keypoints,
                good_matches, None
            )

        message = f"Feature match found: {len(good_matches)} matches"
        logger.info(f"{self.name}: {message}, center=({center.x:.1f}, {center.y:.1f})")

        return ToolResult(
            success=True,
            message=message,
            output_image=self.apply_roi_result(image, work_image),
            overlay_image=render_graphics(image, graphics),
            data=data,
            graphics=graphics,
            auxiliary_images=auxiliary_images
        )
