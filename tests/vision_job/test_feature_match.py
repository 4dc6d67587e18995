"""
Tests for keypoint-based pattern location
"""

import pytest
import cv2
import numpy as np

from vision_job.errors import ErrorKind
from vision_job.feature_match import (
    DetectorType,
    FeatureMatchTool,
    create_detector,
    descriptor_norm,
    homography_geometry,
    ratio_test
)
from vision_job.results import GraphicType


def _trained_tool(pattern, **params):
    params.setdefault('max_features', 1000)
    tool = FeatureMatchTool(**params)
    assert tool.train_pattern(pattern) is True
    return tool


class TestHelpers:
    """Tests for the module-level helpers"""

    def test_identity_geometry(self):
        """Test corners, center, scale and angle under the identity"""
        corners, center, scale, angle = homography_geometry(np.eye(3), 100, 50)

        assert (corners[2].x, corners[2].y) == pytest.approx((100, 50))
        assert (center.x, center.y) == pytest.approx((50, 25))
        assert scale == pytest.approx(1.0)
        assert angle == pytest.approx(0.0)

    def test_rotated_geometry(self):
        """Test a quarter-turn rotation"""
        homography = np.array([[0, -1, 100], [1, 0, 0], [0, 0, 1]], dtype=np.float64)

        corners, center, scale, angle = homography_geometry(homography, 100, 50)

        assert (corners[0].x, corners[0].y) == pytest.approx((100, 0))
        assert (corners[1].x, corners[1].y) == pytest.approx((100, 100))
        assert (center.x, center.y) == pytest.approx((75, 50))
        assert scale == pytest.approx(1.0)
        assert angle == pytest.approx(90.0)

    def test_ratio_test(self):
        """Test that only distinctive nearest neighbours survive"""
        knn = [
            [cv2.DMatch(0, 0, 10.0), cv2.DMatch(0, 1, 100.0)],
            [cv2.DMatch(1, 2, 90.0), cv2.DMatch(1, 3, 100.0)],
            [cv2.DMatch(2, 4, 5.0)],
        ]

        good = ratio_test(knn, 0.75)

        assert [m.queryIdx for m in good] == [0]

    def test_descriptor_norm(self):
        """Test norm selection per detector family"""
        assert descriptor_norm(DetectorType.ORB) == cv2.NORM_HAMMING
        assert descriptor_norm(DetectorType.AKAZE) == cv2.NORM_HAMMING
        assert descriptor_norm(DetectorType.SIFT) == cv2.NORM_L2

    @pytest.mark.parametrize("kind", list(DetectorType))
    def test_create_detector(self, kind, textured_pattern):
        """Test that every detector type can extract features"""
        detector = create_detector(kind, 500)

        keypoints, _ = detector.detectAndCompute(textured_pattern, None)

        assert len(keypoints) > 0


class TestTraining:
    """Tests for pattern training"""

    def test_untrained(self, scene_with_pattern):
        """Test that searching without training is a configuration error"""
        result = FeatureMatchTool().execute(scene_with_pattern)

        assert result.error is ErrorKind.CONFIGURATION_INCOMPLETE

    def test_blank_pattern_is_rejected(self):
        """Test that a featureless pattern cannot be trained"""
        tool = FeatureMatchTool()

        assert tool.train_pattern(np.full((100, 100), 128, dtype=np.uint8)) is False
        assert tool.train_pattern(None) is False
        assert not tool.is_trained

    def test_clone_is_trained(self, textured_pattern):
        """Test that a clone carries its own trained pattern"""
        tool = _trained_tool(textured_pattern, ratio_threshold=0.7)

        copy = tool.clone()

        assert copy.is_trained
        assert copy.ratio_threshold == 0.7
        assert copy.template_image is not tool.template_image
        assert np.array_equal(copy.template_image, tool.template_image)

    def test_detector_change_requires_retraining(self, textured_pattern, scene_with_pattern):
        """Test that descriptors from another detector are not matched"""
        tool = _trained_tool(textured_pattern)

        tool.configure(detector_type=DetectorType.SIFT)
        result = tool.execute(scene_with_pattern)

        assert not tool.is_trained
        assert result.error is ErrorKind.CONFIGURATION_INCOMPLETE
        assert tool.train_pattern(tool.template_image) is True
        assert tool.is_trained


class TestFeatureMatchTool:
    """Tests for FeatureMatchTool"""

    @pytest.mark.parametrize("detector", [DetectorType.ORB, DetectorType.SIFT])
    def test_locates_pattern(self, textured_pattern, scene_with_pattern, detector):
        """Test center, scale and angle of an untransformed instance"""
        tool = _trained_tool(textured_pattern, detector_type=detector)

        result = tool.execute(scene_with_pattern)

        assert result.success is True
        assert result.data['center_x'] == pytest.approx(250, abs=3)
        assert result.data['center_y'] == pytest.approx(200, abs=3)
        assert result.data['scale'] == pytest.approx(1.0, abs=0.05)
        assert result.data['angle'] == pytest.approx(0.0, abs=2)
        assert len(result.data['detected_corners']) == 4
        assert result.data['good_matches'] >= 10

    def test_roi_offsets_corners(self, textured_pattern, scene_with_pattern):
        """Test that results inside an ROI are in image coordinates"""
        tool = _trained_tool(textured_pattern, roi=(100, 50, 300, 300), use_roi=True)

        result = tool.execute(scene_with_pattern)

        corner = result.data['detected_corners'][0]
        assert result.data['center_x'] == pytest.approx(250, abs=3)
        assert result.data['center_y'] == pytest.approx(200, abs=3)
        assert corner.x == pytest.approx(150, abs=4)
        assert corner.y == pytest.approx(100, abs=4)

    def test_match_image(self, textured_pattern, scene_with_pattern):
        """Test the match visualization and the detection graphics"""
        tool = _trained_tool(textured_pattern)

        result = tool.execute(scene_with_pattern)

        assert 'match_image' in result.auxiliary_images
        assert result.auxiliary_images['match_image'].shape[1] == 200 + 500
        assert [g.type for g in result.graphics] == [GraphicType.POLYGON, GraphicType.CROSSHAIR]

    def test_match_image_disabled(self, textured_pattern, scene_with_pattern):
        """Test that the match visualization can be switched off"""
        tool = _trained_tool(textured_pattern, draw_matches=False)

        assert tool.execute(scene_with_pattern).auxiliary_images == {}

    def test_blank_search_image(self, textured_pattern):
        """Test that a featureless search image is a detection failure"""
        tool = _trained_tool(textured_pattern)

        result = tool.execute(np.zeros((300, 300), dtype=np.uint8))

        assert result.success is False
        assert result.error is ErrorKind.NO_DETECTION

    def test_unrelated_scene_keeps_counts(self, textured_pattern):
        """Test that too few good matches still reports the match counts"""
        tool = _trained_tool(textured_pattern)
        noise = np.random.RandomState(11).randint(0, 256, (400, 400), dtype=np.uint8)

        result = tool.execute(noise)

        assert result.success is False
        assert result.error is ErrorKind.NO_DETECTION
        assert result.data['good_matches'] < 10
        assert result.data['search_keypoints'] > 0
        assert result.has_overlay
