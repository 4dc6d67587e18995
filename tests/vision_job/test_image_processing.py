"""
Tests for the image conditioning tools
"""

import pytest
import numpy as np

from vision_job.errors import ErrorKind
from vision_job.image_processing import (
    AdaptiveMethod,
    BlurMethod,
    BlurTool,
    EdgeDetectionTool,
    EdgeMethod,
    Equalization,
    GrayscaleTool,
    HistogramTool,
    MorphologyOperation,
    MorphologyTool,
    ThresholdTool,
    ThresholdType
)


class TestGrayscaleTool:
    """Tests for GrayscaleTool"""

    def test_color_to_gray(self, color_image):
        """Test that the output is single channel at full size"""
        result = GrayscaleTool().execute(color_image)

        assert result.success is True
        assert result.output_image.shape == (120, 160)
        assert result.data['channels'] == 1

    def test_roi_is_composited(self, color_image):
        """Test that pixels outside the ROI are black"""
        tool = GrayscaleTool(roi=(10, 10, 20, 20), use_roi=True)

        output = tool.execute(color_image).output_image

        assert output.shape == (120, 160)
        assert not output[:10].any()
        assert not output[:, 30:].any()


class TestThresholdTool:
    """Tests for ThresholdTool"""

    def test_fixed_threshold(self, step_image):
        """Test binarization with a fixed value"""
        result = ThresholdTool(threshold_value=128).execute(step_image)

        assert result.success is True
        assert result.data['foreground_pixels'] == 100 * 100
        assert result.data['threshold_used'] == 128.0
        assert set(np.unique(result.output_image)) == {0, 255}

    def test_inverted_threshold(self, step_image):
        """Test the inverted binary type"""
        result = ThresholdTool(threshold_type=ThresholdType.BINARY_INV).execute(step_image)

        assert result.output_image[0, 0] == 255
        assert result.output_image[0, 150] == 0

    def test_otsu(self, step_image):
        """Test that Otsu picks a threshold separating both levels"""
        result = ThresholdTool(use_otsu=True).execute(step_image)

        assert 20 <= result.data['threshold_used'] < 220
        assert result.data['foreground_pixels'] == 100 * 100

    def test_adaptive(self, step_image):
        """Test adaptive thresholding"""
        result = ThresholdTool(adaptive_method=AdaptiveMethod.MEAN, block_size=11).execute(step_image)

        assert result.success is True
        assert 'threshold_used' not in result.data

    def test_adaptive_rejects_truncate(self, step_image):
        """Test that adaptive thresholding with an unsupported type is a fault"""
        tool = ThresholdTool(adaptive_method="gaussian", threshold_type="truncate")

        result = tool.execute(step_image)

        assert result.success is False
        assert result.error is ErrorKind.COMPUTATION_FAULT

    def test_threshold_in_roi(self, step_image):
        """Test that only the ROI is binarized"""
        tool = ThresholdTool(roi=(150, 0, 50, 100), use_roi=True)

        result = tool.execute(step_image)

        assert result.output_image.shape == (100, 200)
        assert result.data['foreground_pixels'] == 50 * 100
        assert not result.output_image[:, :150].any()


class TestBlurTool:
    """Tests for BlurTool"""

    @pytest.mark.parametrize("method", list(BlurMethod))
    def test_methods_preserve_shape(self, color_image, method):
        """Test every blur method"""
        result = BlurTool(method=method, kernel_size=5).execute(color_image)

        assert result.success is True
        assert result.output_image.shape == color_image.shape

    def test_even_kernel_is_made_odd(self, step_image):
        """Test that even kernel sizes are bumped to the next odd size"""
        result = BlurTool(kernel_size=4).execute(step_image)

        assert result.data['kernel_size'] == 5

    def test_median_removes_salt_noise(self):
        """Test that a median filter removes an isolated bright pixel"""
        image = np.zeros((20, 20), dtype=np.uint8)
        image[10, 10] = 255

        result = BlurTool(method="median", kernel_size=3).execute(image)

        assert not result.output_image.any()


class TestEdgeDetectionTool:
    """Tests for EdgeDetectionTool"""

    @pytest.mark.parametrize("method", list(EdgeMethod))
    def test_edges_at_step(self, step_image, method):
        """Test that edges appear only around the step"""
        result = EdgeDetectionTool(method=method).execute(step_image)

        edges = result.output_image
        assert edges[:, 95:105].any()
        assert not edges[:, :90].any()
        assert not edges[:, 110:].any()


class TestMorphologyTool:
    """Tests for MorphologyTool"""

    def test_open_removes_specks(self):
        """Test that opening removes noise smaller than the kernel"""
        image = np.zeros((100, 100), dtype=np.uint8)
        image[5, 5] = 255
        image[40:60, 40:60] = 255

        result = MorphologyTool(operation=MorphologyOperation.OPEN, kernel_size=3).execute(image)

        assert result.output_image[5, 5] == 0
        assert result.output_image[50, 50] == 255

    def test_dilate_grows(self):
        """Test that dilation grows foreground"""
        image = np.zeros((50, 50), dtype=np.uint8)
        image[25, 25] = 255

        result = MorphologyTool(operation="dilate", kernel_size=5).execute(image)

        assert np.count_nonzero(result.output_image) == 25


class TestHistogramTool:
    """Tests for HistogramTool"""

    def test_statistics(self, step_image):
        """Test intensity statistics of a two-level image"""
        result = HistogramTool().execute(step_image)

        assert result.data['mean'] == pytest.approx(120.0)
        assert result.data['std_dev'] == pytest.approx(100.0)
        assert result.data['min'] == 20
        assert result.data['max'] == 220
        assert result.data['pixel_count'] == 200 * 100
        assert len(result.data['histogram']) == 256

    def test_global_equalization_stretches_output(self, step_image):
        """Test that global equalization maps the darkest level to 0"""
        result = HistogramTool(equalization=Equalization.GLOBAL).execute(step_image)

        assert result.output_image.min() == 0
        assert result.output_image.max() == 255

    def test_clahe(self, step_image):
        """Test CLAHE equalization keeps the image size"""
        result = HistogramTool(equalization="clahe", clahe_tile_grid=4).execute(step_image)

        assert result.success is True
        assert result.output_image.shape == (100, 200)
