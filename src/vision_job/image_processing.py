"""
Image Conditioning Tools

Simple single-image operations used to prepare the working image for the
analysis tools further down a job:
- GrayscaleTool: color to intensity conversion
- BlurTool: Gaussian / median / box / bilateral smoothing
- ThresholdTool: fixed, Otsu or adaptive binarization
- EdgeDetectionTool: Canny / Sobel / Laplacian edge maps
- MorphologyTool: erode, dilate, open, close and friends
- HistogramTool: intensity statistics and optional equalization

Each tool processes the clipped ROI and composites the result back into a
full-size output image (black outside the ROI).
"""

import logging
from enum import Enum

import cv2
import numpy as np

from .base import VisionTool
from .parameters import Parameter
from .preprocessing import to_grayscale
from .results import ToolResult

logger = logging.getLogger(__name__)


def _odd(value: int) -> int:
    """Kernel sizes must be odd and positive."""
    value = max(1, int(value))
    return value if value % 2 == 1 else value + 1


class GrayscaleTool(VisionTool):
    """Convert the working region to a single intensity channel."""

    tool_type = "grayscale"
    display_name = "Grayscale"

    def _run(self, image: np.ndarray) -> ToolResult:
        work_image = self.extract_roi(image)
        gray = to_grayscale(work_image)
        output = self.apply_roi_result(image, gray)

        return ToolResult(
            success=True,
            message="Grayscale conversion complete",
            output_image=output,
            data={
                'channels': 1,
                'width': int(output.shape[1]),
                'height': int(output.shape[0])
            }
        )


class BlurMethod(Enum):
    GAUSSIAN = "gaussian"
    MEDIAN = "median"
    BOX = "box"
    BILATERAL = "bilateral"


class BlurTool(VisionTool):
    """Smooth the working region to suppress noise before analysis."""

    tool_type = "blur"
    display_name = "Blur"
    PARAMETERS = (
        Parameter('method', BlurMethod.GAUSSIAN),
        Parameter('kernel_size', 5, minimum=1, maximum=99),
        Parameter('sigma', 0.0, minimum=0.0),
        Parameter('bilateral_sigma_color', 75.0, minimum=0.0),
        Parameter('bilateral_sigma_space', 75.0, minimum=0.0),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        work_image = self.extract_roi(image)
        ksize = _odd(self.kernel_size)

        if self.method == BlurMethod.GAUSSIAN:
            blurred = cv2.GaussianBlur(work_image, (ksize, ksize), self.sigma)
        elif self.method == BlurMethod.MEDIAN:
            blurred = cv2.medianBlur(work_image, ksize)
        elif self.method == BlurMethod.BOX:
            blurred = cv2.blur(work_image, (ksize, ksize))
        else:
            blurred = cv2.bilateralFilter(
                work_image,
                ksize,
                self.bilateral_sigma_color,
                self.bilateral_sigma_space
            )

        return ToolResult(
            success=True,
            message=f"{self.method.value.capitalize()} blur complete (kernel {ksize})",
            output_image=self.apply_roi_result(image, blurred),
            data={'kernel_size': ksize}
        )


class ThresholdType(Enum):
    BINARY = "binary"
    BINARY_INV = "binary_inv"
    TRUNCATE = "truncate"
    TO_ZERO = "to_zero"
    TO_ZERO_INV = "to_zero_inv"


class AdaptiveMethod(Enum):
    NONE = "none"
    MEAN = "mean"
    GAUSSIAN = "gaussian"


_THRESHOLD_FLAGS = {
    ThresholdType.BINARY: cv2.THRESH_BINARY,
    ThresholdType.BINARY_INV: cv2.THRESH_BINARY_INV,
    ThresholdType.TRUNCATE: cv2.THRESH_TRUNC,
    ThresholdType.TO_ZERO: cv2.THRESH_TOZERO,
    ThresholdType.TO_ZERO_INV: cv2.THRESH_TOZERO_INV,
}


class ThresholdTool(VisionTool):
    """
    Binarize the working region.

    With ``adaptive_method`` set, a local (mean or Gaussian weighted) threshold
    is computed per pixel; adaptive thresholding only supports the binary and
    inverted-binary types. With ``use_otsu`` the global threshold is chosen
    from the histogram and reported in the result data.
    """

    tool_type = "threshold"
    display_name = "Threshold"
    PARAMETERS = (
        Parameter('threshold_value', 128.0, minimum=0.0, maximum=255.0),
        Parameter('max_value', 255.0, minimum=0.0, maximum=255.0),
        Parameter('threshold_type', ThresholdType.BINARY),
        Parameter('use_otsu', False),
        Parameter('adaptive_method', AdaptiveMethod.NONE),
        Parameter('block_size', 11, minimum=3, maximum=255),
        Parameter('constant_c', 2.0),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        gray = to_grayscale(self.extract_roi(image))
        flag = _THRESHOLD_FLAGS[self.threshold_type]

        if self.adaptive_method != AdaptiveMethod.NONE:
            if self.threshold_type not in (ThresholdType.BINARY, ThresholdType.BINARY_INV):
                raise ValueError(
                    f"Adaptive threshold does not support type '{self.threshold_type.value}'"
                )
            method = (cv2.ADAPTIVE_THRESH_MEAN_C
                      if self.adaptive_method == AdaptiveMethod.MEAN
                      else cv2.ADAPTIVE_THRESH_GAUSSIAN_C)
            binary = cv2.adaptiveThreshold(
                gray,
                self.max_value,
                method,
                flag,
                _odd(self.block_size),
                self.constant_c
            )
            used = None
        else:
            if self.use_otsu:
                flag |= cv2.THRESH_OTSU
            used, binary = cv2.threshold(gray, self.threshold_value, self.max_value, flag)

        data = {'foreground_pixels': int(np.count_nonzero(binary))}
        if used is not None:
            data['threshold_used'] = float(used)
            message = f"Threshold complete (value {used:.0f})"
        else:
            message = f"Adaptive threshold complete ({self.adaptive_method.value})"

        logger.debug(f"{self.name}: {message}, foreground={data['foreground_pixels']}")

        return ToolResult(
            success=True,
            message=message,
            output_image=self.apply_roi_result(image, binary),
            data=data
        )


class EdgeMethod(Enum):
    CANNY = "canny"
    SOBEL = "sobel"
    LAPLACIAN = "laplacian"


class EdgeDetectionTool(VisionTool):
    """Produce an edge-magnitude map of the working region."""

    tool_type = "edge_detection"
    display_name = "Edge Detection"
    PARAMETERS = (
        Parameter('method', EdgeMethod.CANNY),
        Parameter('low_threshold', 50.0, minimum=0.0),
        Parameter('high_threshold', 150.0, minimum=0.0),
        Parameter('aperture_size', 3, minimum=1, maximum=7),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        gray = to_grayscale(self.extract_roi(image))
        aperture = _odd(self.aperture_size)

        if self.method == EdgeMethod.CANNY:
            edges = cv2.Canny(
                gray,
                self.low_threshold,
                self.high_threshold,
                apertureSize=max(3, aperture)
            )
        elif self.method == EdgeMethod.SOBEL:
            grad_x = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=aperture)
            grad_y = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=aperture)
            edges = cv2.convertScaleAbs(cv2.magnitude(grad_x, grad_y))
        else:
            edges = cv2.convertScaleAbs(cv2.Laplacian(gray, cv2.CV_32F, ksize=aperture))

        edge_pixels = int(np.count_nonzero(edges))

        return ToolResult(
            success=True,
            message=f"{self.method.value.capitalize()} edge detection complete",
            output_image=self.apply_roi_result(image, edges),
            data={'edge_pixels': edge_pixels}
        )


class MorphologyOperation(Enum):
    ERODE = "erode"
    DILATE = "dilate"
    OPEN = "open"
    CLOSE = "close"
    GRADIENT = "gradient"
    TOP_HAT = "top_hat"
    BLACK_HAT = "black_hat"


class KernelShape(Enum):
    RECT = "rect"
    ELLIPSE = "ellipse"
    CROSS = "cross"


_MORPH_OPS = {
    MorphologyOperation.ERODE: cv2.MORPH_ERODE,
    MorphologyOperation.DILATE: cv2.MORPH_DILATE,
    MorphologyOperation.OPEN: cv2.MORPH_OPEN,
    MorphologyOperation.CLOSE: cv2.MORPH_CLOSE,
    MorphologyOperation.GRADIENT: cv2.MORPH_GRADIENT,
    MorphologyOperation.TOP_HAT: cv2.MORPH_TOPHAT,
    MorphologyOperation.BLACK_HAT: cv2.MORPH_BLACKHAT,
}

_KERNEL_SHAPES = {
    KernelShape.RECT: cv2.MORPH_RECT,
    KernelShape.ELLIPSE: cv2.MORPH_ELLIPSE,
    KernelShape.CROSS: cv2.MORPH_CROSS,
}


class MorphologyTool(VisionTool):
    tool_type = "morphology"
    display_name = "Morphology"
    PARAMETERS = (
        Parameter('operation', MorphologyOperation.OPEN),
        Parameter('kernel_shape', KernelShape.RECT),
        Parameter('kernel_size', 3, minimum=1, maximum=99),
        Parameter('iterations', 1, minimum=1, maximum=50),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        work_image = self.extract_roi(image)
        kernel = cv2.getStructuringElement(
            _KERNEL_SHAPES[self.kernel_shape],
            (self.kernel_size, self.kernel_size)
        )
        processed = cv2.morphologyEx(
            work_image,
            _MORPH_OPS[self.operation],
            kernel,
            iterations=self.iterations
        )

        return ToolResult(
            success=True,
            message=f"Morphology {self.operation.value} complete",
            output_image=self.apply_roi_result(image, processed)
        )


class Equalization(Enum):
    NONE = "none"
    GLOBAL = "global"
    CLAHE = "clahe"


class HistogramTool(VisionTool):
    """
    Measure the intensity distribution of the working region.

    The output image is the grayscale region, optionally equalized. CLAHE
    settings follow the usual lighting-normalization defaults (clip limit 2.0,
    8x8 tiles).
    """

    tool_type = "histogram"
    display_name = "Histogram"
    PARAMETERS = (
        Parameter('equalization', Equalization.NONE),
        Parameter('clahe_clip_limit', 2.0, minimum=0.1),
        Parameter('clahe_tile_grid', 8, minimum=1, maximum=64),
    )

    def _run(self, image: np.ndarray) -> ToolResult:
        gray = to_grayscale(self.extract_roi(image))

        histogram = cv2.calcHist([gray], [0], None, [256], [0, 256]).flatten()
        occupied = np.flatnonzero(histogram)
        mean, std = cv2.meanStdDev(gray)

        if self.equalization == Equalization.GLOBAL:
            gray = cv2.equalizeHist(gray)
        elif self.equalization == Equalization.CLAHE:
            clahe = cv2.createCLAHE(
                clipLimit=self.clahe_clip_limit,
                tileGridSize=(self.clahe_tile_grid, self.clahe_tile_grid)
            )
            gray = clahe.apply(gray)

        data = {
            'mean': float(mean[0][0]),
            'std_dev': float(std[0][0]),
            'min': int(occupied[0]),
            'max': int(occupied[-1]),
            'pixel_count': int(histogram.sum()),
            'histogram': [int(v) for v in histogram],
        }

        return ToolResult(
            success=True,
            message=f"Histogram: mean={data['mean']:.1f}, std={data['std_dev']:.1f}",
            output_image=self.apply_roi_result(image, gray),
            data=data
        )
