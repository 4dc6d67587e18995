"""
Tests for blob extraction, descriptors and filtering
"""

import math

import pytest
import cv2
import numpy as np

from vision_job.blob import (
    BlobSortBy,
    BlobTool,
    compute_blob_properties,
    get_blob_summary,
    passes_filters,
    sort_blobs
)
from vision_job.errors import ErrorKind
from vision_job.results import GraphicType
from vision_job.roi import Rect


def _single_contour(binary, approximation=cv2.CHAIN_APPROX_NONE):
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, approximation)
    assert len(contours) == 1
    return contours[0]


@pytest.fixture
def mixed_shapes_image():
    """Discs of several sizes plus a long thin bar"""
    image = np.zeros((300, 500), dtype=np.uint8)
    for center, radius in [((40, 40), 6), ((120, 60), 10), ((220, 80), 15), ((330, 100), 22), ((430, 120), 30)]:
        cv2.circle(image, center, radius, 255, -1)
    cv2.rectangle(image, (50, 230), (149, 239), 255, -1)
    return image


class TestBlobProperties:
    """Tests for compute_blob_properties"""

    def test_square_descriptors(self):
        """Test descriptors of a filled 40x40 square"""
        image = np.zeros((100, 100), dtype=np.uint8)
        image[30:70, 20:60] = 255

        blob = compute_blob_properties(_single_contour(image), 3)

        assert blob.id == 3
        assert blob.area == pytest.approx(39 * 39)
        assert blob.perimeter == pytest.approx(4 * 39)
        assert blob.bounding_rect == Rect(20, 30, 40, 40)
        assert blob.center_x == pytest.approx(39.5)
        assert blob.center_y == pytest.approx(49.5)
        assert blob.circularity == pytest.approx(math.pi / 4, rel=1e-3)
        assert blob.aspect_ratio == pytest.approx(1.0)
        assert blob.extent == pytest.approx(39 * 39 / 1600)
        assert blob.convexity == pytest.approx(1.0)
        assert blob.solidity == blob.convexity
        assert blob.equivalent_diameter == pytest.approx(math.sqrt(4 * 39 * 39 / math.pi))
        assert blob.min_area_rect is not None
        assert blob.fit_ellipse is not None

    def test_few_points_have_no_fits(self):
        """Test that a contour with fewer than 5 points has no rotated fits"""
        image = np.zeros((100, 100), dtype=np.uint8)
        image[30:70, 20:60] = 255

        blob = compute_blob_properties(_single_contour(image, cv2.CHAIN_APPROX_SIMPLE), 0)

        assert len(blob.contour) == 4
        assert blob.min_area_rect is None
        assert blob.fit_ellipse is None
        assert blob.circularity > 0
        assert blob.aspect_ratio == pytest.approx(1.0)

    def test_offset(self):
        """Test translating a record into image coordinates"""
        image = np.zeros((100, 100), dtype=np.uint8)
        image[30:70, 20:60] = 255
        blob = compute_blob_properties(_single_contour(image), 0)

        moved = blob.offset(100, 200)

        assert moved.center_x == pytest.approx(blob.center_x + 100)
        assert moved.bounding_rect == Rect(120, 230, 40, 40)
        assert moved.contour[0].x == blob.contour[0].x + 100
        assert moved.min_area_rect.center.y == pytest.approx(blob.min_area_rect.center.y + 200)
        assert moved.area == blob.area

    def test_summary(self):
        """Test aggregate area statistics"""
        image = np.zeros((100, 100), dtype=np.uint8)
        image[30:70, 20:60] = 255
        blob = compute_blob_properties(_single_contour(image), 0)

        summary = get_blob_summary([blob, blob])

        assert summary['blob_count'] == 2
        assert summary['total_area'] == pytest.approx(2 * blob.area)
        assert summary['largest_blob_area'] == summary['smallest_blob_area']
        assert get_blob_summary([]) == {'blob_count': 0}


class TestBlobTool:
    """Tests for BlobTool"""

    def test_two_circles(self, two_circles_image):
        """Test areas and ordering of two discs of known radius"""
        tool = BlobTool(sort_by=BlobSortBy.AREA, sort_descending=True)

        result = tool.execute(two_circles_image)

        blobs = result.data['blobs']
        assert result.success is True
        assert result.data['blob_count'] == 2
        assert blobs[0].area == pytest.approx(math.pi * 50 ** 2, rel=0.05)
        assert blobs[1].area == pytest.approx(math.pi * 30 ** 2, rel=0.05)
        assert blobs[0].area > blobs[1].area
        assert result.data['center_x'] == pytest.approx(100, abs=1)
        assert result.data['center_y'] == pytest.approx(150, abs=1)
        assert result.data['bounding_rect'] == blobs[0].bounding_rect

    def test_ascending_sort(self, two_circles_image):
        """Test ascending order"""
        result = BlobTool(sort_descending=False).execute(two_circles_image)

        blobs = result.data['blobs']
        assert blobs[0].area < blobs[1].area

    def test_sort_by_center_x(self, two_circles_image):
        """Test sorting by position"""
        result = BlobTool(sort_by="center_x", sort_descending=True).execute(two_circles_image)

        assert result.data['blobs'][0].center_x > result.data['blobs'][1].center_x

    def test_max_blob_count(self, two_circles_image):
        """Test truncation to the maximum count"""
        result = BlobTool(max_blob_count=1).execute(two_circles_image)

        assert result.data['blob_count'] == 1
        assert result.data['blobs'][0].area > 5000

    def test_summary_data(self, two_circles_image):
        """Test aggregate statistics in the result"""
        result = BlobTool().execute(two_circles_image)

        areas = [b.area for b in result.data['blobs']]
        assert result.data['total_area'] == pytest.approx(sum(areas))
        assert result.data['average_area'] == pytest.approx(sum(areas) / 2)
        assert result.data['largest_blob_area'] == pytest.approx(max(areas))
        assert result.data['smallest_blob_area'] == pytest.approx(min(areas))

    def test_no_blobs(self):
        """Test that an empty scene is a detection failure with images"""
        result = BlobTool().execute(np.zeros((100, 100), dtype=np.uint8))

        assert result.success is False
        assert result.error is ErrorKind.NO_DETECTION
        assert result.data['blob_count'] == 0
        assert result.has_output
        assert result.has_overlay

    def test_inverted_polarity(self):
        """Test dark objects on a bright background"""
        image = np.full((200, 200), 255, dtype=np.uint8)
        cv2.circle(image, (100, 100), 40, 0, -1)

        result = BlobTool(invert_polarity=True).execute(image)

        assert result.data['blob_count'] == 1
        assert result.data['center_x'] == pytest.approx(100, abs=1)

    def test_prebinarized_input(self, two_circles_image):
        """Test skipping the internal threshold"""
        result = BlobTool(use_internal_threshold=False).execute(two_circles_image)

        assert result.data['blob_count'] == 2

    def test_roi_offset(self):
        """Test that descriptors are reported in absolute coordinates"""
        image = np.zeros((300, 400), dtype=np.uint8)
        cv2.circle(image, (300, 200), 20, 255, -1)
        cv2.circle(image, (60, 60), 20, 255, -1)

        tool = BlobTool(roi=(250, 150, 100, 100), use_roi=True)
        result = tool.execute(image)

        blob = result.data['blobs'][0]
        assert result.data['blob_count'] == 1
        assert blob.center_x == pytest.approx(300, abs=1)
        assert blob.center_y == pytest.approx(200, abs=1)
        assert blob.bounding_rect.x == pytest.approx(280, abs=1)
        assert result.output_image.shape == (300, 400)
        assert not result.output_image[:150].any()

    def test_thin_bar_filters(self, mixed_shapes_image):
        """Test circularity and aspect ratio filters against a thin bar"""
        everything = BlobTool(min_area=0).execute(mixed_shapes_image)
        round_only = BlobTool(min_area=0, min_circularity=0.6).execute(mixed_shapes_image)
        compact_only = BlobTool(min_area=0, max_aspect_ratio=2.0).execute(mixed_shapes_image)

        assert everything.data['blob_count'] == 6
        assert round_only.data['blob_count'] == 5
        assert compact_only.data['blob_count'] == 5

    @pytest.mark.parametrize("parameter, values", [
        ('min_area', [0, 100, 300, 700, 1500, 3000]),
        ('max_area', [1e9, 3000, 1500, 700, 300, 100]),
        ('min_perimeter', [0, 50, 100, 150, 200]),
        ('min_circularity', [0.0, 0.3, 0.6, 0.8, 0.95]),
        ('max_aspect_ratio', [100.0, 5.0, 1.2, 1.0, 0.5]),
        ('min_convexity', [0.0, 0.5, 0.9, 0.99, 1.0]),
    ])
    def test_filtering_is_monotonic(self, mixed_shapes_image, parameter, values):
        """Test that tightening one range never increases the blob count"""
        counts = []
        for value in values:
            params = {'min_area': 0}
            params[parameter] = value
            counts.append(BlobTool(**params).execute(mixed_shapes_image).data['blob_count'])

        assert counts == sorted(counts, reverse=True)

    def test_overlay_graphics(self, two_circles_image):
        """Test per-blob graphics and the overlay image"""
        tool = BlobTool(roi=(0, 0, 400, 300), use_roi=True)

        result = tool.execute(two_circles_image)

        types = [g.type for g in result.graphics]
        assert types.count(GraphicType.POLYGON) == 2
        assert types.count(GraphicType.CROSSHAIR) == 2
        assert types.count(GraphicType.TEXT) == 2
        assert types.count(GraphicType.RECTANGLE) == 3
        assert result.overlay_image.shape == (300, 400, 3)

    def test_drawing_switches(self, two_circles_image):
        """Test that disabled drawing options produce no graphics"""
        tool = BlobTool(
            draw_contours=False,
            draw_bounding_box=False,
            draw_center_point=False,
            draw_labels=False
        )

        assert tool.execute(two_circles_image).graphics == []

    def test_passes_filters_and_sort(self, two_circles_image):
        """Test the module-level filter and sort helpers"""
        tool = BlobTool(min_area=5000)
        blobs = BlobTool().execute(two_circles_image).data['blobs']

        assert [passes_filters(b, tool) for b in blobs] == [True, False]
        assert sort_blobs(blobs, BlobSortBy.AREA, descending=False)[0] is blobs[1]

    def test_max_clamped_to_min(self):
        """Test that a maximum below the minimum is raised to it"""
        tool = BlobTool(min_area=500, max_area=100)

        assert tool.max_area == 500
