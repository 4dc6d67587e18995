"""
Visualization Module

Renders tool graphics onto overlay images for display.

Tools describe their annotations as a list of ``Graphic`` primitives in
absolute image coordinates; the overlay image is drawn from that same list so
both always agree:
- Contours and quadrilaterals as polygons
- Match and bounding boxes as rectangles
- Centers as crosshair markers
- Scores, widths and indices as text labels
"""

import logging
from typing import Iterable, List, Tuple

import cv2
import numpy as np

from .preprocessing import ensure_bgr
from .results import Color, Graphic, GraphicType
from .roi import Point, Rect

logger = logging.getLogger(__name__)


# Cyclic palette used to tell neighbouring blobs apart (BGR)
BLOB_PALETTE: List[Color] = [
    (0, 255, 0),      # Green
    (255, 0, 0),      # Blue
    (0, 255, 255),    # Yellow
    (255, 0, 255),    # Magenta
    (255, 255, 0),    # Cyan
    (0, 128, 255),    # Orange
    (128, 0, 255),    # Pink
    (0, 255, 128),    # Spring green
]

ROI_COLOR: Color = (0, 200, 200)
CENTER_COLOR: Color = (0, 0, 255)
LABEL_COLOR: Color = (255, 255, 255)

FONT = cv2.FONT_HERSHEY_SIMPLEX
CROSSHAIR_SIZE = 20


def palette_color(index: int) -> Color:
    """Color for the ``index``-th item of a list, cycling through the palette."""
    return BLOB_PALETTE[index % len(BLOB_PALETTE)]


def roi_graphic(rect: Rect) -> Graphic:
    """Rectangle graphic outlining a clipped ROI."""
    return Graphic(
        type=GraphicType.RECTANGLE,
        position=Point(rect.x, rect.y),
        width=rect.width,
        height=rect.height,
        color=ROI_COLOR,
        thickness=2
    )


def _pt(point: Point) -> Tuple[int, int]:
    return point.as_int()


def draw_graphic(image: np.ndarray, graphic: Graphic) -> None:
    """
    Draw a single graphic primitive onto a BGR image in place.

    Args:
        image: BGR image to annotate
        graphic: Primitive to draw

    Example:
        >>> draw_graphic(overlay, Graphic(GraphicType.CIRCLE, Point(50, 50), radius=10))
    """
    color = tuple(int(c) for c in graphic.color)
    thickness = max(1, int(graphic.thickness))
    kind = graphic.type

    if kind == GraphicType.POINT:
        cv2.circle(image, _pt(graphic.position), max(2, thickness), color, -1)

    elif kind == GraphicType.LINE:
        end = graphic.end_position or graphic.position
        cv2.line(image, _pt(graphic.position), _pt(end), color, thickness)

    elif kind == GraphicType.RECTANGLE:
        x, y = _pt(graphic.position)
        cv2.rectangle(
            image,
            (x, y),
            (x + int(round(graphic.width)), y + int(round(graphic.height))),
            color,
            thickness
        )

    elif kind == GraphicType.CIRCLE:
        cv2.circle(image, _pt(graphic.position), int(round(graphic.radius)), color, thickness)

    elif kind == GraphicType.ELLIPSE:
        axes = (int(round(graphic.width / 2.0)), int(round(graphic.height / 2.0)))
        cv2.ellipse(image, _pt(graphic.position), axes, graphic.angle, 0, 360, color, thickness)

    elif kind == GraphicType.POLYGON:
        if graphic.points:
            polygon = np.array([_pt(p) for p in graphic.points], dtype=np.int32)
            cv2.polylines(image, [polygon], True, color, thickness)

    elif kind == GraphicType.CROSSHAIR:
        size = int(round(graphic.width)) if graphic.width > 0 else CROSSHAIR_SIZE
        cv2.drawMarker(image, _pt(graphic.position), color, cv2.MARKER_CROSS, size, thickness)

    elif kind == GraphicType.TEXT:
        if graphic.text:
            scale = graphic.height if graphic.height > 0 else 0.5
            cv2.putText(image, graphic.text, _pt(graphic.position), FONT, scale, color, thickness)

    else:
        logger.warning(f"Unknown graphic type: {kind}")


def render_graphics(image: np.ndarray, graphics: Iterable[Graphic]) -> np.ndarray:
    """
    Render graphics onto a BGR copy of ``image``.

    Args:
        image: Full-size source image (grayscale or color)
        graphics: Primitives in absolute image coordinates

    Returns:
        Annotated BGR overlay image
    """
    overlay = ensure_bgr(image)

    count = 0
    for graphic in graphics:
        draw_graphic(overlay, graphic)
        count += 1

    logger.debug(f"Rendered {count} graphics onto {overlay.shape[1]}x{overlay.shape[0]} overlay")

    return overlay


def text_graphic(text: str, position: Point, color: Color = LABEL_COLOR,
                 scale: float = 0.5, thickness: int = 1) -> Graphic:
    """Text label; ``height`` carries the font scale."""
    return Graphic(
        type=GraphicType.TEXT,
        position=position,
        height=scale,
        color=color,
        thickness=thickness,
        text=text
    )
