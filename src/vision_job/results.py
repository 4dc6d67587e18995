"""
Result Model

The common output envelope every tool produces: pass/fail status, message,
optional output and overlay images, measurement data and the graphic
primitives used to annotate the overlay.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .errors import ErrorKind
from .roi import Point, Rect

Color = Tuple[int, int, int]

# Measurement values: numbers, flags, labels, geometry or record lists
DataValue = Union[int, float, bool, str, Point, Rect, list]


class GraphicType(Enum):
    POINT = "point"
    LINE = "line"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"
    POLYGON = "polygon"
    TEXT = "text"
    CROSSHAIR = "crosshair"


@dataclass
class Graphic:
    """
    A display primitive in absolute image coordinates.

    Which fields are meaningful depends on ``type``: lines use ``position`` and
    ``end_position``; rectangles use ``position`` as the top-left corner with
    ``width``/``height``; circles use ``radius``; ellipses use ``width`` and
    ``height`` as full axes and ``angle`` in degrees; polygons use ``points``.
    """

    type: GraphicType
    position: Point = Point(0.0, 0.0)
    end_position: Optional[Point] = None
    width: float = 0.0
    height: float = 0.0
    radius: float = 0.0
    angle: float = 0.0
    color: Color = (0, 255, 0)
    thickness: int = 2
    text: Optional[str] = None
    points: List[Point] = field(default_factory=list)


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    success: bool = False
    message: str = ""
    output_image: Optional[np.ndarray] = None
    overlay_image: Optional[np.ndarray] = None
    data: Dict[str, DataValue] = field(default_factory=dict)
    graphics: List[Graphic] = field(default_factory=list)
    error: Optional[ErrorKind] = None
    tool_id: Optional[str] = None
    tool_name: str = ""
    execution_time_ms: float = 0.0
    auxiliary_images: Dict[str, np.ndarray] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind, **kwargs: Any) -> "ToolResult":
        return cls(success=False, message=message, error=kind, **kwargs)

    @property
    def has_output(self) -> bool:
        return self.output_image is not None and self.output_image.size > 0

    @property
    def has_overlay(self) -> bool:
        return self.overlay_image is not None and self.overlay_image.size > 0

    def number(self, key: str) -> float:
        value = self.data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
            raise TypeError(f"Data '{key}' is not a number: {type(value).__name__}")
        return float(value)

    def point(self, key: str) -> Point:
        return self._typed(key, Point)

    def rect(self, key: str) -> Rect:
        return self._typed(key, Rect)

    def records(self, key: str) -> list:
        return self._typed(key, list)

    def _typed(self, key: str, expected: type) -> Any:
        value = self.data[key]
        if not isinstance(value, expected):
            raise TypeError(
                f"Data '{key}' is {type(value).__name__}, expected {expected.__name__}"
            )
        return value
