"""
Tool Abstraction

Every image-analysis operation in a job implements ``VisionTool``:
- ``configure(**params)`` sets its flat, named parameters
- ``execute(image)`` runs the algorithm and returns a ``ToolResult``
- ``clone()`` creates an independent copy with the same configuration

``execute()`` is the tool boundary: it validates the input, times the run and
turns any exception raised by the algorithm into a failed result, so a single
tool can never abort a pipeline run.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image

from .errors import ErrorKind, InputMissingError, VisionToolError
from .parameters import Parameter
from .preprocessing import as_image_array
from .results import ToolResult
from .roi import Rect, clip_roi, composite_roi, extract_roi, roi_enabled, roi_offset

logger = logging.getLogger(__name__)


class VisionTool(ABC):
    """Base class for all pipeline tools."""

    tool_type: str = ""
    display_name: str = ""
    PARAMETERS: Tuple[Parameter, ...] = ()

    def __init__(self, name: Optional[str] = None, **params: Any) -> None:
        self.id: str = uuid.uuid4().hex
        self.name: str = name or self.display_name or self.tool_type
        self.enabled: bool = True
        self.roi: Rect = Rect()
        self.use_roi: bool = False
        self.last_result: Optional[ToolResult] = None
        self.execution_time_ms: float = 0.0

        for parameter in self.PARAMETERS:
            setattr(self, parameter.name, parameter.default)

        if params:
            self.configure(**params)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} id={self.id[:8]}>"

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, **params: Any) -> "VisionTool":
        """
        Set named parameters.

        Besides the tool's own parameters the common settings ``name``,
        ``enabled``, ``roi`` (a ``Rect`` or an ``(x, y, w, h)`` tuple) and
        ``use_roi`` are accepted.

        Raises:
            KeyError: If a parameter name is unknown
            ValueError: If an enumerated value is invalid
        """
        declared = {parameter.name: parameter for parameter in self.PARAMETERS}

        for key, value in params.items():
            if key == "roi":
                self.roi = value if isinstance(value, Rect) else Rect(*(int(v) for v in value))
            elif key == "use_roi":
                self.use_roi = bool(value)
            elif key == "enabled":
                self.enabled = bool(value)
            elif key == "name":
                self.name = str(value)
            elif key in declared:
                setattr(self, key, declared[key].coerce(value))
            else:
                raise KeyError(f"{type(self).__name__} has no parameter '{key}'")

        self._validate_ranges()
        return self

    def _validate_ranges(self) -> None:
        """Hook for cross-parameter constraints (e.g. max >= min)."""

    def parameters(self) -> Dict[str, Any]:
        """Current values of the tool's own parameters."""
        return {parameter.name: getattr(self, parameter.name) for parameter in self.PARAMETERS}

    def clone(self) -> "VisionTool":
        """Independent copy with a new id and identical configuration."""
        copy = type(self)(name=self.name)
        copy.enabled = self.enabled
        copy.roi = self.roi
        copy.use_roi = self.use_roi
        copy.configure(**self.parameters())
        self._copy_state_to(copy)
        return copy

    def _copy_state_to(self, other: "VisionTool") -> None:
        """Hook for tools carrying trained state beyond their parameters."""

    # ------------------------------------------------------------------
    # ROI helpers
    # ------------------------------------------------------------------

    @property
    def has_roi(self) -> bool:
        return roi_enabled(self.roi, self.use_roi)

    def clipped_roi(self, image: np.ndarray) -> Rect:
        return clip_roi(self.roi, image.shape)

    def roi_offset(self, image: np.ndarray) -> Tuple[int, int]:
        return roi_offset(image, self.roi, self.use_roi)

    def extract_roi(self, image: np.ndarray) -> np.ndarray:
        """Working region of ``image``; raises if the ROI misses the image."""
        work_image = extract_roi(image, self.roi, self.use_roi)
        if work_image.size == 0:
            raise InputMissingError(f"ROI {self.roi.as_tuple()} lies outside the input image")
        return work_image

    def apply_roi_result(
        self,
        image: np.ndarray,
        processed: np.ndarray,
        fill_color: Union[int, Tuple[int, ...]] = 0
    ) -> np.ndarray:
        return composite_roi(image, processed, self.roi, self.use_roi, fill_color)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, image: Union[np.ndarray, Image.Image]) -> ToolResult:
        """
        Run the tool on an image.

        Args:
            image: Full-size input image (numpy array or PIL Image)

        Returns:
            ToolResult; failures are reported in the result, never raised
        """
        start_time = time.perf_counter()

        try:
            array = as_image_array(image)
            result = self._run(array)

        except VisionToolError as e:
            logger.info(f"{self.name}: {e}")
            result = ToolResult.failure(str(e), e.kind)

        except Exception as e:
            logger.error(f"{self.name} failed: {e}", exc_info=True)
            result = ToolResult.failure(
                f"{self.display_name or self.tool_type} failed: {e}",
                ErrorKind.COMPUTATION_FAULT
            )

        self.execution_time_ms = (time.perf_counter() - start_time) * 1000
        result.tool_id = self.id
        result.tool_name = self.name
        result.execution_time_ms = self.execution_time_ms
        self.last_result = result

        logger.debug(
            f"{self.name}: success={result.success}, "
            f"time={self.execution_time_ms:.1f}ms, message={result.message!r}"
        )

        return result

    @abstractmethod
    def _run(self, image: np.ndarray) -> ToolResult:
        """Algorithm body; may raise ``VisionToolError`` or any other exception."""
