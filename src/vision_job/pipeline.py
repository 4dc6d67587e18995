"""
Pipeline Executor

Runs an ordered list of vision tools over one source image.

Per run, for each enabled tool in list order:
1. Skip it (failed result) when a RESULT connection's source failed
2. Re-center its ROI from COORDINATES connections
3. Take its input from an IMAGE connection, or else from the working image
   (the latest output of tools that were not wired explicitly)
4. Execute it and publish its output and overlay

A failing tool never aborts the run; only a missing source image does.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Union

import numpy as np
from PIL import Image

from .base import VisionTool
from .connections import ConnectionTable, ConnectionType
from .errors import ErrorKind, PipelineBusyError
from .preprocessing import as_image_array, is_empty_image
from .registry import create_tool
from .results import ToolResult
from .roi import Rect

logger = logging.getLogger(__name__)

# ROI size used when a coordinate connection targets a tool without an ROI
DEFAULT_COORDINATE_ROI_SIZE = 100

ToolRef = Union[VisionTool, str]


def _tool_id(tool: ToolRef) -> str:
    return tool if isinstance(tool, str) else tool.id


class Pipeline:
    """
    An inspection job: tools, their connections and the current source image.

    Only one run may be in flight at a time; ``run()`` raises
    ``PipelineBusyError`` otherwise. ``run_async()`` hands runs to a single
    worker thread, so asynchronous runs queue behind each other.

    Example:
        >>> pipeline = Pipeline()
        >>> threshold = pipeline.add_tool_by_type("threshold")
        >>> blob = pipeline.add_tool_by_type("blob")
        >>> pipeline.set_image(image)
        >>> results = pipeline.run()
        >>> pipeline.last_run_success
        True
    """

    def __init__(self) -> None:
        self.tools: List[VisionTool] = []
        self.connections = ConnectionTable()
        self.current_image: Optional[np.ndarray] = None
        self.results: List[ToolResult] = []
        self.overlay_image: Optional[np.ndarray] = None
        self.total_execution_time_ms: float = 0.0
        self.last_run_success: bool = False

        self._run_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def add_tool(self, tool: VisionTool) -> VisionTool:
        self.tools.append(tool)
        logger.debug(f"Added tool {tool!r}")
        return tool

    def add_tool_by_type(self, tool_type: str) -> Optional[VisionTool]:
        """Create a tool from the registry and append it; None if the type is unknown."""
        tool = create_tool(tool_type)
        if tool is not None:
            self.add_tool(tool)
        return tool

    def remove_tool(self, tool: ToolRef) -> bool:
        """Remove a tool and every connection that touches it."""
        tool_id = _tool_id(tool)
        found = self.get_tool(tool_id)
        if found is None:
            return False

        self.tools.remove(found)
        removed = self.connections.remove_tool(tool_id)
        logger.debug(f"Removed tool {found!r} and {removed} connections")
        return True

    def move_tool(self, from_index: int, to_index: int) -> bool:
        count = len(self.tools)
        if not (0 <= from_index < count and 0 <= to_index < count):
            logger.warning(f"Cannot move tool from {from_index} to {to_index} ({count} tools)")
            return False

        tool = self.tools.pop(from_index)
        self.tools.insert(to_index, tool)
        return True

    def clear_tools(self) -> None:
        self.tools.clear()
        self.connections.clear()

    def get_tool(self, tool_id: str) -> Optional[VisionTool]:
        for tool in self.tools:
            if tool.id == tool_id:
                return tool
        return None

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def add_connection(self, source: ToolRef, target: ToolRef, kind: ConnectionType) -> bool:
        return self.connections.add(_tool_id(source), _tool_id(target), kind)

    def remove_connection(self, source: ToolRef, target: ToolRef, kind: ConnectionType) -> bool:
        return self.connections.remove(_tool_id(source), _tool_id(target), kind)

    def clear_connections(self) -> None:
        self.connections.clear()

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def set_image(self, image: Optional[Union[np.ndarray, Image.Image]]) -> None:
        """Set (a copy of) the source image; None clears it."""
        if image is None:
            self.current_image = None
            return
        self.current_image = as_image_array(image).copy()
        logger.debug(f"Source image set: {self.current_image.shape}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_tool(
        self,
        tool: VisionTool,
        image: Optional[Union[np.ndarray, Image.Image]] = None
    ) -> ToolResult:
        """
        Run a single tool outside of the job sequence.

        Args:
            tool: Tool to run
            image: Input image; defaults to the current source image

        Returns:
            The tool's result; a disabled tool passes its input through
        """
        if image is None:
            image = self.current_image

        if is_empty_image(image):
            return ToolResult.failure("No input image", ErrorKind.INPUT_MISSING)

        if not tool.enabled:
            return ToolResult(
                success=True,
                message="Tool is disabled",
                output_image=as_image_array(image).copy(),
                tool_id=tool.id,
                tool_name=tool.name
            )

        return tool.execute(image)

    def run(self) -> List[ToolResult]:
        """
        Execute all enabled tools in order.

        Returns:
            Results of this run (also kept in ``self.results``)

        Raises:
            PipelineBusyError: If another run is in progress
        """
        if not self._run_lock.acquire(blocking=False):
            raise PipelineBusyError("A pipeline run is already in progress")

        try:
            return self._run_all()
        finally:
            self._run_lock.release()

    def run_async(self) -> "Future[List[ToolResult]]":
        """Schedule ``run()`` on the pipeline's worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vision-job")
        return self._executor.submit(self.run)

    def close(self) -> None:
        """Wait for scheduled runs and stop the worker thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _run_all(self) -> List[ToolResult]:
        self.results = []
        self.overlay_image = None

        if is_empty_image(self.current_image):
            failure = ToolResult.failure("No input image", ErrorKind.INPUT_MISSING)
            self.results.append(failure)
            self.last_run_success = False
            logger.warning("Run aborted: no input image")
            return list(self.results)

        start_time = time.perf_counter()
        result_map: Dict[str, ToolResult] = {}
        working_image = self.current_image.copy()
        all_success = True

        logger.info(f"Running pipeline with {len(self.tools)} tools")

        for tool in list(self.tools):
            if not tool.enabled:
                continue

            if self._should_skip(tool, result_map):
                skipped = ToolResult.failure(
                    f"Skipped: upstream failed ({tool.name})",
                    ErrorKind.UPSTREAM_FAILED,
                    tool_id=tool.id,
                    tool_name=tool.name
                )
                self.results.append(skipped)
                result_map[tool.id] = skipped
                all_success = False
                logger.info(f"{tool.name}: skipped, upstream result failed")
                continue

            try:
                self._apply_coordinates(tool, result_map)
            except (TypeError, ValueError, OverflowError) as e:
                fault = ToolResult.failure(
                    f"Invalid coordinates: {e}",
                    ErrorKind.COMPUTATION_FAULT,
                    tool_id=tool.id,
                    tool_name=tool.name
                )
                self.results.append(fault)
                result_map[tool.id] = fault
                all_success = False
                logger.error(f"{tool.name}: coordinate connection failed: {e}")
                continue

            connected_image = self._connected_input(tool, result_map)
            input_image = connected_image if connected_image is not None else working_image.copy()

            result = tool.execute(input_image)
            self.results.append(result)
            result_map[tool.id] = result

            if not result.success:
                all_success = False

            if connected_image is None and result.has_output:
                working_image = result.output_image.copy()

            if result.has_overlay:
                self.overlay_image = result.overlay_image

        self.total_execution_time_ms = (time.perf_counter() - start_time) * 1000
        self.last_run_success = all_success

        logger.info(
            f"Pipeline run complete: success={all_success}, "
            f"{len(self.results)} results in {self.total_execution_time_ms:.1f}ms"
        )

        return list(self.results)

    def _should_skip(self, tool: VisionTool, result_map: Dict[str, ToolResult]) -> bool:
        for connection in self.connections.incoming(tool.id, ConnectionType.RESULT):
            source_result = result_map.get(connection.source_id)
            if source_result is not None and not source_result.success:
                return True
        return False

    def _apply_coordinates(self, tool: VisionTool, result_map: Dict[str, ToolResult]) -> None:
        for connection in self.connections.incoming(tool.id, ConnectionType.COORDINATES):
            source_result = result_map.get(connection.source_id)
            if source_result is None:
                continue

            data = source_result.data
            bounding_rect = data.get('bounding_rect')

            if isinstance(bounding_rect, Rect):
                tool.roi = bounding_rect
                tool.use_roi = True
            elif 'center_x' in data and 'center_y' in data:
                center_x = source_result.number('center_x')
                center_y = source_result.number('center_y')
                width = tool.roi.width if tool.roi.width > 0 else DEFAULT_COORDINATE_ROI_SIZE
                height = tool.roi.height if tool.roi.height > 0 else DEFAULT_COORDINATE_ROI_SIZE

                tool.roi = Rect(
                    int(center_x - width / 2),
                    int(center_y - height / 2),
                    width,
                    height
                )
                tool.use_roi = True
            else:
                continue

            logger.debug(f"{tool.name}: ROI set to {tool.roi.as_tuple()} from coordinates")

    def _connected_input(
        self,
        tool: VisionTool,
        result_map: Dict[str, ToolResult]
    ) -> Optional[np.ndarray]:
        for connection in self.connections.incoming(tool.id, ConnectionType.IMAGE):
            source_result = result_map.get(connection.source_id)
            if source_result is not None and source_result.has_output:
                return source_result.output_image.copy()
        return None
