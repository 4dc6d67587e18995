"""
Machine Vision Job Engine

This package runs inspection jobs: ordered lists of configurable image-analysis
tools executed over a source image, with typed connections routing images,
pass/fail status and coordinates between tools.

Main components:
- roi: Region-of-interest geometry, extraction and compositing
- results: Tool result envelope and overlay graphic primitives
- base: Tool abstraction (configure / execute / clone)
- image_processing: Grayscale, blur, threshold, edge, morphology, histogram
- blob: Blob extraction with shape filtering
- caliper: 1-D edge and width measurement
- template_match: Correlation matching with non-maximum suppression
- feature_match: Keypoint matching with homography estimation
- connections: Typed tool-to-tool connections
- registry: Tool type identifiers and factories
- pipeline: Job executor

Example usage:
    from vision_job import Pipeline, ConnectionType

    pipeline = Pipeline()
    threshold = pipeline.add_tool_by_type("threshold")
    blob = pipeline.add_tool_by_type("blob")
    blob.configure(min_area=50, sort_by="area")
    pipeline.add_connection(threshold, blob, ConnectionType.RESULT)

    pipeline.set_image(image)
    for result in pipeline.run():
        print(f"{result.tool_name}: {result.message}")
"""

__version__ = "0.1.0"
__author__ = "Vision Job Engine Team"

from .base import VisionTool
from .connections import Connection, ConnectionType
from .errors import ErrorKind, PipelineBusyError, VisionToolError
from .pipeline import Pipeline
from .registry import create_tool, get_available_tools, get_tool_display_name
from .results import Graphic, GraphicType, ToolResult
from .roi import Point, Rect

__all__ = [
    'Connection',
    'ConnectionType',
    'ErrorKind',
    'Graphic',
    'GraphicType',
    'Pipeline',
    'PipelineBusyError',
    'Point',
    'Rect',
    'ToolResult',
    'VisionTool',
    'VisionToolError',
    'create_tool',
    'get_available_tools',
    'get_tool_display_name',
]
