"""
Tool registry: type identifiers mapped to tool classes and display names.
"""

import logging
from typing import Dict, List, Optional, Type

from .base import VisionTool
from .blob import BlobTool
from .caliper import CaliperTool
from .feature_match import FeatureMatchTool
from .image_processing import (
    BlurTool,
    EdgeDetectionTool,
    GrayscaleTool,
    HistogramTool,
    MorphologyTool,
    ThresholdTool
)
from .template_match import TemplateMatchTool

logger = logging.getLogger(__name__)

TOOL_TYPES: Dict[str, Type[VisionTool]] = {
    tool_class.tool_type: tool_class
    for tool_class in (
        GrayscaleTool,
        BlurTool,
        ThresholdTool,
        EdgeDetectionTool,
        MorphologyTool,
        HistogramTool,
        TemplateMatchTool,
        FeatureMatchTool,
        BlobTool,
        CaliperTool,
    )
}

TOOL_CATEGORIES: Dict[str, List[str]] = {
    "Image Processing": [
        "grayscale",
        "blur",
        "threshold",
        "edge_detection",
        "morphology",
        "histogram",
    ],
    "Pattern Matching": ["template_match", "feature_match"],
    "Blob Analysis": ["blob"],
    "Measurement": ["caliper"],
}


def create_tool(tool_type: str) -> Optional[VisionTool]:
    """
    Create a new tool instance for a type identifier.

    Args:
        tool_type: Identifier such as ``"blob"`` or ``"caliper"``

    Returns:
        New tool, or None if the identifier is unknown

    Example:
        >>> create_tool("threshold").display_name
        'Threshold'
        >>> create_tool("laser_scanner") is None
        True
    """
    tool_class = TOOL_TYPES.get(tool_type)
    if tool_class is None:
        logger.warning(f"Unknown tool type: {tool_type}")
        return None
    return tool_class()


def get_tool_display_name(tool_type: str) -> str:
    tool_class = TOOL_TYPES.get(tool_type)
    return tool_class.display_name if tool_class is not None else tool_type


def get_available_tools() -> Dict[str, List[str]]:
    """Tool identifiers grouped by category."""
    return {category: list(types) for category, types in TOOL_CATEGORIES.items()}
