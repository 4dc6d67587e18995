"""
Error taxonomy for vision tools and the pipeline executor.

Tools raise these inside their algorithms. ``VisionTool.execute()`` converts
them into failed results, so they never escape a pipeline run.
"""

from enum import Enum


class ErrorKind(Enum):
    """Why a tool result failed."""

    INPUT_MISSING = "input_missing"
    CONFIGURATION_INCOMPLETE = "configuration_incomplete"
    UPSTREAM_FAILED = "upstream_failed"
    COMPUTATION_FAULT = "computation_fault"
    NO_DETECTION = "no_detection"


class VisionToolError(Exception):
    """Base class for failures raised inside a tool's algorithm."""

    kind = ErrorKind.COMPUTATION_FAULT


class InputMissingError(VisionToolError, ValueError):
    """No image, or an empty image, was supplied."""

    kind = ErrorKind.INPUT_MISSING


class ConfigurationIncompleteError(VisionToolError):
    """A tool was executed before its pattern was trained or assigned."""

    kind = ErrorKind.CONFIGURATION_INCOMPLETE


class NoDetectionError(VisionToolError):
    """The algorithm ran but nothing met the configured thresholds."""

    kind = ErrorKind.NO_DETECTION


class PipelineBusyError(RuntimeError):
    """A run was requested while another run is still in flight."""
