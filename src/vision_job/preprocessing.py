"""
Image Buffer Helpers

Normalizes the image buffers exchanged between tools:
- Accepting PIL images as well as numpy arrays
- Converting to grayscale for intensity-based algorithms
- Converting to BGR for color overlays
- Loading images from disk for callers and examples

All tools work on OpenCV conventions: uint8 arrays, 2-D for grayscale and
H x W x 3 (BGR) for color.
"""

import logging
from typing import Any, Union

import cv2
import numpy as np
from PIL import Image

from .errors import InputMissingError

logger = logging.getLogger(__name__)


def is_empty_image(image: Any) -> bool:
    """
    Check whether an image buffer is missing or has no pixels.

    Args:
        image: Candidate image (numpy array, PIL Image or None)

    Returns:
        True if there is nothing to process

    Example:
        >>> is_empty_image(np.zeros((0, 0), dtype=np.uint8))
        True
    """
    if image is None:
        return True
    if isinstance(image, Image.Image):
        return image.width == 0 or image.height == 0
    if isinstance(image, np.ndarray):
        return image.size == 0
    return True


def as_image_array(image: Union[np.ndarray, Image.Image]) -> np.ndarray:
    """
    Convert a tool input into an OpenCV-style numpy array.

    PIL images are converted from RGB(A) to BGR so that every downstream
    operation can assume OpenCV channel order. Arrays are returned as-is
    (callers copy when they need to mutate).

    Args:
        image: Input image (PIL Image or numpy array)

    Returns:
        Numpy array, 2-D grayscale or 3-D BGR/BGRA

    Raises:
        InputMissingError: If the image is None or empty
        TypeError: If the image type is not supported

    Example:
        >>> pil_image = Image.new('RGB', (64, 48), color=(255, 0, 0))
        >>> as_image_array(pil_image)[0, 0]
        array([  0,   0, 255], dtype=uint8)
    """
    if image is None:
        raise InputMissingError("No input image")

    if isinstance(image, Image.Image):
        if image.mode in ("L", "1"):
            array = np.array(image.convert("L"))
        elif image.mode == "RGBA":
            array = cv2.cvtColor(np.array(image), cv2.COLOR_RGBA2BGRA)
        else:
            array = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2BGR)
    elif isinstance(image, np.ndarray):
        array = image
    else:
        raise TypeError(f"Image must be PIL Image or numpy array, got {type(image)}")

    if array.size == 0:
        raise InputMissingError("Input image is empty")

    if array.ndim not in (2, 3):
        raise ValueError(f"Unexpected image shape: {array.shape}")

    return array


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert an image to a single-channel intensity image.

    Always returns a new buffer, even when the input is already grayscale.

    Args:
        image: 2-D grayscale, BGR or BGRA array

    Returns:
        2-D uint8 grayscale array
    """
    if image.ndim == 2:
        return image.copy()

    channels = image.shape[2]
    if channels == 1:
        return image[:, :, 0].copy()
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    raise ValueError(f"Unsupported channel count: {channels}")


def ensure_bgr(image: np.ndarray) -> np.ndarray:
    """Return a BGR copy of ``image`` suitable for color annotations."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    return image.copy()


def load_image(image_path: str) -> np.ndarray:
    """
    Load an image file into a BGR (or grayscale) numpy array.

    File access belongs to the caller; this helper exists for job setup code
    and examples that feed images into a pipeline.

    Args:
        image_path: Path to image file

    Returns:
        Numpy array in OpenCV channel order

    Raises:
        FileNotFoundError: If image file doesn't exist
        IOError: If image cannot be loaded

    Example:
        >>> image = load_image("/path/to/part.png")
        >>> image.shape
        (480, 640, 3)
    """
    try:
        with Image.open(image_path) as pil_image:
            pil_image.load()
            return as_image_array(pil_image)
    except FileNotFoundError:
        logger.error(f"Image file not found: {image_path}")
        raise
    except Exception as e:
        logger.error(f"Error loading image from {image_path}: {e}")
        raise IOError(f"Failed to load image: {e}")
