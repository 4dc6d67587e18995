"""
Shared fixtures: synthetic images with known geometry.
"""

from pathlib import Path
import sys

import cv2
import numpy as np
import pytest

sourceRoot = Path(__file__).resolve().parents[1] / "src"
if str(sourceRoot) not in sys.path:
    sys.path.insert(0, str(sourceRoot))


@pytest.fixture
def two_circles_image():
    """Black 400x300 image with two white discs (radius 50 and 30)."""
    image = np.zeros((300, 400), dtype=np.uint8)
    cv2.circle(image, (100, 150), 50, 255, -1)
    cv2.circle(image, (280, 150), 30, 255, -1)
    return image


@pytest.fixture
def step_image():
    """200x100 grayscale image: dark (20) for x < 100, bright (220) from x = 100."""
    image = np.full((100, 200), 20, dtype=np.uint8)
    image[:, 100:] = 220
    return image


@pytest.fixture
def bar_image():
    """200x100 grayscale image with a bright vertical bar spanning x = 60..119."""
    image = np.full((100, 200), 20, dtype=np.uint8)
    image[:, 60:120] = 220
    return image


@pytest.fixture
def textured_pattern():
    """Seeded 200x200 texture of random gray rectangles on mid gray."""
    rng = np.random.RandomState(7)
    pattern = np.full((200, 200), 128, dtype=np.uint8)
    for _ in range(60):
        x, y = rng.randint(0, 180, size=2)
        w, h = rng.randint(8, 40, size=2)
        cv2.rectangle(pattern, (int(x), int(y)), (int(x + w), int(y + h)), int(rng.randint(0, 256)), -1)
    return pattern


@pytest.fixture
def scene_with_pattern(textured_pattern):
    """Black 500x400 scene with ``textured_pattern`` placed at (150, 100)."""
    scene = np.zeros((400, 500), dtype=np.uint8)
    scene[100:300, 150:350] = textured_pattern
    return scene


@pytest.fixture
def color_image():
    """Random 120x160 BGR image."""
    rng = np.random.RandomState(3)
    return rng.randint(0, 256, (120, 160, 3), dtype=np.uint8)
