from __future__ import annotations
"""
Image source for the pipeline:
- load an image as a single-channel float32 buffer
- the fixed 5x5 / sigma 1.0 pre-smoothing applied before extraction
- conversion back to uint8 for writing
"""

from typing import Tuple

import cv2
import numpy as np


def load_gray_float(path: str) -> np.ndarray:
    """Read any OpenCV-readable image as grayscale float32 (0..255)."""
    img = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise OSError(f"Failed to read image: {path}")
    return img.astype(np.float32)


def presmooth(gray: np.ndarray, ksize: Tuple[int, int] = (5, 5), sigma: float = 1.0) -> np.ndarray:
    return cv2.GaussianBlur(gray, ksize, sigma)


def to_gray_u8(img: np.ndarray) -> np.ndarray:
    if img.ndim == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    if img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    return img
