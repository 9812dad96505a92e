from __future__ import annotations
"""
Feature extraction adapter.

SiftExtractor wraps cv2.SIFT and returns a KeypointSet with L2-normalized
128-D descriptors. Parameters follow the command-line conventions:

- octaves: keypoints detected above this octave are dropped
- initial_blur: extra Gaussian sigma applied before detection
- contrast_threshold: DoG contrast in 0..255 image units
- curvature_threshold: principal-curvature ratio (r+1)^2/r
- descriptor_threshold: per-element clip before re-normalization
"""

import math
from dataclasses import dataclass, field
from typing import Optional

import cv2
import numpy as np

from common.config import ExtractorConfig
from common.logging_setup import get_logger
from common.types import KeypointSet
from siftmatch.preprocess import to_gray_u8


log = get_logger("siftmatch.features")

OCTAVE_LAYERS = 3


def contrast_to_opencv(contrast: float, layers: int = OCTAVE_LAYERS) -> float:
    # OpenCV thresholds DoG at 0.5 * contrastThreshold / nOctaveLayers on a 0..1 scale
    return 2.0 * layers * contrast / 255.0


def curvature_to_edge_ratio(curvature: float) -> float:
    """Invert t = (r+1)^2 / r for the larger root r (OpenCV edgeThreshold)."""
    b = curvature - 2.0
    return 0.5 * (b + math.sqrt(b * b - 4.0))


def normalize_descriptors(des: np.ndarray, clip: float) -> np.ndarray:
    """L2 normalize, clip each element at `clip`, then normalize again."""
    d = np.asarray(des, dtype=np.float32)
    if d.size == 0:
        return d.reshape(0, d.shape[1] if d.ndim == 2 else 128)
    norms = np.linalg.norm(d, axis=1, keepdims=True)
    d = d / np.maximum(norms, 1e-12)
    d = np.minimum(d, clip)
    norms = np.linalg.norm(d, axis=1, keepdims=True)
    return (d / np.maximum(norms, 1e-12)).astype(np.float32)


def _octave_of(kp: cv2.KeyPoint) -> int:
    o = kp.octave & 255
    return o - 256 if o >= 128 else o


@dataclass
class SiftExtractor:
    config: ExtractorConfig = field(default_factory=ExtractorConfig)

    def __post_init__(self):
        c = self.config
        self._det = cv2.SIFT_create(
            nfeatures=int(c.max_features),
            nOctaveLayers=OCTAVE_LAYERS,
            contrastThreshold=contrast_to_opencv(c.contrast_threshold),
            edgeThreshold=curvature_to_edge_ratio(c.curvature_threshold),
        )

    def extract(self, gray: np.ndarray, mask: Optional[np.ndarray] = None) -> KeypointSet:
        h, w = gray.shape[:2]
        img = gray
        if self.config.initial_blur > 0:
            img = cv2.GaussianBlur(np.asarray(img, dtype=np.float32), (0, 0), self.config.initial_blur)
        kps, des = self._det.detectAndCompute(to_gray_u8(img), mask)
        if des is None or not kps:
            log.debug("No keypoints detected", extra={"extra": {"width": w, "height": h}})
            return KeypointSet.empty(128, width=w, height=h)

        # octave index -1 is the upsampled base image
        keep = [i for i, kp in enumerate(kps) if _octave_of(kp) < self.config.octaves - 1]
        kps = [kps[i] for i in keep]
        des = normalize_descriptors(des[keep], self.config.descriptor_threshold)
        if not kps:
            return KeypointSet.empty(128, width=w, height=h)

        out = KeypointSet(
            positions=np.float64([kp.pt for kp in kps]),
            scales=np.float64([max(kp.size / 2.0, 1e-3) for kp in kps]),
            orientations=np.float64([kp.angle for kp in kps]),
            descriptors=des,
            width=w,
            height=h,
        )
        log.info("Extracted features", extra={"extra": out.to_meta()})
        return out
