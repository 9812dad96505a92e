"""
Unit tests for SIFT feature extraction and preprocessing
"""

import cv2
import numpy as np
import pytest
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import ExtractorConfig
from siftmatch.features import (
    SiftExtractor,
    contrast_to_opencv,
    curvature_to_edge_ratio,
    normalize_descriptors,
)
from siftmatch.preprocess import load_gray_float, presmooth, to_gray_u8


def textured_image(seed=0, size=(240, 320)):
    rng = np.random.default_rng(seed)
    img = rng.uniform(0, 255, size).astype(np.float32)
    img = cv2.GaussianBlur(img, (0, 0), 3.0)
    img = (img - img.min()) / (img.max() - img.min()) * 255.0
    return img.astype(np.float32)


class TestConversions:
    """Test cases for threshold conversions"""

    def test_curvature_to_edge_ratio(self):
        """The returned ratio r satisfies (r+1)^2/r == t with r >= 1"""
        r = curvature_to_edge_ratio(16.0)
        assert r == pytest.approx(13.928, abs=1e-3)
        assert (r + 1) ** 2 / r == pytest.approx(16.0)

    def test_contrast_to_opencv(self):
        """0..255 contrast maps onto OpenCV's unit-range threshold"""
        assert contrast_to_opencv(5.0) == pytest.approx(30.0 / 255.0)

    def test_normalize_descriptors(self):
        """Rows come out unit length with large elements damped"""
        des = np.array([[10.0, 1.0, 1.0, 1.0], [3.0, 4.0, 0.0, 0.0]], dtype=np.float32)

        out = normalize_descriptors(des, clip=0.2)

        np.testing.assert_allclose(np.linalg.norm(out, axis=1), 1.0, rtol=1e-5)
        assert out[0, 0] < des[0, 0] / np.linalg.norm(des[0])
        assert out[1, 0] == pytest.approx(out[1, 1])

    def test_normalize_empty(self):
        """No descriptors stays empty"""
        out = normalize_descriptors(np.zeros((0, 128), dtype=np.float32), clip=0.2)
        assert out.shape == (0, 128)


class TestSiftExtractor:
    """Test cases for SiftExtractor"""

    def test_blank_image_has_no_keypoints(self):
        """A flat image yields an empty collection with its size recorded"""
        s = SiftExtractor(ExtractorConfig()).extract(np.full((64, 80), 128.0, dtype=np.float32))

        assert len(s) == 0
        assert s.dim == 128
        assert (s.width, s.height) == (80, 64)

    def test_textured_image(self):
        """Keypoints carry positive scale and unit descriptors"""
        s = SiftExtractor(ExtractorConfig()).extract(presmooth(textured_image()))

        assert len(s) > 5
        assert s.dim == 128
        assert np.all(s.scales > 0)
        np.testing.assert_allclose(np.linalg.norm(s.descriptors, axis=1), 1.0, rtol=1e-4)
        assert np.all((s.positions[:, 0] >= 0) & (s.positions[:, 0] < 320))

    def test_fewer_octaves_fewer_keypoints(self):
        """Limiting octaves only ever drops keypoints"""
        img = presmooth(textured_image(seed=1))

        full = SiftExtractor(ExtractorConfig(octaves=5)).extract(img)
        low = SiftExtractor(ExtractorConfig(octaves=2)).extract(img)

        assert len(low) <= len(full)

    def test_input_not_modified(self):
        """Extraction works on a copy of the image"""
        img = presmooth(textured_image(seed=2))
        before = img.copy()

        SiftExtractor(ExtractorConfig(initial_blur=1.0)).extract(img)

        np.testing.assert_array_equal(img, before)


class TestPreprocess:
    """Test cases for image loading helpers"""

    def test_load_round_trip(self, tmp_path):
        """A written PNG loads back as float32 grayscale"""
        img = textured_image(size=(30, 40))
        p = tmp_path / "img.png"
        cv2.imwrite(str(p), to_gray_u8(img))

        out = load_gray_float(str(p))

        assert out.dtype == np.float32
        assert out.shape == (30, 40)

    def test_missing_file(self, tmp_path):
        """Unreadable paths raise OSError"""
        with pytest.raises(OSError):
            load_gray_float(str(tmp_path / "nope.png"))

    def test_to_gray_u8_clips(self):
        """Float buffers are clipped into 0..255"""
        out = to_gray_u8(np.array([[-5.0, 300.0]], dtype=np.float32))
        assert out.dtype == np.uint8
        assert out.tolist() == [[0, 255]]
