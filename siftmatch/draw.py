from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from common.types import KeypointSet
from siftmatch.preprocess import to_gray_u8
from siftmatch.report import MatchReport


WHITE = 255.0
BLACK = 0.0


def draw_report(image: np.ndarray, set_a: KeypointSet, report: MatchReport) -> np.ndarray:
    """
    Overlay a report on a copy of the (grayscale) image of collection A:
      - a white line from every accepted keypoint to its match position
      - a marker square at every keypoint, black shadow offset by one pixel
        under a white outline, half-size min(1.41 * scale, distance to border)
    """
    out = np.array(image, dtype=np.float32, copy=True)
    h, w = out.shape[:2]

    for p in report.pairs:
        p0 = (int(p.pos_a[0]), int(p.pos_a[1]))
        p1 = (int(p.pos_b[0]), int(p.pos_b[1]))
        cv2.line(out, p0, p1, WHITE, 1)

    for (x, y), scale in zip(set_a.positions, set_a.scales):
        cx = int(x + 0.5)
        cy = int(y + 0.5)
        s = min(cx, cy, w - cx - 2, h - cy - 2, int(1.41 * scale))
        if s <= 0:
            continue
        cv2.rectangle(out, (cx + 1 - s, cy + 1 - s), (cx + 1 + s, cy + 1 + s), BLACK, 1)
        cv2.rectangle(out, (cx - s, cy - s), (cx + s, cy + s), WHITE, 1)
    return out


def save_image(path: str, image: np.ndarray) -> None:
    p = Path(path)
    if p.parent and not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(p), to_gray_u8(image)):
        raise OSError(f"Failed to write image: {path}")
