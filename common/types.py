from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple, Any, Dict, List
import numpy as np


UNSET = -1  # match index of a keypoint without a partner


def _as_float_array(x: Any, ndim: int, name: str) -> np.ndarray:
    a = np.array(x, dtype=np.float64)
    if a.ndim != ndim:
        raise ValueError(f"{name} must be {ndim}-D, got shape {a.shape}")
    return a


def _none_if_nan(v: float) -> Optional[float]:
    v = float(v)
    return None if not np.isfinite(v) else v


@dataclass(slots=True)
class Keypoint:
    """
    A single keypoint as produced by the feature extractor.

    Attributes:
        x, y: position in image pixel coordinates.
        scale: detection scale (> 0), used for visualization.
        orientation: dominant orientation in degrees.
        descriptor: (D,) L2-normalized appearance vector.
    """
    x: float
    y: float
    scale: float
    orientation: float
    descriptor: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        self.descriptor = np.asarray(self.descriptor, dtype=np.float32).reshape(-1)
        if self.scale <= 0:
            raise ValueError("scale must be > 0")

    @property
    def pt(self) -> Tuple[float, float]:
        return (float(self.x), float(self.y))


@dataclass(slots=True)
class KeypointSet:
    """
    Descriptor Store: all keypoints extracted from one image, column-wise.

    Attributes:
        positions: (N,2) float64 pixel coordinates (x, y).
        scales: (N,) positive floats.
        orientations: (N,) degrees.
        descriptors: (N,D) float32, assumed L2-normalized upstream.
        width, height: optional source image size in pixels.

    The arrays are marked read-only; pipeline stages never write into them.
    """
    positions: np.ndarray
    scales: np.ndarray
    orientations: np.ndarray
    descriptors: np.ndarray = field(repr=False)
    width: Optional[int] = None
    height: Optional[int] = None

    def __post_init__(self) -> None:
        self.positions = _as_float_array(self.positions, 2, "positions")
        if self.positions.shape[1] != 2:
            raise ValueError("positions must have shape (N,2)")
        self.scales = _as_float_array(self.scales, 1, "scales")
        self.orientations = _as_float_array(self.orientations, 1, "orientations")
        d = np.array(self.descriptors, dtype=np.float32)
        if d.ndim != 2:
            raise ValueError(f"descriptors must be 2-D (N,D), got shape {d.shape}")
        self.descriptors = d
        n = self.positions.shape[0]
        if not (self.scales.shape[0] == self.orientations.shape[0] == d.shape[0] == n):
            raise ValueError("positions/scales/orientations/descriptors length mismatch")
        if n and np.any(self.scales <= 0):
            raise ValueError("scales must be > 0")
        for a in (self.positions, self.scales, self.orientations, self.descriptors):
            a.flags.writeable = False

    @classmethod
    def from_keypoints(
        cls,
        kps: Sequence[Keypoint],
        dim: int = 128,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> "KeypointSet":
        if not kps:
            return cls.empty(dim, width=width, height=height)
        return cls(
            positions=np.array([[k.x, k.y] for k in kps], dtype=np.float64),
            scales=np.array([k.scale for k in kps], dtype=np.float64),
            orientations=np.array([k.orientation for k in kps], dtype=np.float64),
            descriptors=np.stack([k.descriptor for k in kps]).astype(np.float32),
            width=width,
            height=height,
        )

    @classmethod
    def empty(cls, dim: int = 128, width: Optional[int] = None, height: Optional[int] = None) -> "KeypointSet":
        return cls(
            positions=np.zeros((0, 2)),
            scales=np.zeros(0),
            orientations=np.zeros(0),
            descriptors=np.zeros((0, dim), dtype=np.float32),
            width=width,
            height=height,
        )

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    def __getitem__(self, i: int) -> Keypoint:
        return Keypoint(
            x=float(self.positions[i, 0]),
            y=float(self.positions[i, 1]),
            scale=float(self.scales[i]),
            orientation=float(self.orientations[i]),
            descriptor=self.descriptors[i].copy(),
        )

    @property
    def dim(self) -> int:
        return int(self.descriptors.shape[1])

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without descriptor payload (safe to log)."""
        return {"num_points": len(self), "dim": self.dim, "width": self.width, "height": self.height}


@dataclass(slots=True, frozen=True)
class Correspondence:
    """Per-keypoint view of a Correspondences row; unset values are None."""
    index: int
    match: Optional[int]
    score: Optional[float]
    ambiguity: Optional[float]
    match_error: Optional[float]


@dataclass(slots=True)
class Correspondences:
    """
    Match annotation for every keypoint of collection A.

    Returned by the matcher and re-issued (never mutated) by the refiner.
    `match` holds indices into collection B, UNSET (-1) when there is none;
    float columns use NaN for "unset".
    """
    match: np.ndarray
    score: np.ndarray
    ambiguity: np.ndarray
    match_error: np.ndarray

    def __post_init__(self) -> None:
        self.match = np.asarray(self.match, dtype=np.int64).reshape(-1)
        self.score = np.asarray(self.score, dtype=np.float64).reshape(-1)
        self.ambiguity = np.asarray(self.ambiguity, dtype=np.float64).reshape(-1)
        self.match_error = np.asarray(self.match_error, dtype=np.float64).reshape(-1)
        n = self.match.shape[0]
        if not (self.score.shape[0] == self.ambiguity.shape[0] == self.match_error.shape[0] == n):
            raise ValueError("correspondence column length mismatch")

    @classmethod
    def unset(cls, n: int) -> "Correspondences":
        nan = np.full(n, np.nan)
        return cls(match=np.full(n, UNSET, dtype=np.int64), score=nan, ambiguity=nan.copy(), match_error=nan.copy())

    def __len__(self) -> int:
        return int(self.match.shape[0])

    @property
    def matched(self) -> np.ndarray:
        return self.match != UNSET

    @property
    def num_matched(self) -> int:
        return int(self.matched.sum())

    def with_errors(self, match_error: np.ndarray) -> "Correspondences":
        err = np.asarray(match_error, dtype=np.float64).reshape(-1)
        if err.shape[0] != len(self):
            raise ValueError("match_error length mismatch")
        return replace(self, match_error=err.copy())

    def entry(self, i: int) -> Correspondence:
        m = int(self.match[i])
        return Correspondence(
            index=int(i),
            match=None if m == UNSET else m,
            score=_none_if_nan(self.score[i]),
            ambiguity=_none_if_nan(self.ambiguity[i]),
            match_error=_none_if_nan(self.match_error[i]),
        )

    def entries(self) -> List[Correspondence]:
        return [self.entry(i) for i in range(len(self))]
