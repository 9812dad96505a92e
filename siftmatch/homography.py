from __future__ import annotations
"""
Planar homography helpers.

- Homography: 3x3 projective transform, row-major 9-float interchange
- project_points / reprojection_errors with explicit handling of w' ~ 0
- solve_homography: normalized DLT solved by SVD, exact for 4 points and a
  least-squares fit for more
- is_degenerate_sample: near-collinear / coincident minimal samples
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Iterable, Tuple

import numpy as np


W_EPS = 1e-8  # |w'| below this (relative to the largest |h_ij|) is unusable
RANK_EPS = 1e-10  # relative singular value below which the DLT system is rank deficient
COLLINEAR_SIN = 1e-3  # sine of the angle under which three points count as collinear


class DegenerateSampleError(ValueError):
    """Point set cannot determine a unique, finite homography."""


def _to_3x3(x) -> np.ndarray:
    a = np.array(x, dtype=np.float64)
    if a.size != 9:
        raise ValueError(f"Expected 9 values / 3x3, got shape {a.shape}")
    return a.reshape(3, 3)


def _as_points(points) -> np.ndarray:
    p = np.asarray(points, dtype=np.float64)
    if p.size == 0:
        return p.reshape(0, 2)
    if p.shape[-1] != 2:
        raise ValueError(f"points must have shape (N,2), got {p.shape}")
    return p.reshape(-1, 2)


@dataclass(frozen=True, eq=False)
class Homography:
    """
    Maps homogeneous source coordinates to destination coordinates:
        (x', y', w') = H @ (x, y, 1),   destination = (x'/w', y'/w')
    """
    matrix: np.ndarray

    def __post_init__(self) -> None:
        m = _to_3x3(self.matrix)
        if not np.all(np.isfinite(m)):
            raise ValueError("homography must be finite")
        m.flags.writeable = False
        object.__setattr__(self, "matrix", m)

    @classmethod
    def from_flat(cls, values: Iterable[float]) -> "Homography":
        return cls(np.asarray(list(values), dtype=np.float64))

    @classmethod
    def identity(cls) -> "Homography":
        return cls(np.eye(3))

    @classmethod
    def translation(cls, dx: float, dy: float) -> "Homography":
        return cls(np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]]))

    def flat(self) -> Tuple[float, ...]:
        return tuple(float(v) for v in self.matrix.ravel())

    def normalized(self) -> "Homography":
        """Scale so that h22 == 1 (left unchanged when h22 ~ 0)."""
        h22 = self.matrix[2, 2]
        if abs(h22) <= W_EPS * np.abs(self.matrix).max():
            return self
        return Homography(self.matrix / h22)

    def project(self, points, eps: float = W_EPS) -> Tuple[np.ndarray, np.ndarray]:
        return project_points(self, points, eps=eps)

    def allclose(self, other: "Homography", rtol: float = 1e-6, atol: float = 1e-8) -> bool:
        return bool(np.allclose(self.normalized().matrix, other.normalized().matrix, rtol=rtol, atol=atol))


def project_points(H: Homography, points, eps: float = W_EPS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Map (N,2) points through H.

    Returns (projected (N,2), valid (N,) bool). Rows whose homogeneous w' is
    (near) zero are never divided through: they come back as (0,0) with
    valid=False and must be ignored by the caller.
    """
    pts = _as_points(points)
    m = H.matrix
    hom = pts @ m[:, :2].T + m[:, 2]
    w = hom[:, 2]
    valid = np.abs(w) > eps * np.abs(m).max()
    out = np.zeros((pts.shape[0], 2), dtype=np.float64)
    np.divide(hom[:, :2], w[:, None], out=out, where=valid[:, None])
    finite = np.all(np.isfinite(out), axis=1)
    out[~finite] = 0.0
    return out, valid & finite


def reprojection_errors(H: Homography, src, dst, eps: float = W_EPS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Squared distance between H(src) and dst for each row.

    Returns (err_sq (N,), valid (N,)). err_sq is 0.0 where valid is False;
    it is always finite.
    """
    src = _as_points(src)
    dst = _as_points(dst)
    if src.shape != dst.shape:
        raise ValueError("src/dst shape mismatch")
    proj, valid = project_points(H, src, eps=eps)
    d = proj - dst
    err = np.einsum("ij,ij->i", d, d)
    err[~valid] = 0.0
    return err, valid


def _normalizing_transform(pts: np.ndarray) -> np.ndarray:
    """Hartley normalization: centroid to origin, mean distance sqrt(2)."""
    c = pts.mean(axis=0)
    d = np.sqrt(((pts - c) ** 2).sum(axis=1)).mean()
    if d <= 1e-12:
        raise DegenerateSampleError("all points coincide")
    s = np.sqrt(2.0) / d
    return np.array([[s, 0.0, -s * c[0]], [0.0, s, -s * c[1]], [0.0, 0.0, 1.0]])


def _apply(T: np.ndarray, pts: np.ndarray) -> np.ndarray:
    return pts @ T[:2, :2].T + T[:2, 2]


def solve_homography(src, dst) -> Homography:
    """
    Direct Linear Transform on Hartley-normalized coordinates.

    Four correspondences give the exact solution; more give the algebraic
    least-squares fit (the right singular vector of the smallest singular
    value of the stacked 2N x 9 system).

    Raises DegenerateSampleError when the system is rank deficient or the
    result is singular / non-finite.
    """
    src = _as_points(src)
    dst = _as_points(dst)
    if src.shape != dst.shape:
        raise ValueError("src/dst shape mismatch")
    n = src.shape[0]
    if n < 4:
        raise DegenerateSampleError(f"need at least 4 correspondences, got {n}")

    Ts = _normalizing_transform(src)
    Td = _normalizing_transform(dst)
    ps = _apply(Ts, src)
    pd = _apply(Td, dst)

    x, y = ps[:, 0], ps[:, 1]
    u, v = pd[:, 0], pd[:, 1]
    zeros = np.zeros(n)
    ones = np.ones(n)
    A = np.empty((2 * n, 9), dtype=np.float64)
    A[0::2] = np.stack([-x, -y, -ones, zeros, zeros, zeros, u * x, u * y, u], axis=1)
    A[1::2] = np.stack([zeros, zeros, zeros, -x, -y, -ones, v * x, v * y, v], axis=1)

    _, s, Vt = np.linalg.svd(A)
    # rank 8 is required for a unique solution up to scale
    if s.shape[0] < 8 or s[7] <= RANK_EPS * s[0]:
        raise DegenerateSampleError("DLT system is rank deficient")

    Hn = Vt[-1].reshape(3, 3)
    M = np.linalg.inv(Td) @ Hn @ Ts
    if not np.all(np.isfinite(M)):
        raise DegenerateSampleError("non-finite homography")
    scale = np.abs(M).max()
    if scale <= 0 or abs(np.linalg.det(M / scale)) <= 1e-12:
        raise DegenerateSampleError("singular homography")
    return Homography(M).normalized()


def _collinear(p: np.ndarray, q: np.ndarray, r: np.ndarray, sin_tol: float) -> bool:
    a = q - p
    b = r - p
    na = np.hypot(a[0], a[1])
    nb = np.hypot(b[0], b[1])
    if na <= 1e-9 or nb <= 1e-9:
        return True
    cross = abs(a[0] * b[1] - a[1] * b[0])
    return cross <= sin_tol * na * nb


def is_degenerate_sample(src, dst, sin_tol: float = COLLINEAR_SIN) -> bool:
    """True if any three points of either side are (near-)collinear or coincide."""
    src = _as_points(src)
    dst = _as_points(dst)
    for pts in (src, dst):
        for i, j, k in combinations(range(pts.shape[0]), 3):
            if _collinear(pts[i], pts[j], pts[k], sin_tol):
                return True
    return False
