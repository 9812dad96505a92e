from __future__ import annotations

from dataclasses import dataclass
import math


def confidence_score(
    inliers: int,
    total_matches: int,
    rmse_px: float,
    alpha: float = 4.0,
    beta: float = 0.5,
    bias: float = 2.0,
) -> float:
    """
    A simple, bounded confidence score in [0,1] for a fitted homography:
      conf = σ( α * (inliers/total) - β * rmse_px - bias )
    where σ is a logistic squashing to [0,1]. Returns 0 when nothing fits.
    """
    if total_matches <= 0 or inliers <= 0:
        return 0.0
    if not math.isfinite(rmse_px):
        return 0.0
    ratio = min(1.0, inliers / float(total_matches))
    x = alpha * ratio - beta * rmse_px - bias
    return float(1.0 / (1.0 + math.exp(-x)))


@dataclass(slots=True)
class RunningStats:
    """
    Online mean/std using Welford's algorithm.
    """
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def add(self, x: float) -> None:
        self.n += 1
        d = x - self.mean
        self.mean += d / self.n
        d2 = x - self.mean
        self.m2 += d * d2

    @property
    def variance(self) -> float:
        return self.m2 / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std(self) -> float:
        return self.variance ** 0.5
