from __future__ import annotations
"""
Robust homography estimation (RANSAC).

Each attempt draws a minimal sample of 4 gated correspondences, solves the
exact homography, and scores it against every gated correspondence. The
winner is a reduce over attempt outcomes with a commutative total order
(more inliers, then lower mean squared error, then earlier attempt), so the
result does not depend on the order outcomes are combined in.
"""

import math
import sys
import time
from dataclasses import dataclass, field
from functools import reduce
from typing import Iterator, Optional, Tuple

import numpy as np

from common.config import EstimatorConfig
from common.logging_setup import get_logger
from common.types import KeypointSet, Correspondences
from siftmatch.homography import (
    Homography,
    DegenerateSampleError,
    is_degenerate_sample,
    reprojection_errors,
    solve_homography,
)
from siftmatch.matcher import Gate


log = get_logger("siftmatch.ransac")

MIN_SAMPLE = 4


def matched_points(set_a: KeypointSet, set_b: KeypointSet, corr: Correspondences) -> Tuple[np.ndarray, np.ndarray]:
    """
    Source/destination positions for every row of `corr`. Rows without a
    match get a (0,0) destination; callers mask them out.
    """
    if len(corr) != len(set_a):
        raise ValueError("correspondences do not belong to collection A")
    src = set_a.positions
    dst = np.zeros_like(src)
    matched = corr.matched
    if matched.any():
        if corr.match[matched].max() >= len(set_b):
            raise ValueError("match index out of range for collection B")
        dst[matched] = set_b.positions[corr.match[matched]]
    return src, dst


def score_homography(
    H: Homography,
    src: np.ndarray,
    dst: np.ndarray,
    gated: np.ndarray,
    thresh: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Classify correspondences against H.

    Returns (inlier_mask, err_sq, valid): inliers are gated rows with a
    usable projection (w' not ~0) and err_sq < thresh**2.
    """
    err_sq, valid = reprojection_errors(H, src, dst)
    inliers = gated & valid & (err_sq < thresh * thresh)
    return inliers, err_sq, valid


@dataclass
class EstimateResult:
    homography: Optional[Homography]
    inliers: int
    attempts: int
    degenerate: int
    mean_error: float  # mean squared reprojection error of the inliers
    inlier_mask: np.ndarray = field(repr=False)

    @property
    def ok(self) -> bool:
        return self.homography is not None


@dataclass(frozen=True)
class _Outcome:
    index: int
    homography: Optional[Homography]
    inliers: int
    mean_error: float

    def key(self) -> Tuple[int, float, int]:
        return (-self.inliers, self.mean_error, self.index)


_NO_MODEL = _Outcome(index=sys.maxsize, homography=None, inliers=0, mean_error=math.inf)


def _pick_best(a: _Outcome, b: _Outcome) -> _Outcome:
    return a if a.key() <= b.key() else b


@dataclass
class _Tally:
    attempts: int = 0
    degenerate: int = 0


def _required_attempts(inlier_ratio: float, confidence: float, cap: int) -> int:
    """Standard adaptive RANSAC bound for a 4-point sample."""
    if inlier_ratio <= 0.0:
        return cap
    p_good = inlier_ratio ** MIN_SAMPLE
    if p_good >= 1.0:
        return 1
    denom = math.log1p(-p_good)
    if denom == 0.0:
        # p_good underflowed to 0
        return cap
    n = math.log1p(-confidence) / denom
    return min(cap, max(1, int(math.ceil(n))))


def _attempts(
    pool: np.ndarray,
    src: np.ndarray,
    dst: np.ndarray,
    gated: np.ndarray,
    cfg: EstimatorConfig,
    rng: np.random.Generator,
    tally: _Tally,
) -> Iterator[_Outcome]:
    t0 = time.perf_counter()
    needed = cfg.max_attempts
    most_inliers = 0
    k = 0
    while k < needed:
        if cfg.time_budget_s is not None and time.perf_counter() - t0 > cfg.time_budget_s:
            log.debug("Attempt budget cut by wall clock", extra={"extra": {"attempts": k}})
            break
        k += 1
        tally.attempts += 1
        idx = rng.choice(pool, size=MIN_SAMPLE, replace=False)
        s, d = src[idx], dst[idx]
        if is_degenerate_sample(s, d):
            tally.degenerate += 1
            continue
        try:
            H = solve_homography(s, d)
        except DegenerateSampleError:
            tally.degenerate += 1
            continue
        inl, err_sq, _ = score_homography(H, src, dst, gated, cfg.thresh)
        n = int(inl.sum())
        mean = float(err_sq[inl].mean()) if n else math.inf
        yield _Outcome(index=k - 1, homography=H, inliers=n, mean_error=mean)

        if cfg.early_exit_confidence is not None and n > most_inliers:
            most_inliers = n
            needed = _required_attempts(n / float(pool.size), cfg.early_exit_confidence, cfg.max_attempts)


def estimate_homography(
    set_a: KeypointSet,
    set_b: KeypointSet,
    corr: Correspondences,
    config: Optional[EstimatorConfig] = None,
) -> EstimateResult:
    """
    Find the homography A -> B supported by the most correspondences.

    Only correspondences passing the score/ambiguity gate take part in
    sampling and scoring. Fewer than 4 of them, or no non-degenerate sample
    within the attempt budget, gives a result with homography=None and zero
    inliers; this is a normal outcome, not an error.
    """
    cfg = config or EstimatorConfig()
    src, dst = matched_points(set_a, set_b, corr)
    gated = Gate(cfg.min_score, cfg.max_ambiguity, cfg.strict_gating).mask(corr)
    pool = np.flatnonzero(gated)
    tally = _Tally()

    if pool.size < MIN_SAMPLE:
        best = _NO_MODEL
    else:
        rng = np.random.default_rng(cfg.seed)
        best = reduce(_pick_best, _attempts(pool, src, dst, gated, cfg, rng, tally), _NO_MODEL)

    if best.homography is None:
        log.warning(
            "No homography found",
            extra={"extra": {"candidates": int(pool.size), "attempts": tally.attempts, "degenerate": tally.degenerate}},
        )
        return EstimateResult(
            homography=None,
            inliers=0,
            attempts=tally.attempts,
            degenerate=tally.degenerate,
            mean_error=math.inf,
            inlier_mask=np.zeros(len(corr), dtype=bool),
        )

    mask, _, _ = score_homography(best.homography, src, dst, gated, cfg.thresh)
    log.info(
        "Homography estimated",
        extra={
            "extra": {
                "candidates": int(pool.size),
                "inliers": best.inliers,
                "attempts": tally.attempts,
                "degenerate": tally.degenerate,
                "mean_err_sq": best.mean_error,
            }
        },
    )
    return EstimateResult(
        homography=best.homography,
        inliers=best.inliers,
        attempts=tally.attempts,
        degenerate=tally.degenerate,
        mean_error=best.mean_error,
        inlier_mask=mask,
    )
