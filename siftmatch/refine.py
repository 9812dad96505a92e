from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from common.config import RefinerConfig
from common.logging_setup import get_logger
from common.types import KeypointSet, Correspondences
from siftmatch.homography import Homography, DegenerateSampleError, solve_homography
from siftmatch.matcher import Gate
from siftmatch.ransac import MIN_SAMPLE, matched_points, score_homography


log = get_logger("siftmatch.refine")


@dataclass
class RefineResult:
    homography: Homography
    inliers: int
    rounds_run: int
    correspondences: Correspondences  # match_error filled in (pixels)
    inlier_mask: np.ndarray = field(repr=False)


def refine_homography(
    set_a: KeypointSet,
    set_b: KeypointSet,
    corr: Correspondences,
    homography: Homography,
    config: Optional[RefinerConfig] = None,
) -> RefineResult:
    """
    Iteratively re-fit H by least squares over its current inliers.

    Each round classifies all correspondences against H (same gating as the
    estimator) and re-solves over every inlier. Stops early, keeping the
    current H, when fewer than 4 inliers remain or the fit degenerates, and
    when the inlier set no longer changes (fixed point).

    The returned correspondences carry match_error = Euclidean reprojection
    distance in pixels for every matched row with a usable projection.
    """
    cfg = config or RefinerConfig()
    src, dst = matched_points(set_a, set_b, corr)
    gated = Gate(cfg.min_score, cfg.max_ambiguity, cfg.strict_gating).mask(corr)

    H = homography
    solved_on: Optional[np.ndarray] = None
    rounds_run = 0
    for rnd in range(cfg.rounds):
        mask, _, _ = score_homography(H, src, dst, gated, cfg.thresh)
        n = int(mask.sum())
        if n < MIN_SAMPLE:
            log.debug("Too few inliers to refine", extra={"extra": {"round": rnd, "inliers": n}})
            break
        if solved_on is not None and np.array_equal(mask, solved_on):
            break
        try:
            H = solve_homography(src[mask], dst[mask])
        except DegenerateSampleError as e:
            log.debug("Refinement solve degenerate", extra={"extra": {"round": rnd, "reason": str(e)}})
            break
        solved_on = mask
        rounds_run += 1

    final, err_sq, valid = score_homography(H, src, dst, gated, cfg.thresh)
    match_error = np.full(len(corr), np.nan)
    usable = corr.matched & valid
    match_error[usable] = np.sqrt(err_sq[usable])

    num = int(final.sum())
    log.info("Homography refined", extra={"extra": {"inliers": num, "rounds": rounds_run}})
    return RefineResult(
        homography=H,
        inliers=num,
        rounds_run=rounds_run,
        correspondences=corr.with_errors(match_error),
        inlier_mask=final,
    )
