from __future__ import annotations
"""
Correspondence reporting.

- build_report(): accepted pairs (match_error under a visibility threshold),
  displacement vectors, per-collection counts and an overall confidence
- candidate_table(): per keypoint, every candidate in B that the homography
  maps close to it, flagged against the chosen match (debug aid)

Both are read-only over their inputs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from common.scoring import confidence_score, RunningStats
from common.types import KeypointSet, Correspondences
from siftmatch.homography import Homography, project_points


@dataclass(frozen=True)
class MatchedPair:
    index_a: int
    index_b: int
    pos_a: Tuple[float, float]
    pos_b: Tuple[float, float]
    displacement: Tuple[float, float]
    score: float
    ambiguity: float
    error: float  # reprojection distance (px)


@dataclass
class MatchReport:
    pairs: List[MatchedPair]
    num_a: int
    num_b: int
    num_matched: int
    estimator_inliers: int
    refined_inliers: int
    rmse_px: float
    error_std_px: float
    confidence: float
    homography: Optional[Homography] = None
    accepted_mask: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=bool), repr=False)

    @property
    def num_accepted(self) -> int:
        return len(self.pairs)

    @property
    def percent(self) -> float:
        """
        Accepted pairs relative to the smaller collection, in percent.
        Counts pairs under the visibility threshold, not estimator inliers.
        """
        denom = min(self.num_a, self.num_b)
        return 100.0 * self.num_accepted / denom if denom > 0 else 0.0

    def summary(self) -> Dict[str, Any]:
        return {
            "num_a": self.num_a,
            "num_b": self.num_b,
            "num_matched": self.num_matched,
            "num_accepted": self.num_accepted,
            "percent": round(self.percent, 3),
            "estimator_inliers": self.estimator_inliers,
            "refined_inliers": self.refined_inliers,
            "rmse_px": None if not np.isfinite(self.rmse_px) else self.rmse_px,
            "error_std_px": self.error_std_px,
            "confidence": self.confidence,
            "homography": None if self.homography is None else list(self.homography.flat()),
        }

    def to_frame(self) -> pd.DataFrame:
        cols = ["index_a", "index_b", "x_a", "y_a", "x_b", "y_b", "dx", "dy", "score", "ambiguity", "error"]
        rows = [
            (p.index_a, p.index_b, *p.pos_a, *p.pos_b, *p.displacement, p.score, p.ambiguity, p.error)
            for p in self.pairs
        ]
        return pd.DataFrame(rows, columns=cols)


def build_report(
    set_a: KeypointSet,
    set_b: KeypointSet,
    corr: Correspondences,
    homography: Optional[Homography],
    *,
    visible_error: float = 10.0,
    estimator_inliers: int = 0,
    refined_inliers: int = 0,
) -> MatchReport:
    """
    Collect every correspondence whose match_error is below `visible_error`
    (pixels). Rows with unset match or unset error are never accepted.
    """
    if len(corr) != len(set_a):
        raise ValueError("correspondences do not belong to collection A")

    err = corr.match_error
    with np.errstate(invalid="ignore"):
        accepted = corr.matched & np.isfinite(err) & (err < visible_error)

    pairs: List[MatchedPair] = []
    stats = RunningStats()
    sq_sum = 0.0
    for i in np.flatnonzero(accepted):
        k = int(corr.match[i])
        xa, ya = (float(v) for v in set_a.positions[i])
        xb, yb = (float(v) for v in set_b.positions[k])
        e = float(err[i])
        pairs.append(
            MatchedPair(
                index_a=int(i),
                index_b=k,
                pos_a=(xa, ya),
                pos_b=(xb, yb),
                displacement=(xb - xa, yb - ya),
                score=float(corr.score[i]),
                ambiguity=float(corr.ambiguity[i]),
                error=e,
            )
        )
        stats.add(e)
        sq_sum += e * e

    rmse = float(np.sqrt(sq_sum / len(pairs))) if pairs else float("inf")
    conf = confidence_score(inliers=refined_inliers, total_matches=corr.num_matched, rmse_px=rmse)
    return MatchReport(
        pairs=pairs,
        num_a=len(set_a),
        num_b=len(set_b),
        num_matched=corr.num_matched,
        estimator_inliers=int(estimator_inliers),
        refined_inliers=int(refined_inliers),
        rmse_px=rmse,
        error_std_px=stats.std,
        confidence=conf,
        homography=homography,
        accepted_mask=accepted,
    )


# -----------------------------
# Candidate diagnostics
# -----------------------------

FLAG_CHOSEN_NEAR = "*"
FLAG_CHOSEN_FAR = "-"
FLAG_NEAR = "+"


@dataclass(frozen=True)
class Candidate:
    index_b: int
    similarity: float
    distance: float
    flag: str


@dataclass
class CandidateRow:
    index_a: int
    scale: float
    orientation: float
    candidates: List[Candidate]

    @property
    def found(self) -> bool:
        return any(c.flag in (FLAG_CHOSEN_NEAR, FLAG_NEAR) for c in self.candidates)


def candidate_table(
    set_a: KeypointSet,
    set_b: KeypointSet,
    corr: Correspondences,
    homography: Homography,
    radius: float = 10.0,
) -> Tuple[List[CandidateRow], int]:
    """
    For every keypoint of A, list the keypoints of B that H maps it within
    `radius` px of, plus its chosen match wherever that lies:
      '*' chosen and near, '-' chosen but far, '+' near but not chosen.
    Returns (rows, number of A keypoints with at least one near candidate).
    """
    rows: List[CandidateRow] = []
    if len(set_a) == 0:
        return rows, 0
    proj, valid = project_points(homography, set_a.positions)
    des_b = set_b.descriptors.astype(np.float64)
    r2 = radius * radius
    for i in range(len(set_a)):
        chosen = int(corr.match[i])
        if len(set_b):
            d = set_b.positions - proj[i]
            dist2 = np.einsum("ij,ij->i", d, d)
            near = (dist2 < r2) if valid[i] else np.zeros(len(set_b), dtype=bool)
            sims = des_b @ set_a.descriptors[i].astype(np.float64)
        else:
            dist2 = near = sims = np.zeros(0)
        cands: List[Candidate] = []
        for j in range(len(set_b)):
            is_chosen = j == chosen
            if not (near[j] or is_chosen):
                continue
            if is_chosen:
                flag = FLAG_CHOSEN_NEAR if near[j] else FLAG_CHOSEN_FAR
            else:
                flag = FLAG_NEAR
            dist = float(np.sqrt(dist2[j])) if valid[i] else float("nan")
            cands.append(Candidate(index_b=j, similarity=float(sims[j]), distance=dist, flag=flag))
        rows.append(
            CandidateRow(
                index_a=i,
                scale=float(set_a.scales[i]),
                orientation=float(set_a.orientations[i]),
                candidates=cands,
            )
        )
    return rows, sum(1 for r in rows if r.found)
