from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from common.logging_setup import get_logger
from common.types import KeypointSet, Correspondences, UNSET


log = get_logger("siftmatch.matcher")


def match_descriptors(
    set_a: KeypointSet,
    set_b: KeypointSet,
    *,
    chunk_size: int = 1024,
) -> Correspondences:
    """
    Brute-force nearest neighbour by dot-product similarity.

    For every keypoint of A: index of the most similar descriptor in B, its
    similarity (score) and ambiguity = second best / best similarity.
    Ties go to the lowest index in B. With a single candidate in B (or a
    non-positive best similarity) the ambiguity is 1.0.

    A is processed in chunks of `chunk_size` rows so scratch memory stays
    O(chunk_size * len(B)). An empty A or B yields all-unset correspondences.
    """
    n_a, n_b = len(set_a), len(set_b)
    if n_a == 0 or n_b == 0:
        log.debug("Nothing to match", extra={"extra": {"n_a": n_a, "n_b": n_b}})
        return Correspondences.unset(n_a)
    if set_a.dim != set_b.dim:
        raise ValueError(f"descriptor dimension mismatch: {set_a.dim} vs {set_b.dim}")
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    match = np.full(n_a, UNSET, dtype=np.int64)
    score = np.full(n_a, np.nan)
    ambiguity = np.full(n_a, np.nan)
    des_b = set_b.descriptors.astype(np.float64)

    for start in range(0, n_a, chunk_size):
        stop = min(n_a, start + chunk_size)
        sim = set_a.descriptors[start:stop].astype(np.float64) @ des_b.T
        rows = np.arange(stop - start)
        best = np.argmax(sim, axis=1)  # first maximum wins
        s1 = sim[rows, best]
        if n_b > 1:
            sim[rows, best] = -np.inf
            s2 = sim.max(axis=1)
            ratio = np.ones_like(s1)
            np.divide(s2, s1, out=ratio, where=s1 > 0)
            amb = np.clip(ratio, 0.0, 1.0)
        else:
            amb = np.ones_like(s1)
        match[start:stop] = best
        score[start:stop] = s1
        ambiguity[start:stop] = amb

    log.debug(
        "Matched descriptors",
        extra={"extra": {"n_a": n_a, "n_b": n_b, "mean_score": float(np.mean(score))}},
    )
    return Correspondences(match=match, score=score, ambiguity=ambiguity, match_error=np.full(n_a, np.nan))


@dataclass(frozen=True)
class Gate:
    """
    Score/ambiguity acceptance rule shared by the estimator and the refiner.

    strict=False accepts score >= min_score and ambiguity <= max_ambiguity;
    strict=True requires score > min_score and ambiguity < max_ambiguity.
    Unmatched rows never pass.
    """
    min_score: float
    max_ambiguity: float
    strict: bool = False

    def mask(self, corr: Correspondences) -> np.ndarray:
        if self.strict:
            ok = (corr.score > self.min_score) & (corr.ambiguity < self.max_ambiguity)
        else:
            ok = (corr.score >= self.min_score) & (corr.ambiguity <= self.max_ambiguity)
        return corr.matched & ok


def ratio_test(corr: Correspondences, max_ambiguity: float, strict: bool = True) -> np.ndarray:
    """Lowe-style ratio test on the ambiguity column; returns a keep-mask."""
    return Gate(min_score=-np.inf, max_ambiguity=max_ambiguity, strict=strict).mask(corr)
