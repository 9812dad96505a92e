from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from common.config import PipelineConfig
from common.logging_setup import get_logger
from common.types import KeypointSet, Correspondences
from siftmatch.homography import Homography
from siftmatch.matcher import match_descriptors
from siftmatch.ransac import EstimateResult, estimate_homography
from siftmatch.refine import RefineResult, refine_homography
from siftmatch.report import MatchReport, build_report


log = get_logger("siftmatch.correlate")


@dataclass
class CorrelationResult:
    homography: Optional[Homography]
    correspondences: Correspondences
    estimate: EstimateResult
    refined: Optional[RefineResult]
    report: MatchReport
    timings_ms: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.homography is not None

    @property
    def inliers(self) -> int:
        return self.refined.inliers if self.refined is not None else 0


def correlate_keypoints(
    set_a: KeypointSet,
    set_b: KeypointSet,
    config: Optional[PipelineConfig] = None,
) -> CorrelationResult:
    """
    Run the full chain on two keypoint collections:

        match -> robust estimate -> iterative refinement -> report

    Nothing here raises on algorithmic edge cases: empty collections, too few
    matches or no model simply flow through as an empty report with
    homography=None.
    """
    cfg = config or PipelineConfig()
    timings: Dict[str, int] = {}

    # 1) Descriptor matching
    t0 = time.perf_counter()
    corr = match_descriptors(set_a, set_b, chunk_size=cfg.matcher.chunk_size)
    timings["match"] = int(1000.0 * (time.perf_counter() - t0))

    # 2) RANSAC over minimal samples
    t0 = time.perf_counter()
    est = estimate_homography(set_a, set_b, corr, cfg.estimator)
    timings["estimate"] = int(1000.0 * (time.perf_counter() - t0))

    # 3) Least-squares refinement over inliers
    refined: Optional[RefineResult] = None
    H: Optional[Homography] = None
    if est.ok:
        t0 = time.perf_counter()
        refined = refine_homography(set_a, set_b, corr, est.homography, cfg.refiner)
        timings["refine"] = int(1000.0 * (time.perf_counter() - t0))
        H = refined.homography
        corr = refined.correspondences

    # 4) Report
    report = build_report(
        set_a,
        set_b,
        corr,
        H,
        visible_error=cfg.report.visible_error,
        estimator_inliers=est.inliers,
        refined_inliers=refined.inliers if refined is not None else 0,
    )

    log.info(
        "Correlation finished",
        extra={
            "extra": {
                "ok": H is not None,
                "num_a": report.num_a,
                "num_b": report.num_b,
                "estimator_inliers": est.inliers,
                "refined_inliers": report.refined_inliers,
                "accepted": report.num_accepted,
                "timings_ms": timings,
            }
        },
    )
    return CorrelationResult(
        homography=H,
        correspondences=corr,
        estimate=est,
        refined=refined,
        report=report,
        timings_ms=timings,
    )
