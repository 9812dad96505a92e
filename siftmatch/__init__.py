"""
siftmatch — descriptor matching & robust homography estimation

This package provides:
- Brute-force dot-product matching of L2-normalized descriptors with an
  ambiguity (second best / best) ratio per keypoint
- RANSAC homography estimation over minimal 4-point samples, with explicit
  score/ambiguity gating and handling of degenerate samples
- Iterative least-squares refinement of the homography over its inliers
- A correspondence report (accepted pairs, displacements, counts, confidence)
- A thin command line around OpenCV SIFT extraction and overlay drawing

Entry point:
    python -m siftmatch.pipeline [OPTION]... left.pgm right.pgm [out.pgm]
"""
__version__ = "0.3.0"

from .correlate import correlate_keypoints, CorrelationResult
from .homography import Homography, DegenerateSampleError, solve_homography
from .matcher import match_descriptors, Gate
from .ransac import estimate_homography, EstimateResult
from .refine import refine_homography, RefineResult
from .report import build_report, candidate_table, MatchReport

__all__ = [
    "__version__",
    "correlate_keypoints",
    "CorrelationResult",
    "Homography",
    "DegenerateSampleError",
    "solve_homography",
    "match_descriptors",
    "Gate",
    "estimate_homography",
    "EstimateResult",
    "refine_homography",
    "RefineResult",
    "build_report",
    "candidate_table",
    "MatchReport",
]
