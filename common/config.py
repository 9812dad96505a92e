from __future__ import annotations
"""
Pipeline configuration.

All tunables live here as dataclass value objects that are passed explicitly
into each stage. Values can be loaded from YAML (config/params.yaml):

    extractor:  {octaves, initial_blur, contrast_threshold, curvature_threshold, descriptor_threshold}
    matching:   {match_ratio, chunk_size}
    estimator:  {max_attempts, min_score, max_ambiguity, thresh, strict_gating, seed, ...}
    refiner:    {rounds, min_score, max_ambiguity, thresh, strict_gating}
    report:     {visible_error, candidate_radius}
    logging:    {level, metrics_file}

Missing estimator/refiner score thresholds are derived from matching.match_ratio
the same way the command line derives them.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Optional

import yaml


def _check_positive(name: str, v: float) -> None:
    if not v > 0:
        raise ValueError(f"{name} must be > 0, got {v}")


@dataclass
class ExtractorConfig:
    octaves: int = 5
    initial_blur: float = 0.0
    contrast_threshold: float = 5.0
    curvature_threshold: float = 16.0
    descriptor_threshold: float = 0.2
    max_features: int = 0  # 0 = unlimited

    def __post_init__(self) -> None:
        if self.octaves < 1:
            raise ValueError("octaves must be >= 1")
        if self.initial_blur < 0:
            raise ValueError("initial_blur must be >= 0")
        _check_positive("contrast_threshold", self.contrast_threshold)
        # (r+1)^2/r has its minimum 4 at r=1
        if self.curvature_threshold <= 4.0:
            raise ValueError("curvature_threshold must be > 4")
        _check_positive("descriptor_threshold", self.descriptor_threshold)


@dataclass
class MatcherConfig:
    match_ratio: float = 0.8
    chunk_size: int = 1024

    def __post_init__(self) -> None:
        _check_positive("match_ratio", self.match_ratio)
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")


@dataclass
class EstimatorConfig:
    """
    Robust (RANSAC) estimator settings.

    thresh is a pixel distance; a correspondence is an inlier when its squared
    reprojection error is below thresh**2.
    """
    max_attempts: int = 10000
    min_score: float = 0.5
    max_ambiguity: float = 1.0
    thresh: float = 5.0
    strict_gating: bool = False
    seed: Optional[int] = None
    time_budget_s: Optional[float] = None
    early_exit_confidence: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        _check_positive("thresh", self.thresh)
        if self.time_budget_s is not None:
            _check_positive("time_budget_s", self.time_budget_s)
        if self.early_exit_confidence is not None and not (0.0 < self.early_exit_confidence < 1.0):
            raise ValueError("early_exit_confidence must be in (0, 1)")


@dataclass
class RefinerConfig:
    rounds: int = 3
    min_score: float = 0.8
    max_ambiguity: float = 0.95
    thresh: float = 3.0
    strict_gating: bool = False

    def __post_init__(self) -> None:
        if self.rounds < 0:
            raise ValueError("rounds must be >= 0")
        _check_positive("thresh", self.thresh)


@dataclass
class ReportConfig:
    visible_error: float = 10.0
    candidate_radius: float = 10.0

    def __post_init__(self) -> None:
        _check_positive("visible_error", self.visible_error)
        _check_positive("candidate_radius", self.candidate_radius)


@dataclass
class PipelineConfig:
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    refiner: RefinerConfig = field(default_factory=RefinerConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_match_ratio(cls, match_ratio: float = 0.8, **sections: Any) -> "PipelineConfig":
        """
        Defaults as the command line drives the stages:
          estimator: 10000 attempts, min_score=(0.5/0.8)*ratio, max_ambiguity=1.0, thresh=5 px
          refiner:   3 rounds, min_score=ratio, max_ambiguity=0.95, thresh=3 px
        Keyword sections (extractor=..., estimator=..., ...) are merged on top.
        """
        est = {"min_score": (0.50 / 0.80) * match_ratio}
        est.update(sections.pop("estimator", {}) or {})
        ref = {"min_score": match_ratio}
        ref.update(sections.pop("refiner", {}) or {})
        match = {"match_ratio": match_ratio}
        match.update(sections.pop("matching", {}) or {})
        return cls(
            extractor=_build(ExtractorConfig, sections.pop("extractor", {})),
            matcher=_build(MatcherConfig, match),
            estimator=_build(EstimatorConfig, est),
            refiner=_build(RefinerConfig, ref),
            report=_build(ReportConfig, sections.pop("report", {})),
        )

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "PipelineConfig":
        d = dict(d or {})
        ratio = float((d.get("matching") or {}).get("match_ratio", 0.8))
        return cls.from_match_ratio(
            ratio,
            extractor=d.get("extractor"),
            matching=d.get("matching"),
            estimator=d.get("estimator"),
            refiner=d.get("refiner"),
            report=d.get("report"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        return cls.from_dict(load_yaml(path))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build(kind, values: Optional[Dict[str, Any]]):
    """Instantiate a config dataclass, rejecting unknown keys."""
    values = dict(values or {})
    known = {f.name for f in fields(kind)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {kind.__name__} keys: {sorted(unknown)}")
    return kind(**values)


def load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}
