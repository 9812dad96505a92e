from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.config import PipelineConfig, load_yaml
from common.logging_setup import get_logger, setup_logging
from siftmatch import __version__
from siftmatch.correlate import correlate_keypoints
from siftmatch.draw import draw_report, save_image
from siftmatch.features import SiftExtractor
from siftmatch.preprocess import load_gray_float, presmooth
from siftmatch.report import candidate_table


log = get_logger("siftmatch")

USAGE = "%(prog)s [OPTION]... left.pgm right.pgm [out.pgm]"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="siftmatch",
        usage=USAGE,
        description="SIFT matching with RANSAC homography estimation and refinement",
    )
    ap.add_argument("images", nargs="*", metavar="IMAGE", help="left image, right image, optional output image")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default=None, help="YAML parameter file (see config/params.yaml)")
    ap.add_argument("--octaves", type=int, default=None, help="Number of octaves. Default 5.")
    ap.add_argument("--initialblur", type=float, default=None, help="Initial blur. Default 0.0.")
    ap.add_argument(
        "--contrastthreshold", "--constrastthreshold",
        dest="contrastthreshold", type=float, default=None,
        help="threshold for contrast, to minimize false positives. Default 5.0.",
    )
    ap.add_argument(
        "--curvaturethreshold", type=float, default=None,
        help="threshold for curvature, to minimize false positives. Default 16.0.",
    )
    ap.add_argument(
        "--descriptorthreshold", type=float, default=None,
        help="threshold for descriptor element magnitude, to minimize effect of illumination changes. Default 0.2.",
    )
    ap.add_argument("--matchratio", type=float, default=None, help="match ratio for finding matches. Default 0.8.")
    ap.add_argument("--seed", type=int, default=None, help="RANSAC random seed (reproducible runs)")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (default INFO or $LOG_LEVEL)")
    ap.add_argument("--metrics", default=None, help="Append a JSON summary row to this JSONL file")
    ap.add_argument("--csv", default=None, help="Write accepted pairs as CSV")
    ap.add_argument("--candidates", action="store_true", help="Log the per-keypoint candidate table at DEBUG")
    return ap


def _resolve_config(args: argparse.Namespace) -> tuple[PipelineConfig, Dict[str, Any]]:
    """YAML values first, command-line flags on top."""
    P: Dict[str, Any] = load_yaml(args.config) if args.config else {}
    ext = dict(P.get("extractor") or {})
    for flag, key in (
        ("octaves", "octaves"),
        ("initialblur", "initial_blur"),
        ("contrastthreshold", "contrast_threshold"),
        ("curvaturethreshold", "curvature_threshold"),
        ("descriptorthreshold", "descriptor_threshold"),
    ):
        v = getattr(args, flag)
        if v is not None:
            ext[key] = v
    matching = dict(P.get("matching") or {})
    if args.matchratio is not None:
        matching["match_ratio"] = args.matchratio
    estimator = dict(P.get("estimator") or {})
    if args.seed is not None:
        estimator["seed"] = args.seed

    cfg = PipelineConfig.from_dict(
        {
            "extractor": ext,
            "matching": matching,
            "estimator": estimator,
            "refiner": P.get("refiner"),
            "report": P.get("report"),
        }
    )
    return cfg, dict(P.get("logging") or {})


def _write_metrics_row(path: Path, row: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", buffering=1) as f:
        f.write(json.dumps(row) + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if len(args.images) < 2:
        ap.print_help()
        return 1
    if len(args.images) > 3:
        ap.error("expected at most three images (left, right, output)")

    try:
        cfg, log_cfg = _resolve_config(args)
    except (ValueError, OSError) as e:
        ap.error(str(e))
    setup_logging(args.log_level or log_cfg.get("level"), stream=sys.stderr, force=True)
    left_fn, right_fn = args.images[0], args.images[1]
    out_fn = args.images[2] if len(args.images) > 2 else None

    try:
        limg = load_gray_float(left_fn)
        rimg = load_gray_float(right_fn)
    except OSError as e:
        log.error("Cannot read input image", extra={"extra": {"error": str(e)}})
        return 2
    print(f"Image size = ({limg.shape[1]},{limg.shape[0]})")
    print(f"Image size = ({rimg.shape[1]},{rimg.shape[0]})")

    limg = presmooth(limg)
    rimg = presmooth(rimg)

    t0 = time.perf_counter()
    extractor = SiftExtractor(cfg.extractor)
    set_a = extractor.extract(limg)
    set_b = extractor.extract(rimg)
    result = correlate_keypoints(set_a, set_b, cfg)
    dt_ms = int(1000.0 * (time.perf_counter() - t0))
    report = result.report

    if args.candidates and result.homography is not None:
        rows, found = candidate_table(
            set_a, set_b, result.correspondences, result.homography, radius=cfg.report.candidate_radius
        )
        for row in rows:
            log.debug(
                "Candidates",
                extra={
                    "extra": {
                        "index": row.index_a,
                        "scale": row.scale,
                        "orientation": int(row.orientation),
                        "candidates": [
                            [c.flag, c.index_b, round(c.similarity, 4), round(c.distance, 2)] for c in row.candidates
                        ],
                    }
                },
            )
        log.info("Keypoints with a nearby candidate", extra={"extra": {"found": found}})

    print(f"Number of original features: {report.num_a} {report.num_b}")
    print(
        f"Number of matching features: {report.refined_inliers} {report.estimator_inliers} "
        f"{report.percent:.3g}%"
    )

    if out_fn:
        try:
            save_image(out_fn, draw_report(limg, set_a, report))
        except OSError as e:
            log.error("Cannot write output image", extra={"extra": {"error": str(e)}})
            return 2
    if args.csv:
        report.to_frame().to_csv(args.csv, index=False)

    metrics_file = args.metrics or log_cfg.get("metrics_file")
    if metrics_file:
        row = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()) + "Z",
            "left": left_fn,
            "right": right_fn,
            "status": "ok" if result.ok else "no_model",
            "latency_ms": dt_ms,
            **report.summary(),
        }
        _write_metrics_row(Path(metrics_file), row)
    return 0


if __name__ == "__main__":
    sys.exit(main())
