"""
Unit tests for the siftmatch command line
"""

import json

import cv2
import numpy as np
import pytest
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from siftmatch import pipeline


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch):
    # main() rebinds the root handler to stderr otherwise
    monkeypatch.setattr(pipeline, "setup_logging", lambda *a, **kw: None)


@pytest.fixture
def image_pair(tmp_path):
    rng = np.random.default_rng(0)
    img = rng.uniform(0, 255, (240, 320)).astype(np.float32)
    img = cv2.GaussianBlur(img, (0, 0), 3.0)
    img = ((img - img.min()) / (img.max() - img.min()) * 255.0).astype(np.uint8)
    shifted = np.roll(img, shift=(3, 5), axis=(0, 1))
    left, right = tmp_path / "left.png", tmp_path / "right.png"
    cv2.imwrite(str(left), img)
    cv2.imwrite(str(right), shifted)
    return str(left), str(right)


class TestMain:
    """Test cases for pipeline.main"""

    def test_no_arguments_prints_usage(self, capsys):
        """Fewer than two images prints usage and fails"""
        assert pipeline.main([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_too_many_images(self):
        """A fourth positional is a usage error"""
        with pytest.raises(SystemExit):
            pipeline.main(["a.png", "b.png", "c.png", "d.png"])

    @pytest.mark.parametrize(
        "flag,value",
        [("--curvaturethreshold", "3"), ("--octaves", "0"), ("--matchratio", "-1")],
    )
    def test_invalid_option_value_is_usage_error(self, flag, value, capsys):
        """Out-of-range option values print usage and exit non-zero"""
        with pytest.raises(SystemExit) as exc:
            pipeline.main(["l.png", "r.png", flag, value])

        assert exc.value.code != 0
        assert "usage:" in capsys.readouterr().err

    def test_missing_config_file_is_usage_error(self, tmp_path):
        """A --config path that cannot be read exits non-zero"""
        with pytest.raises(SystemExit) as exc:
            pipeline.main(["l.png", "r.png", "--config", str(tmp_path / "none.yaml")])

        assert exc.value.code != 0

    def test_missing_input(self, tmp_path):
        """Unreadable inputs fail with status 2"""
        assert pipeline.main([str(tmp_path / "l.png"), str(tmp_path / "r.png")]) == 2

    def test_full_run(self, image_pair, tmp_path, capsys):
        """A shifted image pair runs end to end and writes every artifact"""
        left, right = image_pair
        out = tmp_path / "out.png"
        metrics = tmp_path / "metrics.jsonl"
        csv = tmp_path / "pairs.csv"

        rc = pipeline.main(
            [left, right, str(out), "--seed", "1", "--metrics", str(metrics), "--csv", str(csv), "--candidates"]
        )

        assert rc == 0
        stdout = capsys.readouterr().out
        assert "Image size = (320,240)" in stdout
        assert "Number of original features:" in stdout
        assert "Number of matching features:" in stdout
        assert out.exists()
        assert csv.exists()
        row = json.loads(metrics.read_text().strip().splitlines()[-1])
        assert row["left"] == left
        assert row["status"] in ("ok", "no_model")
        assert row["num_a"] > 0

    def test_flags_override_yaml(self, tmp_path):
        """Command-line values win over the parameter file"""
        p = tmp_path / "params.yaml"
        p.write_text("matching:\n  match_ratio: 0.5\nextractor:\n  octaves: 3\n")
        args = pipeline.build_parser().parse_args(
            ["l", "r", "--config", str(p), "--matchratio", "0.9", "--constrastthreshold", "7"]
        )

        cfg, _ = pipeline._resolve_config(args)

        assert cfg.matcher.match_ratio == 0.9
        assert cfg.refiner.min_score == pytest.approx(0.9)
        assert cfg.extractor.octaves == 3
        assert cfg.extractor.contrast_threshold == 7.0
