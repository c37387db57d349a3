import logging
from pathlib import Path

from aistudy_ui.core.config import StudySettings
from aistudy_ui.core.logging_utils import get_logger, set_log_context, setup_logging
from aistudy_ui.ui import format_iou


def test_defaults(monkeypatch):
    monkeypatch.delenv("AISTUDY_DEBUG_MODE", raising=False)
    s = StudySettings(_env_file=None)
    assert s.total_trials == 50
    assert s.box_units == "normalized"
    assert s.image_dir == Path("dataset") / "no_map"
    assert s.heatmap_dir == Path("dataset") / "map"
    assert s.predictions_path == Path("dataset") / "predictions.csv"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("AISTUDY_DEBUG_MODE", "true")
    monkeypatch.setenv("AISTUDY_DATASET_DIR", "/srv/study")
    s = StudySettings(_env_file=None)
    assert s.debug_mode
    assert s.total_trials == 5
    assert s.image_dir == Path("/srv/study/no_map")


def test_setup_logging_writes_files(tmp_path):
    s = StudySettings(_env_file=None, log_dir=str(tmp_path / "logs"), log_level="DEBUG")
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        setup_logging(s)
        set_log_context()
        log = get_logger("aistudy_ui.test")
        log.info("hello")
        set_log_context("1-AB3CD", "trial_7")
        log.error("broken")
        for h in root.handlers:
            h.flush()
        full = (tmp_path / "logs" / "aistudy.log").read_text()
        assert "[-/-] aistudy_ui.test: hello" in full
        errors = (tmp_path / "logs" / "aistudy_errors.log").read_text()
        assert "[1-AB3CD/trial_7] aistudy_ui.test: broken" in errors
        assert "hello" not in errors
    finally:
        set_log_context()
        for h in root.handlers:
            h.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])


def test_format_iou():
    assert format_iou(0.4567) == "46%"
    assert format_iou(1.0) == "100%"
    assert format_iou(0.0) == "0%"
    assert format_iou(None) == "n/a"
