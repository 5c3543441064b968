"""Tests for diagnostics — crash handler, structured logging, faulthandler."""

import json
import logging
import os
import shutil
import sys
import uuid
from pathlib import Path
from unittest.mock import patch

import pytest

import diagnostics
from diagnostics import (
    APP_DIR,
    LOG_FILENAME,
    MAX_CRASH_REPORTS,
    JSONFormatter,
    _cleanup_old_crash_reports,
    _validate_log_dir,
    _write_crash_report,
    setup_excepthook,
    setup_structured_logging,
)

pytestmark = pytest.mark.smoke


@pytest.fixture
def crash_dir(tmp_path):
    d = tmp_path / "crash_reports"
    d.mkdir()
    return d


@pytest.fixture
def restore_excepthook(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)


@pytest.fixture
def app_log_dir():
    """Log directory inside the app prefix, removed afterwards."""
    d = os.path.join(APP_DIR, f"test-logs-{uuid.uuid4().hex[:8]}")
    yield d
    shutil.rmtree(d, ignore_errors=True)


def _exc_info(exc):
    try:
        raise exc
    except type(exc):
        return sys.exc_info()


def test_json_formatter_fields():
    record = logging.LogRecord(
        "detection.detector", logging.INFO, __file__, 1, "hue=%d", (120,), None
    )
    entry = json.loads(JSONFormatter().format(record))
    assert entry["level"] == "INFO"
    assert entry["logger"] == "detection.detector"
    assert entry["message"] == "hue=120"
    assert "timestamp" in entry
    assert "exception" not in entry


def test_json_formatter_exception():
    record = logging.LogRecord(
        "zmq_server", logging.ERROR, __file__, 1, "boom", (), _exc_info(ValueError("x"))
    )
    entry = json.loads(JSONFormatter().format(record))
    assert entry["exception"]["type"] == "ValueError"
    assert "ValueError" in entry["exception"]["traceback"]


def test_structured_logging_writes_json(app_log_dir):
    root = logging.getLogger()
    before = list(root.handlers)
    used = setup_structured_logging(app_log_dir)
    try:
        assert used == os.path.realpath(app_log_dir)
        logging.getLogger("detection.detector").warning("hello %s", "log")
        for handler in root.handlers:
            handler.flush()
        lines = Path(used, LOG_FILENAME).read_text().strip().splitlines()
        assert json.loads(lines[-1])["message"] == "hello log"
    finally:
        for handler in root.handlers:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()


def test_crash_report_written(crash_dir):
    path = _write_crash_report(str(crash_dir), *_exc_info(ValueError("test crash")))
    data = json.loads(Path(path).read_text())
    assert data["exception_type"] == "ValueError"
    assert data["exception_message"] == "test crash"
    assert any("ValueError" in line for line in data["traceback"])


def test_crash_report_permissions(crash_dir):
    path = _write_crash_report(str(crash_dir), *_exc_info(RuntimeError("x")))
    mode = os.stat(path).st_mode & 0o777
    assert mode == 0o600, f"Expected 0o600, got {oct(mode)}"


def test_crash_report_no_raw_home_paths(crash_dir):
    home = os.path.expanduser("~")
    exc = FileNotFoundError(f"File not found: {home}/secret/screen.png")
    path = _write_crash_report(str(crash_dir), *_exc_info(exc))
    text = Path(path).read_text()
    assert f"{home}/secret" not in text


def test_excepthook_writes_crash_json(crash_dir, restore_excepthook):
    setup_excepthook(str(crash_dir))
    with patch("sys.__excepthook__") as mock_orig:
        sys.excepthook(*_exc_info(ValueError("unhandled")))
        mock_orig.assert_called_once()
    assert len(list(crash_dir.glob("crash_*.json"))) == 1


def test_excepthook_survives_own_failure(crash_dir, restore_excepthook):
    setup_excepthook(str(crash_dir))
    with patch("diagnostics.os.makedirs", side_effect=PermissionError("denied")):
        with patch("sys.__excepthook__") as mock_orig:
            sys.excepthook(*_exc_info(TypeError("original error")))
            mock_orig.assert_called_once()


def test_old_crash_reports_cleaned_up(crash_dir):
    for i in range(10):
        f = crash_dir / f"crash_2024010{i}T000000Z.json"
        f.write_text("{}")
        os.utime(f, (1704067200 + i * 3600, 1704067200 + i * 3600))

    _cleanup_old_crash_reports(str(crash_dir))

    remaining = sorted(p.name for p in crash_dir.glob("crash_*.json"))
    assert len(remaining) == MAX_CRASH_REPORTS
    assert remaining[0] == "crash_20240105T000000Z.json"


def test_log_dir_outside_app_dir_rejected():
    result = _validate_log_dir("/tmp/evil/logs")
    assert result == os.path.join(diagnostics.APP_DIR, "logs")


def test_log_dir_inside_app_dir_accepted():
    test_dir = os.path.join(APP_DIR, "custom-logs")
    assert _validate_log_dir(test_dir) == os.path.realpath(test_dir)


def test_empty_log_dir_uses_default():
    assert _validate_log_dir("") == os.path.join(APP_DIR, "logs")
