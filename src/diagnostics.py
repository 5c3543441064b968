"""Diagnostics — structured logging, faulthandler, crash dumps.

Layers:
1. Structured JSON logging with RotatingFileHandler
2. faulthandler: C-level crash tracebacks (numpy / PyAV / libzmq)
3. sys.excepthook: unhandled Python exceptions -> PII-stripped JSON dumps
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import traceback
from pathlib import Path

logger = logging.getLogger(__name__)

APP_DIR = os.path.expanduser("~/.chromadetect")
LOG_FILENAME = "chromadetect.log"
FAULT_FILENAME = "chromadetect_fault.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7
LOG_MAX_BYTES = 10_000_000
LOG_BACKUP_COUNT = 7


def _validate_log_dir(env_dir: str) -> str:
    """Validate APP_LOG_DIR is under the app directory. Returns safe path."""
    default = os.path.join(APP_DIR, "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(APP_DIR)
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside allowed prefix, using default")
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _cleanup_old_logs(log_dir: str):
    cutoff = datetime.datetime.now() - datetime.timedelta(days=MAX_LOG_AGE_DAYS)
    try:
        for f in Path(log_dir).glob(f"{LOG_FILENAME}*"):
            if f.stat().st_mtime < cutoff.timestamp():
                f.unlink(missing_ok=True)
    except OSError:
        logger.debug("Log cleanup skipped for %s", log_dir)


def _cleanup_old_crash_reports(crash_dir: str):
    """Keep only the newest MAX_CRASH_REPORTS crash files."""
    try:
        crash_files = sorted(
            Path(crash_dir).glob("crash_*.json"),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )
        for old_file in crash_files[MAX_CRASH_REPORTS:]:
            old_file.unlink(missing_ok=True)
    except OSError:
        logger.debug("Crash report cleanup skipped for %s", crash_dir)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON file handler to the root logger.

    Args:
        log_dir: Override log directory (validated against the app prefix).

    Returns:
        The directory actually used.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILENAME),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    handler.setFormatter(JSONFormatter())

    log_level = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.addHandler(handler)

    _cleanup_old_logs(resolved_dir)
    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Enable faulthandler into its own file.

    Kept apart from the rotating log: rotation would invalidate the
    file descriptor faulthandler writes to.
    """
    fault_path = os.path.join(log_dir, FAULT_FILENAME)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def _write_crash_report(crash_dir: str, exc_type, exc_value, exc_tb) -> str:
    from security import strip_pii

    os.makedirs(crash_dir, mode=0o700, exist_ok=True)
    timestamp = datetime.datetime.now(tz=datetime.timezone.utc).strftime(
        "%Y%m%dT%H%M%SZ"
    )
    crash_path = os.path.join(crash_dir, f"crash_{timestamp}.json")

    crash_data = {
        "timestamp": timestamp,
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    crash_data = strip_pii({"extra": crash_data}, {}).get("extra", crash_data)

    old_umask = os.umask(0o077)
    try:
        with open(crash_path, "w") as f:
            json.dump(crash_data, f, indent=2)
    finally:
        os.umask(old_umask)

    _cleanup_old_crash_reports(crash_dir)
    return crash_path


def setup_excepthook(crash_dir: str | None = None):
    """Install a sys.excepthook that writes structured crash dumps."""
    crash_dir = crash_dir or os.path.join(APP_DIR, "crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            _write_crash_report(crash_dir, exc_type, exc_value, exc_tb)
        except Exception as e:  # noqa: BLE001
            # Must never recurse into the hook; report and fall through
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    """Initialize all diagnostic layers. Call from main.py."""
    log_dir = setup_structured_logging()
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", log_dir)
