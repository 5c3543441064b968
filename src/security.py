"""Security validation gates for the chromakey detection sidecar."""

import json
import os
import re
from pathlib import Path

# Upload validation
MAX_UPLOAD_SIZE = 500 * 1024 * 1024  # 500 MB
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".webp", ".tif", ".tiff"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm"}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS

# Frame size cap for raw pixel payloads (64 MP)
MAX_PIXELS = 64_000_000


def validate_upload(path: str, allowed: set[str] | None = None) -> list[str]:
    """Validate a media file path. Returns list of errors (empty = valid).

    Checks:
    - Resolves under user home
    - File exists
    - Not a symlink
    - Extension in whitelist (ALLOWED_EXTENSIONS unless narrowed)
    - File size <= 500 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    allowed = allowed if allowed is not None else ALLOWED_EXTENSIONS
    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in allowed:
        errors.append(f"Extension '{ext}' not allowed. Allowed: {sorted(allowed)}")

    size = p.stat().st_size
    if size > MAX_UPLOAD_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    name = p.name
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        errors.append(f"Unsafe filename: {name}")

    return errors


def validate_frame_size(width, height) -> list[str]:
    """Validate raw frame dimensions. Returns list of errors.

    Buffer length is deliberately not checked: detection skips pixels
    the buffer cannot reach.
    """
    errors: list[str] = []
    for name, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{name} must be an integer")
        elif value < 0:
            errors.append(f"{name} must be non-negative")
    if errors:
        return errors
    if width * height > MAX_PIXELS:
        errors.append(
            f"Frame {width}x{height} exceeds maximum {MAX_PIXELS} pixels"
        )
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
