"""Tests for security validation gates — uploads, frame sizes, PII stripping."""

import os
from pathlib import Path

import pytest

from security import (
    ALLOWED_EXTENSIONS,
    IMAGE_EXTENSIONS,
    MAX_PIXELS,
    MAX_UPLOAD_SIZE,
    VIDEO_EXTENSIONS,
    strip_pii,
    validate_frame_size,
    validate_upload,
)


class TestUpload:
    """Media file upload validation."""

    def test_valid_png_accepted(self, home_tmp_path):
        f = home_tmp_path / "test.png"
        f.write_bytes(b"\x00" * 1024)
        assert validate_upload(str(f)) == []

    def test_valid_mp4_accepted(self, home_tmp_path):
        f = home_tmp_path / "test.mp4"
        f.write_bytes(b"\x00" * 1024)
        assert validate_upload(str(f)) == []

    def test_uppercase_extension_accepted(self, home_tmp_path):
        f = home_tmp_path / "TEST.JPG"
        f.write_bytes(b"\x00" * 1024)
        assert validate_upload(str(f)) == []

    def test_exe_rejected(self, home_tmp_path):
        f = home_tmp_path / "test.exe"
        f.write_bytes(b"\x00" * 1024)
        errors = validate_upload(str(f))
        assert any("not allowed" in e for e in errors)

    def test_narrowed_whitelist(self, home_tmp_path):
        f = home_tmp_path / "clip.mov"
        f.write_bytes(b"\x00" * 1024)
        assert validate_upload(str(f), VIDEO_EXTENSIONS) == []
        errors = validate_upload(str(f), IMAGE_EXTENSIONS)
        assert any("not allowed" in e for e in errors)

    def test_outside_home_rejected(self):
        errors = validate_upload("/etc/hosts.png")
        assert errors == ["Path must be within user home directory"]

    def test_nonexistent_file_rejected(self):
        errors = validate_upload(str(Path.home() / "nonexistent" / "video.mp4"))
        assert any("not found" in e.lower() for e in errors)

    def test_symlink_rejected(self, home_tmp_path):
        real = home_tmp_path / "real.png"
        real.write_bytes(b"\x00" * 1024)
        link = home_tmp_path / "link.png"
        link.symlink_to(real)
        errors = validate_upload(str(link))
        assert any("symlink" in e.lower() for e in errors)

    def test_oversized_file_rejected(self, home_tmp_path):
        f = home_tmp_path / "big.mp4"
        # Sparse file: size check without writing 500MB
        with open(f, "wb") as fh:
            fh.seek(MAX_UPLOAD_SIZE + 1)
            fh.write(b"\x00")
        errors = validate_upload(str(f))
        assert any("too large" in e.lower() for e in errors)

    def test_all_allowed_extensions(self, home_tmp_path):
        for ext in ALLOWED_EXTENSIONS:
            f = home_tmp_path / f"test{ext}"
            f.write_bytes(b"\x00" * 1024)
            assert validate_upload(str(f)) == [], f"Extension {ext} should be allowed"


@pytest.mark.smoke
class TestFrameSize:
    """Raw pixel payload dimensions."""

    def test_valid(self):
        assert validate_frame_size(1920, 1080) == []

    def test_zero_is_valid(self):
        assert validate_frame_size(0, 0) == []

    def test_at_limit(self):
        assert validate_frame_size(MAX_PIXELS, 1) == []

    def test_over_limit(self):
        errors = validate_frame_size(MAX_PIXELS + 1, 1)
        assert any("exceeds maximum" in e for e in errors)

    def test_negative(self):
        assert validate_frame_size(-1, 10) == ["width must be non-negative"]

    def test_non_integer(self):
        errors = validate_frame_size(10.0, "10")
        assert errors == ["width must be an integer", "height must be an integer"]

    def test_bool_rejected(self):
        assert validate_frame_size(True, 1) == ["width must be an integer"]


@pytest.mark.smoke
class TestStripPII:
    """PII stripping for Sentry events and crash dumps."""

    def test_removes_home_dir_from_exception(self):
        home = os.path.expanduser("~")
        event = {
            "exception": {
                "values": [{"value": f"File not found: {home}/secret/screen.png"}]
            }
        }
        result_str = str(strip_pii(event, {}))
        assert home not in result_str
        assert "<HOME>" in result_str or "<REDACTED_PATH>" in result_str

    def test_removes_token_from_extra(self):
        event = {"extra": {"_token": "abc-secret-123", "frame_width": 1920}}
        result = strip_pii(event, {})
        assert result["extra"]["_token"] == "<REDACTED>"
        assert result["extra"]["frame_width"] == 1920

    def test_scrubs_contexts(self):
        event = {"contexts": {"server": {"auth_header": "Bearer x", "port": 5555}}}
        result = strip_pii(event, {})
        assert result["contexts"]["server"]["auth_header"] == "<REDACTED>"
        assert result["contexts"]["server"]["port"] == 5555

    def test_replaces_users_path(self):
        event = {"message": "Error at /Users/johndoe/project/main.py:42"}
        result = strip_pii(event, {})
        assert "/Users/johndoe" not in result["message"]
        assert "<REDACTED_PATH>" in result["message"]

    def test_preserves_non_sensitive_data(self):
        event = {
            "extra": {"method": "hybrid", "frames": 8, "resolution": [1920, 1080]},
            "tags": {"environment": "development"},
        }
        result = strip_pii(event, {})
        assert result["extra"]["method"] == "hybrid"
        assert result["extra"]["frames"] == 8
        assert result["extra"]["resolution"] == [1920, 1080]
        assert result["tags"]["environment"] == "development"
