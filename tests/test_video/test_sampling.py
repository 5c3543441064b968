"""Tests for frame timestamp selection."""

import math

import pytest

from video.sampling import VideoConfig, frame_timestamps

pytestmark = pytest.mark.smoke


def test_video_config_defaults():
    config = VideoConfig()
    assert config.frame_sample_count == 8
    assert config.sample_strategy == "uniform"
    assert config.max_duration == 30.0


def test_uniform_excludes_both_ends():
    assert frame_timestamps(9.0, 8) == pytest.approx([1, 2, 3, 4, 5, 6, 7, 8])


def test_uniform_caps_at_max_duration():
    assert frame_timestamps(100.0, 2, max_duration=30.0) == pytest.approx([10.0, 20.0])


def test_keyframes_favor_start_and_end():
    ts = frame_timestamps(100.0, 10, "keyframes", max_duration=100.0)
    assert ts == pytest.approx(
        [0.0, 2.5, 5.0, 7.5, 30.0, 50.0, 90.0, 92.5, 95.0, 97.5]
    )


def test_keyframes_small_count_uses_middle():
    assert frame_timestamps(10.0, 1, "keyframes") == pytest.approx([3.0])


def test_keyframes_sorted_and_counted():
    ts = frame_timestamps(12.0, 7, "keyframes")
    assert len(ts) == 7
    assert ts == sorted(ts)
    assert all(0.0 <= t < 12.0 for t in ts)


@pytest.mark.parametrize("duration", [0.0, -1.0, math.nan, math.inf])
def test_bad_duration_yields_nothing(duration):
    assert frame_timestamps(duration, 8) == []


def test_zero_count_yields_nothing():
    assert frame_timestamps(10.0, 0) == []


def test_unknown_strategy_raises():
    with pytest.raises(ValueError, match="unknown sample strategy"):
        frame_timestamps(10.0, 8, "random")
