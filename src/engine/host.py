"""Host binding surface — config, single images, video sessions.

A ChromaDetect instance owns one DetectionConfig and at most one active
VideoSession. Config updates apply to later calls only, including
frames pushed into an already running session.
"""

import logging

import av
import numpy as np

from detection.config import DetectionConfig, config_from_dict
from detection.detector import detect_chromakey
from detection.result import ChromakeyResult
from video.consensus import VideoSession
from video.reader import VideoReader
from video.sampling import VideoConfig, frame_timestamps

logger = logging.getLogger(__name__)


class ChromaDetect:
    def __init__(self, config: DetectionConfig | None = None):
        self.config = config if config is not None else DetectionConfig()
        self.session: VideoSession | None = None

    def set_config(self, data) -> bool:
        """Merge a partial config mapping. Invalid input leaves config untouched."""
        try:
            self.config = config_from_dict(data, base=self.config)
        except ValueError as e:
            logger.warning("Rejected config update: %s", e)
            return False
        return True

    def detect_from_image(self, pixels, width: int, height: int) -> ChromakeyResult | None:
        return detect_chromakey(pixels, width, height, self.config)

    def start_video_analysis(self) -> VideoSession:
        self.session = VideoSession(self.config)
        return self.session

    def add_video_frame(self, pixels, width: int, height: int) -> bool:
        """Detect on one frame and record it. True only if a result was recorded."""
        if self.session is None:
            return False
        result = detect_chromakey(pixels, width, height, self.config)
        if result is None:
            return False
        self.session.add_frame_result(result)
        return True

    def get_video_consensus(self) -> ChromakeyResult | None:
        if self.session is None:
            return None
        return self.session.compute_consensus()


def detect_from_video(
    path: str,
    video_config: VideoConfig | None = None,
    detection_config: DetectionConfig | None = None,
) -> ChromakeyResult | None:
    """Sample frames from a video file and return their consensus.

    Frames that fail to decode are logged and skipped.
    """
    video_config = video_config or VideoConfig()
    detector = ChromaDetect(detection_config)
    detector.start_video_analysis()

    with VideoReader(path) as reader:
        timestamps = frame_timestamps(
            reader.duration,
            video_config.frame_sample_count,
            video_config.sample_strategy,
            video_config.max_duration,
        )
        for time_s in timestamps:
            try:
                frame = reader.decode_at(time_s)
            except (IndexError, av.error.FFmpegError):
                logger.warning("Failed to extract frame at %.2fs from %s", time_s, path)
                continue
            height, width = frame.shape[:2]
            detector.add_video_frame(np.ascontiguousarray(frame), width, height)

    return detector.get_video_consensus()
