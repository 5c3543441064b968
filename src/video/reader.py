"""Video decoding via PyAV."""

import av
import numpy as np


class VideoReader:
    def __init__(self, path: str):
        self.container = av.open(path)
        self.stream = self.container.streams.video[0]
        self.stream.thread_type = "AUTO"
        self.fps = float(self.stream.average_rate) if self.stream.average_rate else 0.0
        if self.stream.duration is not None:
            self.duration = float(self.stream.duration * self.stream.time_base)
        elif self.container.duration:
            self.duration = float(self.container.duration / av.time_base)
        else:
            self.duration = 0.0
        self.width = self.stream.width
        self.height = self.stream.height
        self.frame_count = self.stream.frames or int(self.duration * self.fps)
        self._last_decoded_index: int = -1
        self._decoder = self.container.decode(video=0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def decode_frame(self, frame_index: int) -> np.ndarray:
        """Decode a specific frame by index. Returns RGBA uint8 array (H, W, 4).

        Sequential access (frame_index == last_index + 1) advances the
        existing decoder; anything else seeks.
        """
        if frame_index < 0:
            raise IndexError(f"Frame {frame_index} is negative")
        if frame_index == self._last_decoded_index + 1:
            return self._decode_next_sequential(frame_index)
        return self._decode_with_seek(frame_index)

    def decode_at(self, time_s: float) -> np.ndarray:
        """Decode the frame shown at time_s seconds."""
        return self.decode_frame(int(time_s * self.fps))

    def _decode_next_sequential(self, frame_index: int) -> np.ndarray:
        try:
            frame = next(self._decoder)
        except StopIteration:
            raise IndexError(f"Frame {frame_index} not found (end of stream)")
        self._last_decoded_index = frame_index
        return frame.to_ndarray(format="rgba")

    def _decode_with_seek(self, frame_index: int) -> np.ndarray:
        if self.fps <= 0:
            raise IndexError("Stream has no frame rate")
        time_s = frame_index / self.fps
        self.container.seek(int(time_s / self.stream.time_base), stream=self.stream)
        self._decoder = self.container.decode(video=0)
        for frame in self._decoder:
            if frame.pts is not None:
                current_idx = int(float(frame.pts * self.stream.time_base) * self.fps)
                if current_idx >= frame_index:
                    self._last_decoded_index = frame_index
                    return frame.to_ndarray(format="rgba")
        raise IndexError(f"Frame {frame_index} not found")

    def close(self):
        self.container.close()
