"""Fast video header probing."""

import logging

import av

logger = logging.getLogger(__name__)


def probe(path: str) -> dict:
    """Probe a video file for the metadata frame sampling needs. Reads only headers."""
    try:
        container = av.open(path)
    except (av.error.FileNotFoundError, av.error.InvalidDataError) as e:
        logger.exception("Probe failed for %s", path)
        return {"ok": False, "error": f"Failed to open video: {type(e).__name__}"}

    try:
        if not container.streams.video:
            return {"ok": False, "error": "No video stream found"}

        stream = container.streams.video[0]
        return {
            "ok": True,
            "width": stream.width,
            "height": stream.height,
            "fps": float(stream.average_rate) if stream.average_rate else 0.0,
            "duration_s": float(container.duration / av.time_base)
            if container.duration
            else 0.0,
            "codec": stream.codec_context.name,
            "frame_count": stream.frames or 0,
        }
    finally:
        container.close()
