import base64
import binascii
import collections
import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from detection.config import config_to_dict, validate_config
from detection.result import result_to_dict
from engine.host import ChromaDetect, detect_from_video
from engine.image_io import load_image_rgba
from security import (
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
    validate_frame_size,
    validate_upload,
)
from video.ingest import probe
from video.sampling import STRATEGIES, VideoConfig

logger = logging.getLogger(__name__)

# Raw RGBA frames travel base64-encoded on the main socket
MAX_MESSAGE_BYTES = 64 * 1024 * 1024
MAX_SESSIONS = 16
MAX_VIDEO_SAMPLES = 120


class ZMQServer:
    def __init__(self):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_MESSAGE_BYTES)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by a long detection
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token: other local processes cannot drive the server without it
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.detector = ChromaDetect()
        # Independent video sessions, LRU eviction
        self.sessions: collections.OrderedDict[str, ChromaDetect] = (
            collections.OrderedDict()
        )
        self._max_sessions = MAX_SESSIONS
        self.last_detect_ms = 0.0

    def reset_state(self):
        """Drop sessions and restore default config without closing sockets.

        Used by session-scoped test fixtures to reset between tests.
        """
        self.sessions.clear()
        self.detector = ChromaDetect()
        self.last_detect_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        if message.get("_token") != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_detect_ms": self.last_detect_ms,
            "sessions": len(self.sessions),
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "get_config":
            return {
                "id": msg_id,
                "ok": True,
                "config": config_to_dict(self.detector.config, camel_case=True),
            }
        elif cmd == "set_config":
            return self._handle_set_config(message, msg_id)
        elif cmd == "detect_image":
            return self._handle_detect_image(message, msg_id)
        elif cmd == "detect_pixels":
            return self._handle_detect_pixels(message, msg_id)
        elif cmd == "ingest":
            return self._handle_ingest(message, msg_id)
        elif cmd == "detect_video":
            return self._handle_detect_video(message, msg_id)
        elif cmd == "session_start":
            return self._handle_session_start(msg_id)
        elif cmd == "session_add_frame":
            return self._handle_session_add_frame(message, msg_id)
        elif cmd == "session_consensus":
            return self._handle_session_consensus(message, msg_id)
        elif cmd == "session_end":
            return self._handle_session_end(message, msg_id)
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_set_config(self, message: dict, msg_id: str | None) -> dict:
        data = message.get("config")
        errors = validate_config(data)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}
        self.detector.set_config(data)
        return {
            "id": msg_id,
            "ok": True,
            "config": config_to_dict(self.detector.config, camel_case=True),
        }

    def _decode_pixels(self, message: dict) -> tuple[bytes, int, int] | str:
        """Pull (pixels, width, height) out of a message, or an error string."""
        width = message.get("width")
        height = message.get("height")
        errors = validate_frame_size(width, height)
        if errors:
            return "; ".join(errors)
        encoded = message.get("pixels")
        if not isinstance(encoded, str):
            return "missing pixels"
        try:
            pixels = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return "pixels must be base64-encoded RGBA"
        return pixels, width, height

    def _timed_detect(self, detector: ChromaDetect, pixels, width: int, height: int):
        t0 = time.time()
        result = detector.detect_from_image(pixels, width, height)
        self.last_detect_ms = round((time.time() - t0) * 1000, 2)
        return result

    def _handle_detect_image(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        errors = validate_upload(path, IMAGE_EXTENSIONS)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            frame = load_image_rgba(path)
            height, width = frame.shape[:2]
            result = self._timed_detect(self.detector, frame, width, height)
            return {
                "id": msg_id,
                "ok": True,
                "width": width,
                "height": height,
                "result": result_to_dict(result),
            }
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Detect image handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_detect_pixels(self, message: dict, msg_id: str | None) -> dict:
        decoded = self._decode_pixels(message)
        if isinstance(decoded, str):
            return {"id": msg_id, "ok": False, "error": decoded}
        pixels, width, height = decoded

        try:
            result = self._timed_detect(self.detector, pixels, width, height)
            return {"id": msg_id, "ok": True, "result": result_to_dict(result)}
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Detect pixels handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _video_config(self, message: dict) -> VideoConfig | str:
        count = message.get("frame_sample_count", 8)
        strategy = message.get("sample_strategy", "uniform")
        max_duration = message.get("max_duration", 30.0)
        if isinstance(count, bool) or not isinstance(count, int):
            return "frame_sample_count must be an integer"
        if not 1 <= count <= MAX_VIDEO_SAMPLES:
            return f"frame_sample_count must be in [1, {MAX_VIDEO_SAMPLES}]"
        if strategy not in STRATEGIES:
            return f"sample_strategy must be one of {list(STRATEGIES)}"
        if isinstance(max_duration, bool) or not isinstance(max_duration, (int, float)):
            return "max_duration must be a number"
        if max_duration <= 0:
            return "max_duration must be positive"
        return VideoConfig(count, strategy, float(max_duration))

    def _handle_ingest(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        errors = validate_upload(path, VIDEO_EXTENSIONS)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        result = probe(path)
        result["id"] = msg_id
        return result

    def _handle_detect_video(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        errors = validate_upload(path, VIDEO_EXTENSIONS)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        video_config = self._video_config(message)
        if isinstance(video_config, str):
            return {"id": msg_id, "ok": False, "error": video_config}

        try:
            t0 = time.time()
            result = detect_from_video(path, video_config, self.detector.config)
            self.last_detect_ms = round((time.time() - t0) * 1000, 2)
            return {"id": msg_id, "ok": True, "result": result_to_dict(result)}
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Detect video handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _get_session(self, message: dict) -> ChromaDetect | None:
        session_id = message.get("session_id")
        if not isinstance(session_id, str) or session_id not in self.sessions:
            return None
        self.sessions.move_to_end(session_id)
        return self.sessions[session_id]

    def _handle_session_start(self, msg_id: str | None) -> dict:
        # Evict oldest session if the table is full
        while len(self.sessions) >= self._max_sessions:
            evicted, _ = self.sessions.popitem(last=False)
            logger.info("Evicted video session %s", evicted)
        session = ChromaDetect(self.detector.config)
        session.start_video_analysis()
        session_id = str(uuid.uuid4())
        self.sessions[session_id] = session
        return {"id": msg_id, "ok": True, "session_id": session_id}

    def _handle_session_add_frame(self, message: dict, msg_id: str | None) -> dict:
        session = self._get_session(message)
        if session is None:
            return {"id": msg_id, "ok": False, "error": "unknown session"}

        decoded = self._decode_pixels(message)
        if isinstance(decoded, str):
            return {"id": msg_id, "ok": False, "error": decoded}
        pixels, width, height = decoded

        try:
            t0 = time.time()
            recorded = session.add_video_frame(pixels, width, height)
            self.last_detect_ms = round((time.time() - t0) * 1000, 2)
            return {
                "id": msg_id,
                "ok": True,
                "recorded": recorded,
                "frames": len(session.session),
            }
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Session frame handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_session_consensus(self, message: dict, msg_id: str | None) -> dict:
        session = self._get_session(message)
        if session is None:
            return {"id": msg_id, "ok": False, "error": "unknown session"}
        return {
            "id": msg_id,
            "ok": True,
            "frames": len(session.session),
            "result": result_to_dict(session.get_video_consensus()),
        }

    def _handle_session_end(self, message: dict, msg_id: str | None) -> dict:
        session_id = message.get("session_id")
        if self.sessions.pop(session_id, None) is None:
            return {"id": msg_id, "ok": False, "error": "unknown session"}
        return {"id": msg_id, "ok": True}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    message = json.loads(self.ping_socket.recv())
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            if self.socket in events:
                try:
                    message = json.loads(self.socket.recv())
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json({"ok": False, "error": "Invalid message format"})
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                if not isinstance(message, dict):
                    self.socket.send_json({"ok": False, "error": "Invalid message format"})
                    continue

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.sessions.clear()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
