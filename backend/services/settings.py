"""Environment-driven settings for the recorder service and the pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_BASE_URL = "http://localhost:8000"
DEFAULT_LANGUAGE = "ko-KR"


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    capture_device: str = "/dev/video0"
    capture_format: str | None = "v4l2"
    chunk_seconds: float = 1.0
    poll_interval_seconds: float = 5.0
    poll_timeout_seconds: float = 30 * 60
    transcribe_language: str = DEFAULT_LANGUAGE
    allow_simulated_upload: bool = False
    http_timeout_seconds: float = 120.0

    @classmethod
    def from_env(cls) -> Settings:
        capture_format = os.environ.get("CAPTURE_FORMAT")
        return cls(
            api_base_url=_env_str("API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            capture_device=_env_str("CAPTURE_DEVICE", cls.capture_device),
            # CAPTURE_FORMAT="" lets FFmpeg detect the input format itself.
            capture_format=cls.capture_format if capture_format is None else (capture_format.strip() or None),
            chunk_seconds=_env_float("CHUNK_SECONDS", cls.chunk_seconds),
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", cls.poll_interval_seconds),
            poll_timeout_seconds=_env_float("POLL_TIMEOUT_SECONDS", cls.poll_timeout_seconds),
            transcribe_language=_env_str("TRANSCRIBE_LANGUAGE", DEFAULT_LANGUAGE),
            allow_simulated_upload=_env_bool("ALLOW_SIMULATED_UPLOAD"),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds),
        )
