"""Service configuration loaded from ``SILENCECUT_*`` environment variables."""
import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    database_url: str
    scratch_dir: Path
    s3_bucket: str
    s3_endpoint_url: Optional[str]
    s3_region: Optional[str]
    resend_api_key: Optional[str]
    email_from: str
    app_url: str
    worker_concurrency: int
    rate_limit_max: int
    rate_limit_window_seconds: float
    max_attempts: int
    retry_backoff_seconds: float
    visibility_timeout_seconds: float
    poll_interval_seconds: float
    reconnect_backoff_max_seconds: float
    shutdown_grace_seconds: float
    noise_floor_db: float
    min_silence_seconds: float
    download_url_ttl_seconds: int
    silence_detector: str
    log_level: str
    max_upload_mb: int

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float, minimum: Optional[float] = 0.0) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = (env.get(name) or "").strip()
    return value or None


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    detector = (env.get("SILENCECUT_SILENCE_DETECTOR") or "ffmpeg").strip().lower()
    if detector not in ("ffmpeg", "librosa"):
        raise ValueError(f"SILENCECUT_SILENCE_DETECTOR must be 'ffmpeg' or 'librosa', got {detector!r}")

    return Settings(
        database_url=env.get("SILENCECUT_DATABASE_URL", "sqlite+aiosqlite:///./silencecut.db"),
        scratch_dir=Path(env.get("SILENCECUT_SCRATCH_DIR") or Path(tempfile.gettempdir()) / "silencecut"),
        s3_bucket=env.get("SILENCECUT_S3_BUCKET", "silencecut"),
        s3_endpoint_url=_optional(env, "SILENCECUT_S3_ENDPOINT_URL"),
        s3_region=_optional(env, "SILENCECUT_S3_REGION") or "auto",
        resend_api_key=_optional(env, "SILENCECUT_RESEND_API_KEY"),
        email_from=env.get("SILENCECUT_EMAIL_FROM", "SilenceCut <noreply@example.com>"),
        app_url=env.get("SILENCECUT_APP_URL", "http://localhost:8000").rstrip("/"),
        worker_concurrency=_int(env, "SILENCECUT_WORKER_CONCURRENCY", 2, minimum=1),
        rate_limit_max=_int(env, "SILENCECUT_RATE_LIMIT_MAX", 10, minimum=1),
        rate_limit_window_seconds=_float(env, "SILENCECUT_RATE_LIMIT_WINDOW_SECONDS", 60.0),
        max_attempts=_int(env, "SILENCECUT_MAX_ATTEMPTS", 3, minimum=1),
        retry_backoff_seconds=_float(env, "SILENCECUT_RETRY_BACKOFF_SECONDS", 5.0),
        visibility_timeout_seconds=_float(env, "SILENCECUT_VISIBILITY_TIMEOUT_SECONDS", 1800.0),
        poll_interval_seconds=_float(env, "SILENCECUT_POLL_INTERVAL_SECONDS", 1.0),
        reconnect_backoff_max_seconds=_float(env, "SILENCECUT_RECONNECT_BACKOFF_MAX_SECONDS", 60.0),
        shutdown_grace_seconds=_float(env, "SILENCECUT_SHUTDOWN_GRACE_SECONDS", 300.0),
        noise_floor_db=_float(env, "SILENCECUT_NOISE_FLOOR_DB", -30.0, minimum=None),
        min_silence_seconds=_float(env, "SILENCECUT_MIN_SILENCE_SECONDS", 0.5),
        download_url_ttl_seconds=_int(env, "SILENCECUT_DOWNLOAD_URL_TTL_SECONDS", 86400, minimum=60),
        silence_detector=detector,
        log_level=(env.get("SILENCECUT_LOG_LEVEL") or "INFO").upper(),
        max_upload_mb=_int(env, "SILENCECUT_MAX_UPLOAD_MB", 300),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
