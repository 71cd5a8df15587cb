"""Environment-driven settings for the SmartInterview backend."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _parse_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid float for %s: %s", name, value)
        return default


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %s", name, value)
        return default


def _parse_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Settings read once at import time."""

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./smartinterview.db")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    TEXT_MODEL: str = os.getenv("TEXT_MODEL", "gemini-2.5-flash")
    VIDEO_MODEL: str = os.getenv("VIDEO_MODEL", "gemini-2.5-pro")
    LIVE_MODEL: str = os.getenv("LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")
    LIVE_VOICE: str = os.getenv("LIVE_VOICE", "Zephyr")
    TTS_MODEL: str = os.getenv("TTS_MODEL", "gemini-2.5-flash-preview-tts")
    TTS_VOICE: str = os.getenv("TTS_VOICE", "Kore")
    IMAGE_MODEL: str = os.getenv("IMAGE_MODEL", "imagen-4.0-generate-001")

    ADMIN_USERNAMES: list[str] = [u.lower() for u in _parse_list("ADMIN_USERNAMES", "admin,admin@example.com")]
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "12345")
    DEMO_CANDIDATE_PASSWORD: str = os.getenv("DEMO_CANDIDATE_PASSWORD", "12345")
    SESSION_TTL_HOURS: int = _parse_int("SESSION_TTL_HOURS", 12)
    PASSWORD_HASH_ITERATIONS: int = _parse_int("PASSWORD_HASH_ITERATIONS", 200_000)

    MEDIA_DIR: str = os.getenv("MEDIA_DIR", "./media")
    MEDIA_BUDGET_BYTES: int = _parse_int("MEDIA_BUDGET_MB", 512) * 1024 * 1024
    MEDIA_CANDIDATE_BUDGET_BYTES: int = _parse_int("MEDIA_CANDIDATE_BUDGET_MB", 128) * 1024 * 1024
    MEDIA_MAX_ASSET_BYTES: int = _parse_int("MEDIA_MAX_ASSET_MB", 64) * 1024 * 1024
    TEMPLATE_IMAGE_MAX_BYTES: int = _parse_int("TEMPLATE_IMAGE_MAX_MB", 5) * 1024 * 1024

    LIVE_BUFFER_MAX_BYTES: int = _parse_int("LIVE_BUFFER_MAX_KB", 512) * 1024
    LIVE_BUFFER_POLICY: str = os.getenv("LIVE_BUFFER_POLICY", "drop_oldest").strip().lower()
    if LIVE_BUFFER_POLICY not in {"drop_oldest", "drop_newest"}:
        logger.warning("Unsupported LIVE_BUFFER_POLICY '%s', falling back to 'drop_oldest'", LIVE_BUFFER_POLICY)
        LIVE_BUFFER_POLICY = "drop_oldest"
    LIVE_RECONNECT_ATTEMPTS: int = _parse_int("LIVE_RECONNECT_ATTEMPTS", 5)
    LIVE_RECONNECT_BASE_DELAY: float = _parse_float("LIVE_RECONNECT_BASE_DELAY", 0.5)
    LIVE_RECONNECT_MAX_DELAY: float = _parse_float("LIVE_RECONNECT_MAX_DELAY", 8.0)
    LIVE_MAX_RECORDING_BYTES: int = _parse_int("LIVE_MAX_RECORDING_MB", 64) * 1024 * 1024

    QUESTION_TIME_LIMIT: int = _parse_int("QUESTION_TIME_LIMIT", 180)
    CHAT_HISTORY_LIMIT: int = _parse_int("CHAT_HISTORY_LIMIT", 6)

    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = _parse_int("SMTP_PORT", 465)
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
