"""
Centralized configuration with environment variable overrides.

Recording limits, retry budgets, pricing defaults and backend endpoints
are configurable here. Call sites never carry their own magic numbers.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from shopvoice.logging_context import SessionIdFilter

load_dotenv()

logger = logging.getLogger(__name__)

COMMIT_MODES = ("invoice", "service_log")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag such as ``1``/``true``/``no`` from an env var."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class ShopConfig:
    """Shop-specific defaults used when building records."""

    name: str = os.getenv("SHOP_NAME", "Main Street Auto")
    default_item_price: float = _safe_float("DEFAULT_ITEM_PRICE", "95")
    tax_rate: float = _safe_float("INVOICE_TAX_RATE", "0.0825")
    recent_service_days: int = _safe_int("RECENT_SERVICE_DAYS", "30")
    fallback_service_name: str = os.getenv("FALLBACK_SERVICE_NAME", "General service")
    commit_mode: str = os.getenv("COMMIT_MODE", "invoice")


@dataclass(frozen=True)
class CaptureConfig:
    """Microphone capture limits."""

    max_recording_sec: float = _safe_float("MAX_RECORDING_SEC", "6.0")
    min_audio_bytes: int = _safe_int("MIN_AUDIO_BYTES", "1000")
    sample_rate: int = _safe_int("CAPTURE_SAMPLE_RATE", "16000")
    channels: int = _safe_int("CAPTURE_CHANNELS", "1")


@dataclass(frozen=True)
class TranscriptionConfig:
    """Speech-to-text boundary service settings."""

    endpoint: str = os.getenv("TRANSCRIPTION_ENDPOINT", "/voice/transcribe")
    timeout_sec: float = _safe_float("TRANSCRIPTION_TIMEOUT", "30.0")
    max_retries: int = _safe_int("TRANSCRIPTION_MAX_RETRIES", "2")


@dataclass(frozen=True)
class ShopApiConfig:
    """Shop backend HTTP API settings."""

    base_url: str = os.getenv("SHOP_API_URL", "http://localhost:3000/api")
    token: str = os.getenv("SHOP_API_TOKEN", "")
    timeout_sec: float = _safe_float("SHOP_API_TIMEOUT", "15.0")
    download_pdf: bool = _safe_bool("DOWNLOAD_INVOICE_PDF", "true")
    pdf_dir: str = os.getenv("INVOICE_PDF_DIR", "invoices")


@dataclass(frozen=True)
class SpeechConfig:
    """Local text-to-speech settings."""

    rate: int = _safe_int("TTS_RATE", "170")
    volume: float = _safe_float("TTS_VOLUME", "1.0")
    voice_id: str = os.getenv("TTS_VOICE_ID", "")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    shop: ShopConfig = field(default_factory=ShopConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    api: ShopApiConfig = field(default_factory=ShopApiConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.shop.default_item_price < 0:
        raise ValueError(
            f"DEFAULT_ITEM_PRICE must be >= 0, got {config.shop.default_item_price}"
        )
    if not 0.0 <= config.shop.tax_rate <= 1.0:
        raise ValueError(
            f"INVOICE_TAX_RATE must be between 0.0 and 1.0, got {config.shop.tax_rate}"
        )
    if config.shop.recent_service_days < 0:
        raise ValueError(
            f"RECENT_SERVICE_DAYS must be >= 0, got {config.shop.recent_service_days}"
        )
    if config.shop.commit_mode not in COMMIT_MODES:
        raise ValueError(
            f"COMMIT_MODE must be one of {COMMIT_MODES}, got {config.shop.commit_mode!r}"
        )
    if config.capture.max_recording_sec <= 0:
        raise ValueError(
            f"MAX_RECORDING_SEC must be > 0, got {config.capture.max_recording_sec}"
        )
    if config.capture.min_audio_bytes < 0:
        raise ValueError(
            f"MIN_AUDIO_BYTES must be >= 0, got {config.capture.min_audio_bytes}"
        )
    if config.capture.sample_rate < 8000:
        raise ValueError(
            f"CAPTURE_SAMPLE_RATE must be >= 8000, got {config.capture.sample_rate}"
        )
    if config.capture.channels < 1:
        raise ValueError(
            f"CAPTURE_CHANNELS must be >= 1, got {config.capture.channels}"
        )
    if config.transcription.max_retries < 0:
        raise ValueError(
            "TRANSCRIPTION_MAX_RETRIES must be >= 0, "
            f"got {config.transcription.max_retries}"
        )
    for name, value in [
        ("TRANSCRIPTION_TIMEOUT", config.transcription.timeout_sec),
        ("SHOP_API_TIMEOUT", config.api.timeout_sec),
    ]:
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    if not 0.0 <= config.speech.volume <= 1.0:
        raise ValueError(
            f"TTS_VOLUME must be between 0.0 and 1.0, got {config.speech.volume}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(session_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SessionIdFilter) for f in handler.filters):
            handler.addFilter(SessionIdFilter())
    logger.info("Configuration loaded for '%s'", config.shop.name)
    return config


# Singleton instance
settings = load_config()
