"""
echovoice/core/config.py — Typed configuration loader for EchoVoice.

Loads config/echovoice.yaml and validates all values into frozen dataclasses.
Downstream modules take an :class:`EchoConfig`; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from echovoice.core.constants import C
from echovoice.core.errors import ConfigError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Dataclass hierarchy: mirrors echovoice.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class CameraConfig:
    """Webcam shared by the emotion and presence detectors."""

    enabled: bool = True
    index: int = 0
    width: int = 640
    height: int = 480


@dataclass(frozen=True)
class DetectorsConfig:
    """Detector cadence and model locations."""

    vision_interval_s: float = C.VISION_SAMPLE_S
    clock_interval_s: float = C.CLOCK_TICK_S
    presence_min_confidence: float = C.PRESENCE_MIN_CONFIDENCE
    emotion_model: str = "models/emotion-ferplus.onnx"
    face_embedding_model: str = "models/openface.nn4.small2.v1.t7"
    gallery_path: str = "models/gallery.npz"


@dataclass(frozen=True)
class LocationConfig:
    """Fixed position source and reverse-geocoder endpoint."""

    consent: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "EchoVoice/1.0"
    timeout_s: float = 5.0


@dataclass(frozen=True)
class SuggestionsConfig:
    """Generative backend selection."""

    backend: str = "none"           # none | http | transformers
    endpoint: str = ""
    api_key: Optional[str] = None
    model_id: str = "google/gemma-2-2b-it"
    max_new_tokens: int = 200
    temperature: float = 0.7
    timeout_s: float = C.GENERATE_TIMEOUT_S


@dataclass(frozen=True)
class EmergencyConfig:
    """Gesture timings, countdown, and the alert message."""

    long_press_ms: float = C.LONG_PRESS_MS
    rapid_tap_count: int = C.RAPID_TAP_COUNT
    tap_window_ms: float = C.TAP_WINDOW_MS
    countdown_s: int = C.CONFIRM_COUNTDOWN_S
    message: str = C.EMERGENCY_MESSAGE
    user_name: str = "EchoVoice user"
    contacts: tuple[dict, ...] = ()


@dataclass(frozen=True)
class TTSConfig:
    """Text-to-speech engine configuration."""

    rate: int = 150
    volume: float = 1.0
    pitch: float = 1.0
    voice_id: Optional[str] = None


@dataclass(frozen=True)
class MessagingConfig:
    """Twilio SMS credentials; environment variables override the file."""

    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    fallback_destination: Optional[str] = None
    api_base: str = "https://api.twilio.com/2010-04-01"
    timeout_s: float = 10.0

    @property
    def configured(self) -> bool:
        """True when every credential needed to send an SMS is present."""
        return bool(self.account_sid and self.auth_token and self.from_number)


@dataclass(frozen=True)
class SettingsConfig:
    """User preferences carried over from the settings screen."""

    phrase_tone: str = "friendly"   # formal | friendly | neutral
    emotion_detection: bool = True
    location_detection: bool = True
    save_history: bool = True


@dataclass(frozen=True)
class HistoryConfig:
    """Where spoken phrases and emergency events are recorded."""

    path: str = "logs/history.jsonl"
    recent_max: int = C.RECENT_HISTORY_MAX


@dataclass(frozen=True)
class ServerConfig:
    """FastAPI / uvicorn bind address."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(frozen=True)
class EchoConfig:
    """Root configuration object — single source of truth for all settings."""

    camera: CameraConfig = field(default_factory=CameraConfig)
    detectors: DetectorsConfig = field(default_factory=DetectorsConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    suggestions: SuggestionsConfig = field(default_factory=SuggestionsConfig)
    emergency: EmergencyConfig = field(default_factory=EmergencyConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    settings: SettingsConfig = field(default_factory=SettingsConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────

_TWILIO_ENV = {
    "account_sid": "TWILIO_ACCOUNT_SID",
    "auth_token": "TWILIO_AUTH_TOKEN",
    "from_number": "TWILIO_PHONE_NUMBER",
}


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(config_path: Path | str | None) -> Path | None:
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")
        return resolved
    if "ECHOVOICE_CONFIG" in os.environ:
        resolved = Path(os.environ["ECHOVOICE_CONFIG"])
        if not resolved.exists():
            raise FileNotFoundError(
                f"ECHOVOICE_CONFIG points to missing file: {resolved}"
            )
        return resolved
    # Auto-discover: the working directory first, then the project root
    here = Path(__file__).resolve()
    for parent in [Path.cwd(), here.parent.parent.parent]:
        candidate = parent / "config" / "echovoice.yaml"
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Path | str | None = None) -> EchoConfig:
    """
    Load, validate, and return an EchoConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. ECHOVOICE_CONFIG environment variable
    3. ``config/echovoice.yaml`` in the working directory or project root
    4. Built-in defaults (no file required)

    Twilio credentials are then overlaid from ``TWILIO_ACCOUNT_SID``,
    ``TWILIO_AUTH_TOKEN`` and ``TWILIO_PHONE_NUMBER`` when set.

    Raises:
        ConfigError: If a field has an unknown name, invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path = _resolve_path(config_path)

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    env_messaging = {
        key: os.environ[var] for key, var in _TWILIO_ENV.items() if os.environ.get(var)
    }
    if env_messaging:
        raw = _merge(raw, {"messaging": env_messaging})

    try:
        emg_raw = dict(raw.get("emergency") or {})
        # YAML lists → tuple
        if isinstance(emg_raw.get("contacts"), list):
            emg_raw["contacts"] = tuple(dict(c) for c in emg_raw["contacts"])

        config = EchoConfig(
            camera=CameraConfig(**(raw.get("camera") or {})),
            detectors=DetectorsConfig(**(raw.get("detectors") or {})),
            location=LocationConfig(**(raw.get("location") or {})),
            suggestions=SuggestionsConfig(**(raw.get("suggestions") or {})),
            emergency=EmergencyConfig(**emg_raw),
            tts=TTSConfig(**(raw.get("tts") or {})),
            messaging=MessagingConfig(**(raw.get("messaging") or {})),
            settings=SettingsConfig(**(raw.get("settings") or {})),
            history=HistoryConfig(**(raw.get("history") or {})),
            server=ServerConfig(**(raw.get("server") or {})),
        )
    except TypeError as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    _validate_config(config)
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(config: EchoConfig) -> None:
    """
    Validate range and enum constraints on the loaded configuration.

    Raises:
        ConfigError: If any configured value violates a hard constraint.
    """
    det = config.detectors
    if det.vision_interval_s <= 0 or det.clock_interval_s <= 0:
        raise ConfigError("detector intervals must be positive")
    if not (0.0 <= det.presence_min_confidence < 1.0):
        raise ConfigError(
            f"detectors.presence_min_confidence must be in [0, 1), got {det.presence_min_confidence}"
        )
    if config.suggestions.backend not in {"none", "http", "transformers"}:
        raise ConfigError(
            "suggestions.backend must be 'none', 'http', or 'transformers', "
            f"got '{config.suggestions.backend}'"
        )
    if config.suggestions.backend == "http" and not config.suggestions.endpoint:
        raise ConfigError("suggestions.endpoint is required when backend is 'http'")
    if config.suggestions.timeout_s <= 0:
        raise ConfigError(f"suggestions.timeout_s must be positive, got {config.suggestions.timeout_s}")
    emg = config.emergency
    if emg.long_press_ms <= 0 or emg.tap_window_ms <= 0:
        raise ConfigError("emergency gesture timings must be positive")
    if emg.rapid_tap_count < 2:
        raise ConfigError(f"emergency.rapid_tap_count must be ≥2, got {emg.rapid_tap_count}")
    if emg.countdown_s < 0:
        raise ConfigError(f"emergency.countdown_s must be ≥0, got {emg.countdown_s}")
    for contact in emg.contacts:
        if not contact.get("phone"):
            raise ConfigError(f"emergency contact without a phone number: {contact}")
    if not (0.0 <= config.tts.volume <= 1.0):
        raise ConfigError(f"tts.volume must be in [0, 1], got {config.tts.volume}")
    if config.tts.rate <= 0:
        raise ConfigError(f"tts.rate must be positive, got {config.tts.rate}")
    if config.settings.phrase_tone not in {"formal", "friendly", "neutral"}:
        raise ConfigError(
            "settings.phrase_tone must be 'formal', 'friendly', or 'neutral', "
            f"got '{config.settings.phrase_tone}'"
        )
    loc = config.location
    if (loc.latitude is None) != (loc.longitude is None):
        raise ConfigError("location.latitude and location.longitude must be set together")
    if loc.latitude is not None and not (-90.0 <= loc.latitude <= 90.0):
        raise ConfigError(f"location.latitude out of range: {loc.latitude}")
    if loc.longitude is not None and not (-180.0 <= loc.longitude <= 180.0):
        raise ConfigError(f"location.longitude out of range: {loc.longitude}")
    if not (0 < config.server.port < 65536):
        raise ConfigError(f"server.port out of range: {config.server.port}")
