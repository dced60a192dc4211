# Startup configuration - read once from the environment (and .env)
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from errors import ConfigurationError

DEFAULT_APP_ID = "homeo-shared-v1"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEV_ORIGINS = ["http://localhost:5173", "http://localhost:5174"]
DEFAULT_INTAKE_IDLE_SECONDS = 30 * 60


@dataclass(frozen=True)
class Settings:
    firebase_config: Dict[str, str] = field(default_factory=dict)
    app_id: str = DEFAULT_APP_ID
    initial_auth_token: Optional[str] = None
    frontend_url: str = ""
    log_level: str = "INFO"
    intake_idle_seconds: int = DEFAULT_INTAKE_IDLE_SECONDS

    @property
    def uses_firebase(self) -> bool:
        """Remote backends need both an API key and a project id"""
        return bool(self.firebase_config.get("apiKey") and self.firebase_config.get("projectId"))

    @property
    def allowed_origins(self) -> List[str]:
        origins = list(DEV_ORIGINS)
        if self.frontend_url:
            origins.append(self.frontend_url)
        return origins


def _parse_firebase_config(raw: str) -> Dict[str, str]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"FIREBASE_CONFIG is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError("FIREBASE_CONFIG must be a JSON object")
    return parsed


def _parse_idle_seconds(raw: str) -> int:
    if not raw.strip():
        return DEFAULT_INTAKE_IDLE_SECONDS
    try:
        seconds = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"INTAKE_IDLE_SECONDS must be an integer, got {raw!r}") from exc
    if seconds <= 0:
        raise ConfigurationError("INTAKE_IDLE_SECONDS must be positive")
    return seconds


def is_demo_mode() -> bool:
    """True only when DEMO_MODE env var is explicitly 'true' (case-insensitive)."""
    return os.environ.get("DEMO_MODE", "").lower() == "true"


def load_settings() -> Settings:
    """Build Settings from the environment. Loads .env first so local runs pick it up."""
    load_dotenv()
    return Settings(
        firebase_config=_parse_firebase_config(os.environ.get("FIREBASE_CONFIG", "")),
        app_id=os.environ.get("APP_ID", "") or DEFAULT_APP_ID,
        initial_auth_token=os.environ.get("INITIAL_AUTH_TOKEN") or None,
        frontend_url=os.environ.get("FRONTEND_URL", ""),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        intake_idle_seconds=_parse_idle_seconds(os.environ.get("INTAKE_IDLE_SECONDS", "")),
    )


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup; safe to call more than once."""
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=DEFAULT_LOG_FORMAT)
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))
