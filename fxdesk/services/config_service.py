"""Environment-based configuration loader.

All values are optional; see AppSettings for defaults. The engines never
read configuration themselves. Thresholds and retention are passed in as
arguments, and this service only supplies the defaults the HTTP layer uses.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from fxdesk.utils.helpers.exceptions import ConfigurationError

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[1] / "data"

# env var → AppSettings field
ENV_FIELDS = {
    "FXDESK_DATA_DIR": "data_dir",
    "FXDESK_HAMMING_THRESHOLD": "hamming_threshold",
    "FXDESK_DETECTION_RETENTION_DAYS": "detection_retention_days",
    "WHATSAPP_ACCESS_TOKEN": "whatsapp_access_token",
    "WHATSAPP_PHONE_NUMBER_ID": "whatsapp_phone_number_id",
    "WHATSAPP_API_VERSION": "whatsapp_api_version",
    "WHATSAPP_API_URL": "whatsapp_api_url",
    "WHATSAPP_TIMEOUT_SECONDS": "whatsapp_timeout_seconds",
}


class AppSettings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    hamming_threshold: int = Field(default=5, ge=0)
    detection_retention_days: float = Field(default=90, ge=0)
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_api_version: str = "v18.0"
    whatsapp_api_url: str = "https://graph.facebook.com"
    whatsapp_timeout_seconds: float = Field(default=10.0, gt=0)

    def db_path(self, filename: str) -> str:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return str(self.data_dir / filename)


class ConfigService:
    """Load AppSettings from the process environment (or a given mapping)."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._settings: Optional[AppSettings] = None
        self._logger = logging.getLogger(__name__)

    # -----------------
    # Public accessors
    # -----------------
    def get_settings(self) -> AppSettings:
        if self._settings is None:
            self._settings = self._load()
        return self._settings

    def reload(self) -> AppSettings:
        self._settings = None
        return self.get_settings()

    # -----------------
    # Internal loaders
    # -----------------
    def _load(self) -> AppSettings:
        values = {}
        for env_name, field_name in ENV_FIELDS.items():
            raw = self._environ.get(env_name)
            if raw is None or raw.strip() == "":
                continue
            values[field_name] = raw.strip()

        try:
            settings = AppSettings(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

        if not (settings.whatsapp_access_token and settings.whatsapp_phone_number_id):
            self._logger.warning(
                "WhatsApp credentials not configured; settlement notifications will fail"
            )
        return settings


_config_service: Optional[ConfigService] = None


def get_settings() -> AppSettings:
    """Process-wide settings (loaded once)."""
    global _config_service
    if _config_service is None:
        _config_service = ConfigService()
    return _config_service.get_settings()
