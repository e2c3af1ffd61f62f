"""Environment-driven settings for the gate service."""
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


logger = logging.getLogger(__name__)


DEFAULT_ATTRIBUTION_BASE_URL = "https://gcdsdk.appsflyer.com/install_data/v4.0"


class GateSettings(BaseModel):
    """Gate configuration; see ``from_env()`` for the variable names."""

    db_path: Path = Field(Path("data/gate.db"), description="SQLite state file")
    redis_url: Optional[str] = Field(
        None, description="Use Redis persistence instead of SQLite when set"
    )
    redis_prefix: str = "gate:state"

    liveness_url: str = Field(..., description="JSON document holding the liveness URL")
    attribution_base_url: str = DEFAULT_ATTRIBUTION_BASE_URL
    app_id: str = Field(..., description="Store application id")
    dev_key: str = Field(..., description="Attribution provider dev key")
    decision_url: str = Field(..., description="Decision endpoint")

    device_id: str = Field(..., description="Attribution provider device identifier")
    bundle_id: str = ""
    project_id: Optional[str] = None
    platform: str = "iOS"
    locale: str = "EN"
    user_agent: str = ""

    probe_url: str = "https://clients3.google.com/generate_204"
    probe_interval: float = 5.0
    boot_timeout: float = 30.0
    merge_window: float = 2.5
    attribution_delay: float = 5.0

    api_key: Optional[str] = Field(None, description="Required X-GATE-API-KEY value")

    @field_validator("liveness_url", "decision_url", "app_id", "dev_key", "device_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("locale")
    @classmethod
    def _two_letter_locale(cls, value: str) -> str:
        return (value or "EN")[:2].upper()

    @classmethod
    def from_env(cls) -> "GateSettings":
        """Build settings from GATE_* environment variables.

        Raises:
            ValueError: If a required variable is missing or blank
        """
        settings = cls(
            db_path=Path(os.getenv("GATE_DB_PATH", "data/gate.db")),
            redis_url=os.getenv("REDIS_URL") or None,
            redis_prefix=os.getenv("GATE_REDIS_PREFIX", "gate:state"),
            liveness_url=os.getenv("GATE_LIVENESS_URL", ""),
            attribution_base_url=os.getenv(
                "GATE_ATTRIBUTION_BASE_URL", DEFAULT_ATTRIBUTION_BASE_URL
            ),
            app_id=os.getenv("GATE_APP_ID", ""),
            dev_key=os.getenv("GATE_DEV_KEY", ""),
            decision_url=os.getenv("GATE_DECISION_URL", ""),
            device_id=os.getenv("GATE_DEVICE_ID", ""),
            bundle_id=os.getenv("GATE_BUNDLE_ID", ""),
            project_id=os.getenv("GATE_PROJECT_ID") or None,
            platform=os.getenv("GATE_PLATFORM", "iOS"),
            locale=os.getenv("GATE_LOCALE", "EN"),
            user_agent=os.getenv("GATE_USER_AGENT", ""),
            probe_url=os.getenv(
                "GATE_PROBE_URL", "https://clients3.google.com/generate_204"
            ),
            probe_interval=float(os.getenv("GATE_PROBE_INTERVAL", "5")),
            boot_timeout=float(os.getenv("GATE_BOOT_TIMEOUT", "30")),
            merge_window=float(os.getenv("GATE_MERGE_WINDOW", "2.5")),
            attribution_delay=float(os.getenv("GATE_ATTRIBUTION_DELAY", "5")),
            api_key=os.getenv("GATE_API_KEY") or None,
        )
        logger.info(
            "Gate settings loaded: app_id=%s, persistence=%s",
            settings.app_id,
            "redis" if settings.redis_url else settings.db_path,
        )
        return settings
