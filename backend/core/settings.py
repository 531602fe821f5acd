"""
Typed settings
Turns the loaded TOML configuration into validated pydantic sections
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.logger import get_logger

logger = get_logger(__name__)


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore", validate_assignment=True)


class TrackingSettings(_Section):
    capture_interval: float = Field(default=60, gt=0)
    metadata_interval: float = Field(default=5, gt=0)
    auto_confirm_threshold: int = Field(default=85, ge=0, le=100)
    min_entry_duration: float = Field(default=60, ge=0)
    capture_screenshots: bool = True


class DetectorSettings(_Section):
    enable_ocr: bool = True
    enable_image_hash: bool = True
    enable_rule_matching: bool = True
    enable_ai_judgment: bool = True
    image_hash_size: int = Field(default=8, ge=2)
    image_hash_threshold: int = Field(default=5, ge=0)
    ocr_similarity_threshold: float = Field(default=0.8, ge=0, le=1)
    ocr_languages: str = "eng"


class AISettings(_Section):
    api_key: str = ""
    base_url: str = ""
    organization: str = ""
    monthly_budget: float = Field(default=5.0, ge=0)
    max_requests_per_minute: int = Field(default=60, gt=0)
    change_detection_model: str = "gpt-4o-mini"
    project_judgment_model: str = "gpt-4o-mini"


class PrivacySettings(_Section):
    password_detection: bool = True
    exclude_keywords: List[str] = Field(default_factory=list)


class NotificationSettings(_Section):
    max_alerts_per_hour: int = Field(default=3, ge=0)


class NetworkSettings(_Section):
    check_interval: float = Field(default=30, gt=0)
    probe_host: str = "1.1.1.1"
    probe_port: int = 53


class DatabaseSettings(_Section):
    path: str = "~/.local/share/autotracker/autotracker.db"


class Settings(_Section):
    """All configuration sections"""

    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    ai: AISettings = Field(default_factory=AISettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        """Build settings from a loaded config dict; OPENAI_API_KEY overrides the file"""
        settings = cls.model_validate(config)
        env_key = os.environ.get("OPENAI_API_KEY")
        if env_key:
            settings.ai.api_key = env_key
        return settings

    def get_database_path(self) -> Path:
        return Path(self.database.path).expanduser()


_settings: Optional[Settings] = None


def init_settings(config: Dict[str, Any]) -> Settings:
    """Initialise the process-wide settings used by the runtime wiring"""
    global _settings
    _settings = Settings.from_config(config)
    logger.debug("Settings initialized")
    return _settings


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
