"""Pulse configuration management using pydantic-settings."""

import json
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env from project root so LINEAR_API_KEY (and friends) are available
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class GeneralSettings(BaseSettings):
    db_url: str = Field(default="postgresql+asyncpg://localhost/pulse")
    log_level: str = "INFO"


class LinearSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LINEAR_")
    api_key: str = ""
    api_url: str = "https://api.linear.app/graphql"
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    page_size: int = 100
    max_pages: int = 100
    full_data_batch_size: int = 10


class SyncSettings(BaseSettings):
    interval_minutes: int = 10
    min_sync_interval_seconds: int = 60
    min_project_sync_interval_seconds: int = 15
    project_concurrency: int = 5
    limit_sync: bool = False
    recent_window_days: float = 14
    deep_history_days: float = 365
    completed_project_months: int = 6
    # Comma-separated team keys / assignee names
    ignored_team_keys: str = ""
    whitelist_team_keys: str = ""
    ignored_assignee_names: str = ""

    @property
    def ignored_teams(self) -> list[str]:
        return _split_csv(self.ignored_team_keys)

    @property
    def whitelist_teams(self) -> list[str]:
        return _split_csv(self.whitelist_team_keys)

    @property
    def ignored_assignees(self) -> list[str]:
        return _split_csv(self.ignored_assignee_names)

    @property
    def project_limit(self) -> Optional[int]:
        """Cap on projects per phase while limit mode is on."""
        return 10 if self.limit_sync else None


class ThresholdSettings(BaseSettings):
    """Thresholds shared by the violation detector and the pillars."""

    wip_limit: int = 6
    multi_project_limit: int = 1
    wip_age_days: int = 14
    stale_update_days: int = 7
    comment_business_days: int = 3
    at_risk_days: int = 14
    off_track_days: int = 28
    date_discrepancy_days: int = 30
    quality_period_days: int = 14
    quality_bug_threshold: float = 8.0
    quality_net_threshold: float = 0.5
    quality_age_threshold_days: float = 200.0


class MappingSettings(BaseSettings):
    """Engineer→team and team→domain mappings.

    engineer_team_mapping is "name:TEAM,name:TEAM"; team_domain_mappings is
    a JSON object of team key to domain name.
    """

    engineer_team_mapping: str = ""
    team_domain_mappings: str = ""

    @property
    def engineer_teams(self) -> dict[str, str]:
        pairs = {}
        for pair in _split_csv(self.engineer_team_mapping):
            name, _, team = pair.partition(":")
            if name.strip():
                pairs[name.strip().lower()] = team.strip()
        return pairs

    @property
    def team_domains(self) -> dict[str, str]:
        if not self.team_domain_mappings:
            return {}
        try:
            return json.loads(self.team_domain_mappings)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring malformed team_domain_mappings, no domains will be reported: %s", e)
            return {}


class GetDXSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GETDX_")
    api_key: str = ""
    pr_throughput_feed_token: str = ""
    base_url: str = "https://api.getdx.com"
    throughput_per_ic_target: float = 6.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.pr_throughput_feed_token)


class MetricsSettings(BaseSettings):
    capture_after_sync: bool = True
    trend_limit: int = 30


class Settings(BaseSettings):
    """Top-level settings assembled from subsections."""

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    linear: LinearSettings = Field(default_factory=LinearSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)
    mappings: MappingSettings = Field(default_factory=MappingSettings)
    getdx: GetDXSettings = Field(default_factory=GetDXSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from TOML config file, falling back to defaults."""
        if config_path is None:
            config_path = Path.home() / ".config/pulse/config.toml"

        if config_path.exists():
            import toml

            data = toml.load(config_path)
            return cls(
                general=GeneralSettings(**data.get("general", {})),
                linear=LinearSettings(**data.get("linear", {})),
                sync=SyncSettings(**data.get("sync", {})),
                thresholds=ThresholdSettings(**data.get("thresholds", {})),
                mappings=MappingSettings(**data.get("mappings", {})),
                getdx=GetDXSettings(**data.get("getdx", {})),
                metrics=MetricsSettings(**data.get("metrics", {})),
            )

        return cls()


# Module-level singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
