"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

DEFAULT_USD_LADDER = [
    500.0,
    1_000.0,
    10_000.0,
    100_000.0,
    1_000_000.0,
    10_000_000.0,
    50_000_000.0,
    100_000_000.0,
]


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    env: Literal["dev", "prod"] = Field(default="dev", description="Environment")

    # Jupiter endpoints
    jupiter_base: str = Field(
        default="https://api.jup.ag/swap/v1", description="Jupiter swap API base URL"
    )
    jupiter_api_key: str | None = Field(default=None, description="Jupiter API key")
    token_list_urls: list[str] = Field(
        default_factory=lambda: [
            "https://token.jup.ag/all",
            "https://token.jup.ag/strict",
            "https://api.jup.ag/tokens/v1/all",
        ],
        description="Token list endpoints, tried in order",
    )
    token_cache_ttl_s: int = Field(default=3600, description="Token list cache TTL")

    # Request pacing and retry
    min_quote_interval_ms: int = Field(
        default=100, ge=0, description="Minimum gap between quote requests"
    )
    large_amount_delay_ms: int = Field(
        default=100, ge=0, description="Extra delay before $1M+ probes"
    )
    rate_limit_retry_delay_s: float = Field(
        default=1.0, ge=0.0, description="Base backoff delay after a 429"
    )
    rate_limit_max_delay_s: float = Field(
        default=30.0, ge=0.0, description="Backoff delay cap"
    )
    max_rate_limit_retries: int = Field(
        default=3, ge=0, description="Retries after 429/transport failures"
    )
    reverse_probe_retries: int = Field(
        default=1, ge=0, description="Retries for the reverse baseline quote"
    )
    baseline_retries: int = Field(
        default=2, ge=0, description="Retries for each baseline trial"
    )
    request_timeout_s: float = Field(
        default=15.0, gt=0.0, description="Per-request timeout"
    )

    # Depth calculation
    usd_ladder: list[float] = Field(
        default_factory=lambda: list(DEFAULT_USD_LADDER),
        description="USD trade sizes to probe",
    )
    max_calculation_time_s: float = Field(
        default=120.0, gt=0.0, description="Wall-clock budget per calculation"
    )
    default_slippage_bps: int = Field(
        default=50, ge=0, description="Slippage for sub-$1M probes"
    )
    reverse_probe_usd: float = Field(
        default=100.0, gt=0.0, description="Reverse-direction baseline probe size"
    )
    baseline_trial_usd: list[float] = Field(
        default_factory=lambda: [100.0, 50.0, 10.0],
        description="Baseline trial sizes, largest first",
    )
    max_search_probes: int = Field(
        default=24, ge=1, description="Network probes per max-liquidity search"
    )
    overflow_shrink_factor: float = Field(
        default=0.85, gt=0.0, lt=1.0, description="Shrink ratio after overflow"
    )
    overflow_shrink_steps: int = Field(
        default=12, ge=1, description="Shrink attempts after overflow"
    )
    point_match_tolerance_pct: float = Field(
        default=0.5, ge=0.0, description="Points closer than this are duplicates"
    )

    # Snapshot storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./liqdepth.sqlite",
        description="Database connection URL",
    )
    snapshot_retention_hours: int = Field(
        default=168, ge=1, description="Snapshot history retention"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("usd_ladder", "baseline_trial_usd")
    @classmethod
    def _positive_sizes(cls, value: list[float]) -> list[float]:
        if any(size <= 0 for size in value):
            raise ValueError("USD sizes must be positive")
        return value

    @property
    def database_path(self) -> str:
        return self.database_url.replace("sqlite+aiosqlite:///", "")


def load_settings(profile: str, yaml_path: str) -> AppSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, prod)
        yaml_path: Path to YAML configuration file

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in ["dev", "prod"]:
        raise ValueError(f"Invalid profile: {profile}. Must be one of: dev, prod")

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError("Invalid YAML configuration: expected a mapping")

        yaml_config["env"] = profile

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = AppSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            jupiter_base=settings.jupiter_base,
            api_key_configured=settings.jupiter_api_key is not None,
            ladder_size=len(settings.usd_ladder),
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
