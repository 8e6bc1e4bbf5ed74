"""
Offer Settings Module
=====================

Tunable parameters of the offer pipeline, loaded from a YAML file.
Every value has a default so the pipeline runs without a config file.

Example config/offers.yaml:

    fetch:
      user_agent: "WineOffers-PriceCheck/0.1"
      timeout_ms: 10000
      max_retries: 3
    match:
      default_threshold: 0.35
      producer_weight: 0.35
      wine_name_weight: 0.45
    refresh:
      max_candidates_per_source: 12
      search_delay_ms: 300
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_USER_AGENT = "WineOffers-PriceCheck/0.1"


@dataclass
class FetchConfig:
    """HTTP client settings."""

    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    timeout_ms: int = 10_000
    max_retries: int = 3
    cache_ttl_ms: int = 5 * 60 * 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FetchConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            accept_language=data.get("accept_language", "en-US,en;q=0.9"),
            timeout_ms=int(data.get("timeout_ms", 10_000)),
            max_retries=int(data.get("max_retries", 3)),
            cache_ttl_ms=int(data.get("cache_ttl_ms", 5 * 60 * 1000)),
        )


@dataclass
class MatchConfig:
    """Match scoring settings. Per-source config can override these."""

    default_threshold: float = 0.35
    producer_weight: float = 0.35
    wine_name_weight: float = 0.45
    label_threshold: float = 0.5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MatchConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            default_threshold=float(data.get("default_threshold", 0.35)),
            producer_weight=float(data.get("producer_weight", 0.35)),
            wine_name_weight=float(data.get("wine_name_weight", 0.45)),
            label_threshold=float(data.get("label_threshold", 0.5)),
        )


@dataclass
class RefreshConfig:
    """Orchestration and adapter settings."""

    max_candidates_per_source: int = 12
    stop_after_first_match: bool = True
    search_delay_ms: int = 300
    sitemap_cache_ttl_ms: int = 60 * 60 * 1000
    default_currency: str = "SEK"
    batch_cron_hour: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RefreshConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            max_candidates_per_source=int(data.get("max_candidates_per_source", 12)),
            stop_after_first_match=bool(data.get("stop_after_first_match", True)),
            search_delay_ms=int(data.get("search_delay_ms", 300)),
            sitemap_cache_ttl_ms=int(data.get("sitemap_cache_ttl_ms", 60 * 60 * 1000)),
            default_currency=str(data.get("default_currency", "SEK")),
            batch_cron_hour=int(data.get("batch_cron_hour", 3)),
        )


@dataclass
class OffersConfig:
    """Top-level settings for the offer pipeline."""

    fetch: FetchConfig = field(default_factory=FetchConfig)
    match: MatchConfig = field(default_factory=MatchConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OffersConfig:
        """Create from dictionary."""
        data = data or {}
        return cls(
            fetch=FetchConfig.from_dict(data.get("fetch")),
            match=MatchConfig.from_dict(data.get("match")),
            refresh=RefreshConfig.from_dict(data.get("refresh")),
        )


def load_config(config_path: Path | str) -> OffersConfig:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to the offers.yaml file

    Returns:
        Parsed OffersConfig
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    config = OffersConfig.from_dict(data)
    config.config_path = config_path
    return config


# Global settings instance
_default_config: OffersConfig | None = None


def get_default_config() -> OffersConfig:
    """
    Get the default settings instance.

    Loads from the path in the OFFERS_CONFIG_PATH environment variable,
    or config/offers.yaml at the project root, or falls back to defaults.
    """
    global _default_config

    if _default_config is None:
        env_path = os.environ.get("OFFERS_CONFIG_PATH")
        if env_path:
            path = Path(env_path)
        else:
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "offers.yaml"

        _default_config = load_config(path) if path.exists() else OffersConfig()

    return _default_config


def reset_default_config() -> None:
    """Reset the default settings (useful for testing)."""
    global _default_config
    _default_config = None
