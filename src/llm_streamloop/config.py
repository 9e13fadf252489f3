"""Configuration for llm-streamloop.

Config discovery (first match wins):
  1. explicit path passed to ``load_config``
  2. ``./llm_streamloop.yaml``
  3. ``~/.config/llm-streamloop/config.yaml``
  4. Built-in defaults

Example::

    profile: local
    profiles:
      local:
        url: http://localhost:11434/v1
        default_model: qwen3-8b
    retry:
      max_retries: 3
      initial_delay_ms: 500
    turns: 8
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from llm_streamloop.errors import ConfigError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProfileSpec:
    """A named provider profile."""

    provider: str = "openai"
    url: str = "http://localhost:11434/v1"
    api_key: str = "no-key"
    default_model: str = "qwen3-8b"
    timeout: float = 120
    extra_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrySpec:
    """Retry settings; defaults mean "do not retry"."""

    max_retries: int = 0
    initial_delay_ms: int = 0
    max_delay_ms: int = 32000
    backoff_factor: float = 2.0


@dataclass
class EngineConfig:
    """Top-level config."""

    # Active profile name
    profile: str = "local"

    # Named profiles
    profiles: dict[str, ProfileSpec] = field(
        default_factory=lambda: {"local": ProfileSpec()}
    )

    retry: RetrySpec = field(default_factory=RetrySpec)

    # Loop defaults
    turns: int = 1
    discover_tools: bool = False

    @property
    def active_profile(self) -> ProfileSpec:
        return self.profiles.get(self.profile, ProfileSpec())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./llm_streamloop.yaml"),
    Path.home() / ".config" / "llm-streamloop" / "config.yaml",
]


def _parse_profile(raw: dict[str, Any]) -> ProfileSpec:
    defaults = ProfileSpec()
    return ProfileSpec(
        provider=raw.get("provider", defaults.provider),
        url=raw.get("url", defaults.url),
        api_key=raw.get("api_key", defaults.api_key),
        default_model=raw.get("default_model", defaults.default_model),
        timeout=raw.get("timeout", defaults.timeout),
        extra_params=raw.get("extra_params", {}),
    )


def _parse_retry(raw: dict[str, Any] | None) -> RetrySpec:
    if not raw:
        return RetrySpec()
    values = {
        k: v for k, v in raw.items()
        if v is not None and k in RetrySpec.__dataclass_fields__
    }
    return RetrySpec(**values)


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    EngineConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return EngineConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return EngineConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a mapping: {config_path}")

    profiles: dict[str, ProfileSpec] = {}
    for name, praw in (raw.get("profiles") or {}).items():
        profiles[name] = _parse_profile(praw or {})
    if not profiles:
        profiles["local"] = ProfileSpec()

    turns = raw.get("turns", 1)
    if not isinstance(turns, int) or turns < 1:
        raise ConfigError(f"turns must be a positive integer, got {turns!r}")

    return EngineConfig(
        profile=raw.get("profile", "local"),
        profiles=profiles,
        retry=_parse_retry(raw.get("retry")),
        turns=turns,
        discover_tools=bool(raw.get("discover_tools", False)),
    )
