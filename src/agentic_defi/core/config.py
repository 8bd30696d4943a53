"""Configuration management.

Settings come from an optional TOML file, then ``DEFI_``-prefixed
environment variables (``DEFI_QUOTE_SERVICE__BASE_URL``), then explicit
overrides.  pydantic-settings validates the result.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

def _default_chain_names() -> dict[int, str]:
    return {
        1: "ethereum",
        8453: "base",
        42161: "arbitrum",
        10: "optimism",
        137: "polygon",
    }


class QuoteServiceConfig(BaseModel):
    base_url: str = "http://localhost:8000"
    timeout_seconds: float = 15.0


class ExecutionConfig(BaseModel):
    default_chain_id: int = 1
    default_slippage_bps: int = 50
    fallback_chain_name: str = "ethereum"
    chain_names: dict[int, str] = Field(default_factory=_default_chain_names)

    def chain_name(self, chain_id: int | None) -> str:
        """Map a chain ID to the name the quote service expects."""
        return self.chain_names.get(
            chain_id or self.default_chain_id, self.fallback_chain_name
        )


class PolicyConfig(BaseModel):
    risk_policy_dir: str | None = None  # JSON file per wallet; memory only when unset


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    quote_service: QuoteServiceConfig = Field(default_factory=QuoteServiceConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "DEFI_", "env_nested_delimiter": "__"}


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    A missing file falls back to defaults.  Overrides are merged section
    by section, so ``{"execution": {"default_chain_id": 8453}}`` keeps
    the file's other execution keys.

    Raises:
        ConfigError: The file is not valid TOML.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            try:
                with open(path, "rb") as f:
                    data = tomli.load(f)
            except tomli.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid config file {path}: {exc}") from exc
        else:
            logger.warning("Config file %s not found; using defaults", path)

    if overrides:
        data = _merge(data, overrides)

    return Settings(**data)
