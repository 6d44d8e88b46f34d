"""
Runtime configuration for the CLI and web shells.

Values come from the environment; CLI flags override them field by field via
``ImportSettings.with_overrides``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

ENV_USER = "SETTINGS_IMPORT_USER"
ENV_STORE = "SETTINGS_IMPORT_STORE"
ENV_API_KEY = "SETTINGS_IMPORT_API_KEY"
ENV_MAPPING_CACHE = "SETTINGS_IMPORT_MAPPING_CACHE"
ENV_TIMEOUT = "SETTINGS_IMPORT_TIMEOUT"

DEFAULT_USER = "local"
DEFAULT_STORE = "settings-import-data/records.json"
DEFAULT_MAPPING_CACHE = "settings-import-data/mappings.json"
DEFAULT_TIMEOUT = 30.0


class ConfigError(ValueError):
    """Raised when settings-import configuration cannot be constructed."""


@dataclass(frozen=True)
class ImportSettings:
    user_id: str = DEFAULT_USER
    store: str = DEFAULT_STORE
    api_key: Optional[str] = None
    mapping_cache: str = DEFAULT_MAPPING_CACHE
    timeout_seconds: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ImportSettings":
        env = os.environ if environ is None else environ
        return cls(
            user_id=_parse_text(env.get(ENV_USER), DEFAULT_USER),
            store=_parse_text(env.get(ENV_STORE), DEFAULT_STORE),
            api_key=_parse_text(env.get(ENV_API_KEY), None),
            mapping_cache=_parse_text(env.get(ENV_MAPPING_CACHE), DEFAULT_MAPPING_CACHE),
            timeout_seconds=_parse_timeout(env.get(ENV_TIMEOUT), DEFAULT_TIMEOUT, ENV_TIMEOUT),
        )

    def with_overrides(self, **overrides: Optional[str]) -> "ImportSettings":
        """Apply non-empty overrides, e.g. from argparse."""
        changes = {key: value for key, value in overrides.items() if value}
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return replace(self, **changes)


def _parse_text(raw_value: Optional[str], default: Optional[str]) -> Optional[str]:
    if raw_value is None or raw_value.strip() == "":
        return default
    return raw_value.strip()


def _parse_timeout(raw_value: Optional[str], default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be numeric (received '{raw_value}')") from exc
    if value <= 0:
        raise ConfigError(f"{env_key} must be positive (received '{raw_value}')")
    return value
