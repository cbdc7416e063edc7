"""Configuration management for shardstore."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import (
    AnalysisSettings,
    EndpointSettings,
    LoggingSettings,
    NormalizationSettings,
    ShardStoreConfig,
    StoreSettings,
)
from .resolver import flatten_for_env, parse_env_overrides, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.shardstore/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    """\
    # shardstore configuration file
    # Generated automatically; manage via `shardstore config edit` or `shardstore config set`.
    """
)


class ConfigManager:
    """Load and persist configuration data, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> ShardStoreConfig:
        """Load configuration data from disk, applying precedence rules."""
        if ensure_file:
            self.ensure_exists()

        env_data: Mapping[str, str] | None = None
        if include_env:
            env_data = env_overrides if env_overrides is not None else self._env

        return resolve_with_precedence(
            defaults=ShardStoreConfig(),
            file_overrides=self._read_file(),
            env_overrides=parse_env_overrides(env_data) if env_data else None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: ShardStoreConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        if isinstance(config, ShardStoreConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        self._write_file(data)

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        if not self._config_path.exists():
            self._write_file(ShardStoreConfig().model_dump(mode="python"))
        return self._config_path

    def read_text(self) -> str:
        """Return the current configuration file contents."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    def set_value(self, key: str, value: Any) -> ShardStoreConfig:
        """Assign ``value`` at the dotted ``key`` in the file and persist it.

        The file is only rewritten when the merged result validates.

        Raises:
            ConfigError: If the key is empty or the resulting config is invalid.
        """
        segments = [segment.strip() for segment in key.split(".") if segment.strip()]
        if not segments:
            raise ConfigError("Key must be a dotted path such as 'analysis.face.url'.")

        file_data = self._read_file()
        node = file_data
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Cannot assign into non-mapping value at {key}.")
            node = child
        node[segments[-1]] = value

        resolved = resolve_with_precedence(defaults=ShardStoreConfig(), file_overrides=file_data)
        self._write_file(file_data)
        return resolved

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")

        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        serialized = yaml.safe_dump(dict(data), sort_keys=False)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        # Staged beside the target; os.replace swaps it in atomically.
        staging = self._config_path.with_suffix(".yaml.tmp")
        staging.write_text(
            f"{_CONFIG_HEADER}# Last updated: {stamp}\n{serialized}", encoding="utf-8"
        )
        os.replace(staging, self._config_path)


__all__ = [
    "AnalysisSettings",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "EndpointSettings",
    "LoggingSettings",
    "NormalizationSettings",
    "ShardStoreConfig",
    "StoreSettings",
    "flatten_for_env",
    "parse_env_overrides",
    "resolve_with_precedence",
]
