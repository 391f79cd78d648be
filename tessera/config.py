"""
Config system - typed store configuration with layered loading.

Merge precedence (later overrides earlier):
    defaults < JSON config file < .env file < environment < overrides
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values

from .faults.domains import ConfigInvalidFault

logger = logging.getLogger("tessera.config")

__all__ = ["StoreConfig", "ConfigLoader"]


_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


@dataclass
class StoreConfig:
    """
    Options applied when a store opens its SQLite connection.

    Attributes:
        journal_mode: SQLite journal mode (``PRAGMA journal_mode``)
        foreign_keys: Enforce foreign keys (``PRAGMA foreign_keys``)
        busy_timeout_ms: Lock wait before SQLite reports SQLITE_BUSY
        connect_retries: Connection attempts before giving up
        connect_retry_delay: Seconds between connection attempts
        primary_key_chunk_size: Max keys bound in one ``IN (...)`` clause
    """

    journal_mode: str = "WAL"
    foreign_keys: bool = True
    busy_timeout_ms: int = 5000
    connect_retries: int = 3
    connect_retry_delay: float = 0.5
    primary_key_chunk_size: int = 500

    def __post_init__(self) -> None:
        self.journal_mode = str(self.journal_mode).upper()
        if self.journal_mode not in _JOURNAL_MODES:
            raise ConfigInvalidFault(
                "journal_mode",
                f"must be one of {sorted(_JOURNAL_MODES)}, got {self.journal_mode!r}",
            )
        if self.connect_retries < 1:
            raise ConfigInvalidFault("connect_retries", "must be at least 1")
        # SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999
        if not 1 <= self.primary_key_chunk_size <= 999:
            raise ConfigInvalidFault("primary_key_chunk_size", "must be between 1 and 999")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigLoader:
    """
    Loads and merges store configuration from multiple sources.

    Usage:
        config = ConfigLoader.load(env_file=".env")
        store = await open_store("app.db", build_schema, config=config)
    """

    def __init__(self, env_prefix: str = "TESSERA_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        env_prefix: str = "TESSERA_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> StoreConfig:
        """
        Build a StoreConfig from all configured sources.

        Args:
            path: Optional JSON file with store options
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)

        Raises:
            ConfigInvalidFault: Unknown key or invalid value
        """
        loader = cls(env_prefix=env_prefix)

        if path:
            loader._load_json_file(Path(path))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader.config_data.update(overrides)

        return loader.build()

    def build(self) -> StoreConfig:
        known = {f.name for f in fields(StoreConfig)}
        unknown = set(self.config_data) - known
        if unknown:
            key = sorted(unknown)[0]
            raise ConfigInvalidFault(key, f"unknown option (known: {sorted(known)})")
        try:
            return StoreConfig(**self.config_data)
        except (TypeError, ValueError) as exc:
            raise ConfigInvalidFault("<store>", str(exc)) from exc

    def _load_json_file(self, path: Path) -> None:
        """Load config from JSON file."""
        if not path.exists():
            logger.debug(f"Config file {path} not found, skipping")
            return
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigInvalidFault(str(path), "top-level JSON value must be an object")
        self.config_data.update(data)

    def _load_env_file(self, path: str) -> None:
        """Load config from .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return
        for key, value in dotenv_values(env_path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set(key, value)

    def _load_from_env(self) -> None:
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set(key, value)

    def _set(self, key: str, value: str) -> None:
        """TESSERA_BUSY_TIMEOUT_MS=100 -> {"busy_timeout_ms": 100}"""
        name = key[len(self.env_prefix):].lower()
        self.config_data[name] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value
