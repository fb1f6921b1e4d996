"""
Configuration management for SBExplorer.

Handles loading, validation, and access to configuration settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

logger = logging.getLogger(__name__)


DEFAULT_STATE_DIR = Path.home() / ".sbexplorer"


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FallbackPath(str, Enum):
    """Ways to remove a dead-letter copy when no lock handle is available."""
    REST = "rest"
    RECEIVE_AND_DELETE = "receive_and_delete"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "text"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'sbexplorer.servicebus.locator': 'DEBUG'}"
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 7080


class BrokerConfig(BaseModel):
    """Bounds and policies for broker operations."""
    default_suffix: str = Field(
        default=".servicebus.windows.net",
        description="Suffix appended to bare namespace names"
    )
    aad_scope: str = "https://servicebus.azure.net/.default"
    sas_validity_seconds: int = Field(default=3600, ge=60)

    peek_batch_size: int = Field(default=100, ge=1, le=100)
    peek_timeout_seconds: float = Field(default=30.0, gt=0)
    receive_batch_size: int = Field(default=100, ge=1)
    receive_wait_seconds: float = Field(default=10.0, gt=0)
    purge_wait_seconds: float = Field(default=5.0, gt=0)
    delete_scan_cap: int = Field(default=1000, ge=1)
    delete_wait_seconds: float = Field(default=5.0, gt=0)
    rest_scan_cap: int = Field(default=100, ge=1)
    rest_timeout_seconds: float = Field(default=30.0, gt=0)

    fallback_paths: List[FallbackPath] = Field(
        default_factory=lambda: [FallbackPath.REST, FallbackPath.RECEIVE_AND_DELETE],
        description="Order in which source-removal paths are tried after a peek-only locate"
    )

    @field_validator("default_suffix")
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        """Suffix must start with a dot."""
        if not v.startswith("."):
            raise ValueError("default_suffix must start with '.'")
        return v.lower()


class SecretsConfig(BaseModel):
    """Namespace credential storage."""
    store_path: str = str(DEFAULT_STATE_DIR / "namespaces.enc")
    key_path: str = str(DEFAULT_STATE_DIR / "namespaces.key")


class ExplorerConfig(BaseModel):
    """Main SBExplorer configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    server: ServerConfig = Field(default_factory=ServerConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    broker: BrokerConfig = Field(default_factory=BrokerConfig)

    secrets: SecretsConfig = Field(default_factory=SecretsConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages SBExplorer configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (SBEXPLORER_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[ExplorerConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> ExplorerConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Dictionary of CLI argument overrides

        Returns:
            Validated ExplorerConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.debug("Loading SBExplorer configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.debug(f"Applied {len(cli_overrides)} CLI argument overrides")

        try:
            self._config = ExplorerConfig(**config_dict)
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        if host := os.getenv("SBEXPLORER_HOST"):
            config.setdefault("server", {})["host"] = host
        if port := os.getenv("SBEXPLORER_PORT"):
            config.setdefault("server", {})["port"] = int(port)

        if log_level := os.getenv("SBEXPLORER_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("SBEXPLORER_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        if wait := os.getenv("SBEXPLORER_RECEIVE_WAIT_SECONDS"):
            config.setdefault("broker", {})["receive_wait_seconds"] = float(wait)
        if cap := os.getenv("SBEXPLORER_DELETE_SCAN_CAP"):
            config.setdefault("broker", {})["delete_scan_cap"] = int(cap)
        if paths := os.getenv("SBEXPLORER_FALLBACK_PATHS"):
            config.setdefault("broker", {})["fallback_paths"] = [
                p.strip() for p in paths.split(",") if p.strip()
            ]

        if store_path := os.getenv("SBEXPLORER_SECRET_STORE"):
            config.setdefault("secrets", {})["store_path"] = store_path
        if key_path := os.getenv("SBEXPLORER_SECRET_KEY_FILE"):
            config.setdefault("secrets", {})["key_path"] = key_path

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _log_configuration(self) -> None:
        """Log the loaded configuration."""
        if not self._config:
            return

        config_dict = self._config.model_dump()
        logger.debug(f"Active configuration: {json.dumps(config_dict, indent=2)}")

    def get_config(self) -> ExplorerConfig:
        """
        Get the loaded configuration.

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> ExplorerConfig:
        """Reload configuration from the same sources."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
