"""
Configuration management for the diagnostic collector.

Supports YAML config files with environment variable overrides.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from xcs_diag.exceptions import ConfigurationError

DEFAULT_SERVER_ROOT = "/Library/Developer/XcodeServer"


class LogRootConfig(BaseModel):
    """A log directory copied with an age filter."""

    label: str = Field(..., description="Subdirectory name under logs/ in the bundle")
    path: str = Field(..., description="Source directory to mirror")
    max_age_days: int = Field(default=7, ge=0, description="Maximum file age in whole days")


def _default_log_roots() -> list[LogRootConfig]:
    return [
        LogRootConfig(label="server", path=f"{DEFAULT_SERVER_ROOT}/Logs"),
        LogRootConfig(label="system", path="/var/log", max_age_days=2),
    ]


class CollectorConfig(BaseModel):
    """Configuration for the collection run and its staging area."""

    staging_parent: str | None = Field(
        default=None, description="Parent for the staging directory (None for system temp)"
    )
    output_dir: str = Field(default=".", description="Directory receiving the bundle archive")
    bundle_name: str = Field(default="xcs-diagnostics", description="Bundle name prefix")
    package: bool = Field(default=True, description="Archive the staging root when done")
    keep_staging: bool = Field(default=False, description="Keep the staging directory after packaging")
    log_roots: list[LogRootConfig] = Field(default_factory=_default_log_roots)
    asset_root: str = Field(
        default=f"{DEFAULT_SERVER_ROOT}/IntegrationAssets",
        description="Root of per-bot integration run folders",
    )
    integration_count: int = Field(default=10, description="Runs retained per bot (LastN)")
    all_integrations: bool = Field(default=False, description="Extract assets from every run")

    @field_validator("integration_count")
    @classmethod
    def _check_integration_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("integration_count must be at least 1")
        return value


class StoreConfig(BaseModel):
    """Configuration for the CouchDB-compatible document store."""

    url: str = Field(default="https://127.0.0.1:10355", description="Document store base URL")
    database: str = Field(default="xcs", description="Database name")
    username: str = Field(default="xcscontrol", description="Basic auth user")
    password: str | None = Field(default=None, description="Basic auth password")
    password_file: str | None = Field(default=None, description="File holding the password")
    timeout_seconds: float = Field(default=120.0, description="Request timeout in seconds")
    verify_tls: bool = Field(default=False, description="Verify the server certificate")
    record_limit: int = Field(default=2, ge=1, description="Records exported per bot")
    bots_view: str = Field(default="_design/bot/_view/all")
    records_view: str = Field(default="_design/bot_integrations/_view/by_bot")
    settings_view: str = Field(default="_design/settings/_view/all")
    versions_view: str = Field(default="_design/version/_view/all")
    enabled: bool = Field(default=True, description="Export document store records")

    def resolve_password(self) -> str:
        """Return the configured password, reading password_file if set."""
        if self.password is not None:
            return self.password
        if self.password_file:
            path = Path(self.password_file)
            if not path.exists():
                raise ConfigurationError.missing_file(str(path))
            return path.read_text(encoding="utf-8").strip()
        return ""


class CommandSpec(BaseModel):
    """A diagnostic command whose output is captured into the bundle."""

    name: str = Field(..., description="Output file stem under commands/")
    command: str = Field(..., description="Shell command line")


def _default_commands() -> list[CommandSpec]:
    return [
        CommandSpec(name="sw_vers", command="sw_vers"),
        CommandSpec(name="xcodebuild_version", command="xcodebuild -version"),
        CommandSpec(name="xcode_select", command="xcode-select -p"),
        CommandSpec(name="processes", command="ps auxww"),
        CommandSpec(name="disk_usage", command="df -h"),
        CommandSpec(
            name="server_permissions",
            command=f"ls -leR {DEFAULT_SERVER_ROOT}/Integrations",
        ),
    ]


class CommandsConfig(BaseModel):
    """Configuration for external diagnostic commands."""

    timeout_seconds: float = Field(default=120.0, gt=0, description="Per-command wall clock limit")
    commands: list[CommandSpec] = Field(default_factory=_default_commands)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="plain", description="Console log format (json, plain)")
    log_dir: str = Field(default="logs", description="Directory for JSONL log files")
    error_log_file: str = Field(
        default="xcs-diag-errors.jsonl", description="Persistent error log with tracebacks"
    )


class Config(BaseSettings):
    """Main configuration for the collector."""

    model_config = SettingsConfigDict(
        env_prefix="XCS_DIAG_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment ranks above constructor values, which carry the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file. Environment variables still take precedence."""
        path = Path(path)
        if not path.exists():
            return cls()

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)
        """
        explicit = config_path is not None
        if config_path is None:
            config_path = os.getenv("XCS_DIAG_CONFIG")

        if config_path is None:
            for candidate in [
                "xcs-diag.yaml",
                "xcs-diag.yml",
                "config/xcs-diag.yaml",
                ".xcs-diag.yaml",
            ]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path and Path(config_path).exists():
            return cls.from_yaml(config_path)

        if explicit:
            raise ConfigurationError.missing_file(str(config_path))

        return cls()

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config | None) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
