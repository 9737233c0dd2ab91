"""Configuration management for the build monitor."""

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from build_monitor.models import Host


DEFAULT_CONFIG_PATH = "config.toml"


class ConfigError(ValueError):
    """Raised when the configuration file is missing or invalid."""


class HostItem(BaseModel):
    """One monitored endpoint."""
    name: str = Field(description="Unique display name, also used as the host id")
    url: str = Field(description="URL polled with GET on every tick")

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("host name must not be empty")
        return value

    @field_validator("url")
    @classmethod
    def _url_is_http(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"host url must start with http:// or https://, got {value!r}")
        return value


class AppConfig(BaseModel):
    """Main configuration for the build monitor."""

    # Polling
    interval: int = Field(default=1000, gt=0, description="Poll interval per host in milliseconds")
    http_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for a single GET")

    # Stability
    stability_window: int = Field(default=5, ge=1, description="Identical consecutive builds required for STABLE")
    enable_bell: bool = Field(default=True, description="Ring the terminal bell on stability changes")

    # Dashboard
    render_interval: int = Field(default=500, gt=0, description="Dashboard redraw interval in milliseconds")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Write logs here instead of stderr")

    hosts: List[HostItem] = Field(default_factory=list, description="Hosts to monitor, in display order")

    @model_validator(mode="after")
    def _unique_host_names(self) -> "AppConfig":
        seen: set[str] = set()
        for host in self.hosts:
            if host.name in seen:
                raise ValueError(f"duplicate host name: {host.name!r}")
            seen.add(host.name)
        return self

    def add_host(self, host: HostItem) -> None:
        if any(h.name == host.name for h in self.hosts):
            raise ConfigError(f"duplicate host name: {host.name!r}")
        self.hosts.append(host)

    def to_hosts(self) -> list[Host]:
        return [Host(id=h.name, url=h.url) for h in self.hosts]


def _read_config_file(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            with open(path, "rb") as f:
                data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config in {path} must be a mapping")
    return data


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load configuration from a TOML or YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("BUILD_MONITOR_CONFIG", DEFAULT_CONFIG_PATH)

    config_data = _read_config_file(Path(config_path))

    # Override with environment variables
    env_overrides = {
        "interval": os.getenv("BUILD_MONITOR_INTERVAL"),
        "stability_window": os.getenv("BUILD_MONITOR_STABILITY_WINDOW"),
        "enable_bell": os.getenv("BUILD_MONITOR_ENABLE_BELL"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key in ["interval", "stability_window"]:
                try:
                    value = int(value)
                except ValueError as e:
                    raise ConfigError(f"environment override for {key} must be an integer, got {value!r}") from e
            elif key in ["enable_bell"]:
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    try:
        return AppConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"invalid config {config_path}:\n{e}") from e
