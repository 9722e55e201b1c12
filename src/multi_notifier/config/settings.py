"""Notifier settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``MULTINOTIFY_``, nested via ``__``)
2. YAML config file (``--config path`` or ``MULTINOTIFY_CONFIG_PATH`` env var)
3. Defaults defined here

The YAML layout of the original Gotify plugin (``client_token``,
``host_server``, ``web_hooks`` and a per-hook ``header``) is accepted as
well as the current field names.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from multi_notifier.errors.notifier_errors import ConfigurationError
from multi_notifier.notifier.targets import Configuration, Target

DEFAULT_SERVER_ADDRESS = "ws://localhost"

# Legacy and camelCase keys -> field names
_KEY_ALIASES = {
    "client_token": "token",
    "host_server": "server_address",
    "serverAddress": "server_address",
    "web_hooks": "targets",
    "webhooks": "targets",
}


class LogLevel(enum.StrEnum):
    """Logging verbosity for the CLI runner."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class WebhookConfig(BaseModel):
    """One webhook target as written by the operator.

    Empty fields stay empty here; defaults are filled by :meth:`resolve`.
    """

    url: str = ""
    method: str = ""
    body: str = ""
    headers: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_header_key(cls, values: Any) -> Any:
        """Accept the singular ``header`` key of the original layout."""
        if isinstance(values, dict) and "header" in values and "headers" not in values:
            values = dict(values)
            values["headers"] = values.pop("header")
        if isinstance(values, dict) and values.get("headers") is None:
            values = {**values, "headers": {}}
        return values

    def resolve(self) -> Target:
        """Return the fully-populated, immutable ``Target``."""
        return Target.resolve(self.url, self.method, self.body, self.headers)


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="MULTINOTIFY_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = False
    port: int = 9090


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


def _normalize_keys(values: dict[str, Any]) -> dict[str, Any]:
    """Rename legacy keys; an explicit current name wins over its alias."""
    out = dict(values)
    for alias, name in _KEY_ALIASES.items():
        if alias in out:
            value = out.pop(alias)
            out.setdefault(name, value)
    return out


class NotifierConfig(BaseSettings):
    """Top-level notifier configuration.

    Loads settings from environment variables (``MULTINOTIFY_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="MULTINOTIFY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    token: str = ""
    server_address: str = DEFAULT_SERVER_ADDRESS
    targets: list[WebhookConfig] = Field(default_factory=list)

    heartbeat_interval: float = Field(default=1.0, gt=0)
    close_timeout: float = Field(default=1.0, gt=0)
    request_timeout: float | None = Field(
        default=None,
        description="Per-webhook request timeout in seconds; unset waits forever",
    )
    concurrent_dispatch: bool = False
    separate_preflight: bool = Field(
        default=False,
        description="Dial a throwaway connection before opening the session",
    )

    log_level: LogLevel = LogLevel.INFO
    config_path: str = ""

    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        values = _normalize_keys(values)
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _normalize_keys(_load_yaml(config_path))
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``NotifierConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

    def resolve(self) -> Configuration:
        """Freeze this config into the ``Configuration`` used by one session.

        Raises:
            ConfigurationError: If the server address, token or any target
                url is missing.
        """
        return Configuration.build(
            token=self.token,
            server_address=self.server_address,
            targets=[target.resolve() for target in self.targets],
            heartbeat_interval=self.heartbeat_interval,
            close_timeout=self.close_timeout,
            request_timeout=self.request_timeout,
            concurrent_dispatch=self.concurrent_dispatch,
            separate_preflight=self.separate_preflight,
        )


def load_config(data: NotifierConfig | dict[str, Any] | None = None) -> NotifierConfig:
    """Validate host-provided configuration data.

    Raises:
        ConfigurationError: If *data* does not match the schema.
    """
    if isinstance(data, NotifierConfig):
        return data
    try:
        return NotifierConfig(**(data or {}))
    except ValueError as exc:
        msg = f"invalid configuration: {exc}"
        raise ConfigurationError(msg) from exc
