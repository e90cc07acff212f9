from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .models import DEFAULT_REMOTE_BASE

CACHE_DIR_NAME = "_nghx_cache"
BUILD_FAILURE_POLICIES = ("fatal", "continue")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def default_cache_root(
    platform: str = sys.platform,
    environ: Mapping[str, str] = os.environ,
    home: Optional[Path] = None,
) -> Path:
    """Return the conventional per-user cache location for this platform."""

    home = home if home is not None else Path.home()
    if platform == "win32":
        local_app_data = environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / CACHE_DIR_NAME
        return home / "AppData" / "Roaming" / CACHE_DIR_NAME
    if platform == "darwin":
        return home / "Library" / "Caches" / CACHE_DIR_NAME
    xdg_cache_home = environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        return Path(xdg_cache_home) / CACHE_DIR_NAME
    return home / ".cache" / CACHE_DIR_NAME


def default_config_path(environ: Mapping[str, str] = os.environ) -> Path:
    explicit = environ.get("NGHX_CONFIG")
    if explicit:
        return Path(explicit)
    base = environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "nghx" / "config.yaml"


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return number


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at start-up and passed explicitly."""

    cache_root: Path = field(default_factory=default_cache_root)
    freshness_window_s: float = 60.0
    remote_base: str = DEFAULT_REMOTE_BASE
    build_failure: str = "fatal"
    log_level: str = "INFO"
    json_logs: bool = False
    lock: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "cache_root", Path(self.cache_root).expanduser())
        if self.build_failure not in BUILD_FAILURE_POLICIES:
            raise ConfigError(
                f"build_failure must be one of {', '.join(BUILD_FAILURE_POLICIES)}, got {self.build_failure!r}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        values: Dict[str, Any] = {}
        if data.get("cache_root"):
            values["cache_root"] = Path(str(data["cache_root"]))
        if data.get("freshness_window_s") is not None:
            values["freshness_window_s"] = _as_float("freshness_window_s", data["freshness_window_s"])
        if data.get("remote_base"):
            values["remote_base"] = str(data["remote_base"])
        if data.get("build_failure"):
            values["build_failure"] = str(data["build_failure"]).lower()
        if data.get("log_level"):
            values["log_level"] = str(data["log_level"]).upper()
        if data.get("json_logs") is not None:
            values["json_logs"] = _as_bool("json_logs", data["json_logs"])
        if data.get("lock") is not None:
            values["lock"] = _as_bool("lock", data["lock"])
        return cls(**values)

    def override(self, **changes: Any) -> "Settings":
        """Return a copy with every non-None change applied."""

        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied) if applied else self


_ENV_KEYS = {
    "NGHX_CACHE_DIR": "cache_root",
    "NGHX_FRESHNESS_WINDOW": "freshness_window_s",
    "NGHX_REMOTE_BASE": "remote_base",
    "NGHX_BUILD_FAILURE": "build_failure",
    "NGHX_LOG_LEVEL": "log_level",
    "NGHX_JSON_LOGS": "json_logs",
    "NGHX_LOCK": "lock",
}


def _load_config_file(path: Path) -> Dict[str, Any]:
    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse configuration file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return raw_data


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] = os.environ,
) -> Settings:
    """Merge the YAML config file and ``NGHX_*`` environment variables into Settings.

    An explicitly requested config file must exist; the default location is optional.
    """

    data: Dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Configuration file does not exist: {path}")
        data.update(_load_config_file(path))
    else:
        path = default_config_path(environ)
        if path.exists():
            data.update(_load_config_file(path))

    for env_name, key in _ENV_KEYS.items():
        if env_name in environ:
            data[key] = environ[env_name]

    if not data.get("cache_root"):
        data["cache_root"] = default_cache_root(environ=environ)
    return Settings.from_dict(data)
