from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .errors import ConfigError
from .paths import DB_FILENAME, config_home, data_home


CONFIG_VERSION = 1
DEFAULT_CONFIG_NAME = "config.json"
DEFAULT_PAGE_SIZE = 100

_ALLOWED_TOP_LEVEL_KEYS = {"version", "db_path", "verbose", "json_logs", "page_size"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class Config:
    db_path: Path
    verbose: bool = False
    json_logs: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    version: int = CONFIG_VERSION
    path: Optional[Path] = field(default=None, compare=False)

    def as_dict(self) -> dict:
        return {
            "version": self.version,
            "db_path": str(self.db_path),
            "verbose": self.verbose,
            "json_logs": self.json_logs,
            "page_size": self.page_size,
        }


def default_db_path() -> Path:
    return data_home() / DB_FILENAME


def default_config() -> Config:
    return Config(db_path=default_db_path())


def _config_path(explicit: Optional[Path] = None) -> Path:
    env_path = os.environ.get("SNAPASK_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    if explicit:
        return explicit.expanduser()
    return config_home() / DEFAULT_CONFIG_NAME


def _ensure_keys(data: dict, *, allowed: Iterable[str], context: str) -> None:
    unknown = set(data.keys()) - set(allowed)
    if unknown:
        keys = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown {context} key(s): {keys}")


def _parse_bool(value: object, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ConfigError(f"'{key}' must be a boolean, got {value!r}")


def _parse_page_size(value: object) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'page_size' must be a positive integer, got {value!r}")
    try:
        size = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"'page_size' must be a positive integer, got {value!r}") from None
    if size < 1:
        raise ConfigError(f"'page_size' must be a positive integer, got {value!r}")
    return size


def _parse_config(raw: dict, *, path: Path) -> Config:
    _ensure_keys(raw, allowed=_ALLOWED_TOP_LEVEL_KEYS, context="config")
    version = raw.get("version", CONFIG_VERSION)
    if version != CONFIG_VERSION:
        raise ConfigError(f"Unsupported config version {version!r} (expected {CONFIG_VERSION})")
    db_path = raw.get("db_path")
    if db_path is not None and (not isinstance(db_path, str) or not db_path.strip()):
        raise ConfigError("'db_path' must be a non-empty string")
    return Config(
        db_path=Path(db_path).expanduser() if db_path else default_db_path(),
        verbose=_parse_bool(raw.get("verbose", False), key="verbose"),
        json_logs=_parse_bool(raw.get("json_logs", False), key="json_logs"),
        page_size=_parse_page_size(raw.get("page_size", DEFAULT_PAGE_SIZE)),
        version=version,
        path=path,
    )


def _apply_env(config: Config) -> Config:
    db_path = os.environ.get("SNAPASK_DB_PATH")
    if db_path:
        config.db_path = Path(db_path).expanduser()
    verbose = os.environ.get("SNAPASK_VERBOSE")
    if verbose is not None:
        config.verbose = _parse_bool(verbose, key="SNAPASK_VERBOSE")
    json_logs = os.environ.get("SNAPASK_JSON_LOGS")
    if json_logs is not None:
        config.json_logs = _parse_bool(json_logs, key="SNAPASK_JSON_LOGS")
    return config


def load_config(path: Optional[Path] = None) -> Config:
    """Load config from disk, falling back to defaults when the file is absent.

    Environment variables (``SNAPASK_DB_PATH``, ``SNAPASK_VERBOSE``,
    ``SNAPASK_JSON_LOGS``) override file values.
    """
    cfg_path = _config_path(path)
    if not cfg_path.exists():
        config = default_config()
        config.path = cfg_path
        return _apply_env(config)
    try:
        raw = json.loads(cfg_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {cfg_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {cfg_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config root in {cfg_path} must be an object")
    return _apply_env(_parse_config(raw, path=cfg_path))


def write_config(config: Config, path: Optional[Path] = None) -> Path:
    target = _config_path(path or config.path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(config.as_dict(), indent=2), encoding="utf-8")
    return target


__all__ = [
    "CONFIG_VERSION",
    "DEFAULT_PAGE_SIZE",
    "Config",
    "ConfigError",
    "default_config",
    "default_db_path",
    "load_config",
    "write_config",
]
