"""
project_index_repair.settings

Configuration for the repair tool. Later sources override earlier ones:

1. built-in defaults
2. YAML settings file (PROJECT_INDEX_REPAIR_CONFIG, default ~/.project-index-repair/config.yaml)
3. environment variables
4. CLI flags (applied by the caller)

Environment (optional):
- PROJECT_INDEX_PATH:        index file (default: ~/.claude-config-manager-projects.json)
- PROJECT_INDEX_FLAVOR:      auto | windows | posix | native (default: auto)
- PROJECT_INDEX_IGNORE_CASE: compare paths case-insensitively (default: false)
- PROJECT_INDEX_WATCH:       debug substring reported in diagnostics (default: my-ai-desktop)
- PROJECT_INDEX_BACKUP:      back up the index before rewriting (default: false)
- BACKUP_DIR:                backup directory (default: ~/.project-index-repair/backups)
- LOG_FILE:                  rotating log file (default: ~/.project-index-repair/logs/project_index_repair.log)
- OPS_LOG_FILE:              JSON-lines audit log of rewrites
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping

import yaml

from .paths import DEFAULT_WATCH, FLAVORS, PathPolicy, expand_path, find_env_var_references
from .repair import LOGGER_NAME

# --- Paths & constants ---
DEFAULT_INDEX_FILE = Path.home() / ".claude-config-manager-projects.json"
STATE_DIR = Path.home() / ".project-index-repair"
DEFAULT_CONFIG_FILE = STATE_DIR / "config.yaml"
DEFAULT_BACKUP_DIR = STATE_DIR / "backups"
DEFAULT_LOG_DIR = STATE_DIR / "logs"
DEFAULT_LOG_FILE = DEFAULT_LOG_DIR / "project_index_repair.log"
DEFAULT_OPS_LOG_FILE = DEFAULT_LOG_DIR / "project_index_operations.log"

CONFIG_KEYS = {
    "index_path",
    "flavor",
    "ignore_case",
    "watch",
    "backup",
    "backup_dir",
    "log_file",
    "ops_log_file",
}
PATH_KEYS = {"index_path", "backup_dir", "log_file", "ops_log_file"}

ENV_KEYS = {
    "PROJECT_INDEX_PATH": "index_path",
    "PROJECT_INDEX_FLAVOR": "flavor",
    "PROJECT_INDEX_IGNORE_CASE": "ignore_case",
    "PROJECT_INDEX_WATCH": "watch",
    "PROJECT_INDEX_BACKUP": "backup",
    "BACKUP_DIR": "backup_dir",
    "LOG_FILE": "log_file",
    "OPS_LOG_FILE": "ops_log_file",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    index_path: Path = DEFAULT_INDEX_FILE
    flavor: str = "auto"
    ignore_case: bool = False
    watch: str | None = DEFAULT_WATCH
    backup: bool = False
    backup_dir: Path = DEFAULT_BACKUP_DIR
    log_file: Path = DEFAULT_LOG_FILE
    ops_log_file: Path = DEFAULT_OPS_LOG_FILE

    def policy(self) -> PathPolicy:
        return PathPolicy(flavor=self.flavor, ignore_case=self.ignore_case, watch=self.watch)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Apply non-None overrides, coercing them the same way file values are."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values, os.environ))


def parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"setting '{key}' must be a boolean, got {value!r}")


def _coerce(values: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key in PATH_KEYS:
            out[key] = Path(expand_path(str(value), env))
        elif key in {"ignore_case", "backup"}:
            out[key] = parse_bool(value, key)
        elif key == "flavor":
            flavor = str(value).strip().lower()
            if flavor not in FLAVORS:
                raise ValueError(
                    f"setting 'flavor' must be one of {', '.join(FLAVORS)}, got {value!r}"
                )
            out[key] = flavor
        elif key == "watch":
            out[key] = str(value) if value not in (None, "") else None
        else:
            out[key] = value
    return out


def load_config_file(config_file: Path) -> dict[str, Any]:
    """
    function_purpose: Read the optional YAML settings file.

    A missing file yields no settings. The file must parse to a mapping whose
    keys are known settings.
    """
    if not config_file.exists():
        return {}
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"{config_file}: invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{config_file}: settings file must contain a mapping")
    unknown = sorted(set(data) - CONFIG_KEYS)
    if unknown:
        raise ValueError(f"{config_file}: unknown settings: {', '.join(unknown)}")
    return data


def load_settings(
    config_file: Path | None = None, env: Mapping[str, str] | None = None
) -> Settings:
    """
    function_purpose: Resolve settings from defaults, the YAML settings file and the environment.
    """
    env = os.environ if env is None else env
    if config_file is None:
        env_config = env.get("PROJECT_INDEX_REPAIR_CONFIG")
        config_file = Path(expand_path(env_config, env)) if env_config else DEFAULT_CONFIG_FILE

    values = load_config_file(Path(config_file))
    for env_key, key in ENV_KEYS.items():
        # An empty PROJECT_INDEX_WATCH disables the watch; other empty values are ignored.
        if env_key in env and (env[env_key] or key == "watch"):
            values[key] = env[env_key]

    log = logging.getLogger(LOGGER_NAME)
    for key in PATH_KEYS & set(values):
        missing = [n for n in find_env_var_references(str(values[key])) if not env.get(n)]
        if missing:
            log.warning("Setting '%s' references unset variables: %s", key, ", ".join(missing))

    return replace(Settings(), **_coerce(values, env))


# --- Logging setup ---
def configure_logging(log_file: Path | None = None, level: int = logging.INFO) -> logging.Logger:
    """
    function_purpose: Configure logging to stderr and a rotating file.

    Handlers are attached once per process; later calls return the same logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    log_file_env = os.environ.get("LOG_FILE")
    if log_file is None:
        log_file = Path(log_file_env) if log_file_env else DEFAULT_LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"
    )

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    fh = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    logger.info("Logging initialized. File: %s", str(log_file))
    return logger
