from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"

BACKUP_KINDS = ("nightly", "weekly")

DEFAULTS: Dict[str, Any] = {
    "surrealdb": {
        "endpoint": "http://core-surrealdb:8000",
        "binary": "surreal",
        "export_timeout_seconds": 3600,
        "import_timeout_seconds": 3600,
        "probe_timeout_seconds": 5,
        "probe_attempts": 3,
        "probe_delay_seconds": 5,
    },
    "keyvault": {
        "directory": "/keyvault/surrealdb",
        "wait_seconds": 60,
        "poll_seconds": 2,
    },
    "backup": {
        "directory": "/backups",
        "temp_directory": None,
        "extension": "surql",
        "marker": "BEGIN TRANSACTION",
        "compress_level": 9,
        "keep_shadow": True,
    },
    "schedule": {
        "nightly": "0 2 * * *",
        "weekly": "0 3 * * 0",
        "poll_seconds": 30,
    },
    "health": {
        "host": "0.0.0.0",
        "port": 8080,
        "stale_after_hours": 24,
        "service_name": "surrealdb-backup",
    },
    "logging": {
        "level": "INFO",
        "json_format": True,
    },
    "paths": {
        "log_dir": "/logs/surrealdb-backup",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    return _deep_merge(DEFAULTS, config)


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    endpoint = os.getenv("SURREALDB_ENDPOINT")
    if endpoint:
        overrides.setdefault("surrealdb", {})["endpoint"] = endpoint

    binary = os.getenv("SURREAL_BIN")
    if binary:
        overrides.setdefault("surrealdb", {})["binary"] = binary

    keyvault_dir = os.getenv("KEYVAULT_DIR")
    if keyvault_dir:
        overrides.setdefault("keyvault", {})["directory"] = keyvault_dir

    backup_dir = os.getenv("BACKUP_DIR")
    if backup_dir:
        overrides.setdefault("backup", {})["directory"] = backup_dir

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        overrides.setdefault("paths", {})["log_dir"] = log_dir

    port = os.getenv("HEALTH_CHECK_PORT", "").strip()
    if port:
        try:
            overrides.setdefault("health", {})["port"] = int(port)
        except ValueError:
            pass

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    # Load .env once through a single interface.
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("SURREAL_BACKUP_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(with_defaults(data), _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def _section(cfg: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    cfg = cfg if cfg is not None else load_config()
    return _deep_merge(DEFAULTS.get(name, {}), cfg.get(name) or {})


def get_backup_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    return resolve_path(str(_section(config, "backup")["directory"]))


def get_temp_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    temp_dir = _section(config, "backup").get("temp_directory")
    if temp_dir:
        return resolve_path(str(temp_dir))
    return get_backup_dir(config) / "temp"


def get_keyvault_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    return resolve_path(str(_section(config, "keyvault")["directory"]))


def get_log_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    return resolve_path(str(_section(config, "paths")["log_dir"]))


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    return get_log_dir(config) / "backup.log"


def get_health_file(config: Optional[Dict[str, Any]] = None) -> Path:
    return get_log_dir(config) / "health.json"


def get_stale_after_seconds(config: Optional[Dict[str, Any]] = None) -> float:
    return float(_section(config, "health")["stale_after_hours"]) * 3600


def get_schedule(kind: str, config: Optional[Dict[str, Any]] = None) -> str:
    if kind not in BACKUP_KINDS:
        raise ValueError(f"Unknown backup kind '{kind}'.")
    return str(_section(config, "schedule")[kind])
