"""
Settings: load config.yaml and resolve connection strings for coordinators.
The hosting application resolves the connection string; the coordinator only receives it.
"""
import os
from pathlib import Path

import yaml

from sqlaccess.core.bulk import BulkOptions
from sqlaccess.core.coordinator import DEFAULT_TIMEOUT, ConnectionCoordinator
from sqlaccess.utils.db_connector import build_connection_string
from sqlaccess.utils.errors import ConfigurationError
from sqlaccess.utils.logger import configure_logging

DEFAULT_CONNECTION = "DefaultConnection"

_PACKAGE_CONFIG = Path(__file__).resolve().parent / "config.yaml"


def _config_path() -> Path:
    """SQLACCESS_CONFIG wins; then PROJECT_ROOT/sqlaccess/config; then the packaged file."""
    explicit = os.getenv("SQLACCESS_CONFIG")
    if explicit:
        return Path(explicit)
    root = os.getenv("PROJECT_ROOT")
    if root:
        candidate = Path(root) / "sqlaccess" / "config" / "config.yaml"
        if candidate.exists():
            return candidate
    return _PACKAGE_CONFIG


def load_config(config_path: str | Path | None = None) -> dict:
    path = Path(config_path) if config_path else _config_path()
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping.")
    return config


def get_connection_string(name: str = DEFAULT_CONNECTION, config: dict | None = None) -> str:
    """Resolve a named connection string: env DB_CONNECTION_STRING, then config, then DB_TYPE env."""
    if name == DEFAULT_CONNECTION:
        env_value = os.getenv("DB_CONNECTION_STRING")
        if env_value and env_value.strip():
            return env_value.strip()
    config = config if config is not None else load_config()
    value = (config.get("connection_strings") or {}).get(name)
    if value and str(value).strip():
        return str(value).strip()
    if name == DEFAULT_CONNECTION and os.getenv("DB_TYPE"):
        return build_connection_string()
    raise ConfigurationError(f"Connection string {name!r} is not configured.")


def bulk_options_from(config: dict) -> BulkOptions:
    bulk = config.get("bulk") or {}
    return BulkOptions(
        batch_size=int(bulk.get("batch_size", BulkOptions.batch_size)),
        notify_after=int(bulk.get("notify_after", BulkOptions.notify_after)),
    )


def create_coordinator(config: dict | None = None, name: str = DEFAULT_CONNECTION) -> ConnectionCoordinator:
    """One coordinator per unit of work; dispose it (or use `with`) when done."""
    config = config if config is not None else load_config()
    if config.get("logging"):
        configure_logging(config["logging"].get("level"), config["logging"].get("log_dir"))
    database = config.get("database") or {}
    return ConnectionCoordinator(
        get_connection_string(name, config),
        default_timeout=int(database.get("default_timeout", DEFAULT_TIMEOUT)),
        db_type=database.get("type"),
        bulk_options=bulk_options_from(config),
    )
