"""Configuration loading for feed_ingest."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_STRING = "sqlite:///feed_ingest.db"


@dataclass
class DatabaseConfig:
    connection_string: str = DEFAULT_CONNECTION_STRING


@dataclass
class FetchConfig:
    interval_minutes: int = 60
    timeout_seconds: float = 15.0
    concurrency: int = 4


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    env_file: Optional[str] = None
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _positive_int(text: str, name: str) -> int:
    value = int(text)
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return value


def parse_env_config(path: Optional[str]) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars: Dict[str, str] = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
        root = tree.getroot()
        for var in root.findall("variable"):
            name = var.attrib.get("name")
            value = var.text
            if name and value:
                env_vars[name] = value.strip()
    except Exception as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise

    return env_vars


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    root = ET.parse(config_path).getroot()
    config = AppConfig()

    env_text = root.findtext("env")
    if env_text and env_text.strip():
        config.env_file = _resolve_path(config_path, env_text.strip())

    db_node = root.find("database")
    if db_node is not None:
        connection_string = (db_node.findtext("connection-string") or "").strip()
        if connection_string:
            config.database.connection_string = connection_string

    fetch_node = root.find("fetch")
    if fetch_node is not None:
        config.fetch.interval_minutes = _positive_int(
            fetch_node.findtext("interval-minutes", "60"), "interval-minutes"
        )
        config.fetch.timeout_seconds = float(
            fetch_node.findtext("timeout-seconds", "15")
        )
        if config.fetch.timeout_seconds <= 0:
            raise ValueError("timeout-seconds must be positive.")
        config.fetch.concurrency = _positive_int(
            fetch_node.findtext("concurrency", "4"), "concurrency"
        )

    log_node = root.find("logging")
    if log_node is not None:
        config.logging.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            config.logging.file = _resolve_path(config_path, log_file)

    return config


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    """Apply ``DATABASE_URL`` and ``FETCH_INTERVAL_MINUTES`` from ``environ``."""
    database_url = environ.get("DATABASE_URL", "").strip()
    if database_url:
        config.database.connection_string = database_url

    interval = environ.get("FETCH_INTERVAL_MINUTES", "").strip()
    if interval:
        try:
            config.fetch.interval_minutes = _positive_int(
                interval, "FETCH_INTERVAL_MINUTES"
            )
        except ValueError:
            logger.warning("Ignoring invalid FETCH_INTERVAL_MINUTES=%r", interval)

    return config
