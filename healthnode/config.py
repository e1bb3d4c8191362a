"""Configuration: defaults <- YAML file <- env vars <- CLI args (highest priority)."""

import logging
import os
import uuid
from dataclasses import dataclass, fields, replace

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "HEALTH_NODE_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 8080
    services_file: str = "services.list"
    monitors_file: str = "monitors.list"
    index_file: str = "index.html"
    cache_dir: str = "cache"
    node_id: str = ""
    machine_id_file: str = "/etc/machine-id"
    lock_wait_seconds: float = 30.0
    lock_stale_seconds: float = 60.0
    lock_poll_interval: float = 0.1
    proxy_timeout: float = 15.0
    peer_timeout: float = 15.0
    connection_timeout: float = 10.0
    log_level: str = "INFO"


def _coerce(name: str, value):
    """Convert a raw YAML/env/CLI value to the type of the field's default."""
    if value is None:
        raise ValueError(f"{name}: a value is required")
    kind = type(getattr(Config, name))
    if kind is str and name == "log_level":
        return str(value).upper()
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name}: expected {kind.__name__}, got {value!r}") from e


def load_yaml_config(path: str | None) -> dict:
    """Load a flat mapping of Config fields from YAML. Empty dict if no file."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(cli_args=None, yaml_data: dict | None = None,
                environ=None) -> Config:
    """Build Config from YAML data, HEALTH_NODE_* env vars, then CLI args."""
    environ = os.environ if environ is None else environ
    names = {f.name for f in fields(Config)}
    values: dict = {}

    # systemd's CacheDirectory= exports this for the unit.
    if environ.get("CACHE_DIRECTORY"):
        values["cache_dir"] = environ["CACHE_DIRECTORY"].split(":")[0]

    for key, value in (yaml_data or {}).items():
        if key not in names:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        values[key] = _coerce(key, value)

    for name in names:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None:
            values[name] = _coerce(name, raw)

    if cli_args is not None:
        for name in names:
            raw = getattr(cli_args, name, None)
            if raw is not None:
                values[name] = _coerce(name, raw)

    config = replace(Config(), **values)
    if config.log_level not in LOG_LEVELS:
        raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
    return config


def read_list(path: str) -> list[str]:
    """Entries of a flat list file: one per line, blanks and # comments skipped.

    A missing file is an empty list.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        return []
    return [line.strip() for line in lines
            if line.strip() and not line.strip().startswith("#")]


def node_identity(config: Config) -> str:
    """Stable identifier of this node for cycle detection in aggregation.

    Configured node_id, else the machine id, else a uuid generated once and
    kept in the cache directory.
    """
    if config.node_id:
        return config.node_id

    try:
        with open(config.machine_id_file, "r", encoding="utf-8") as f:
            machine_id = f.read().strip()
        if machine_id:
            return machine_id
    except OSError:
        pass

    path = os.path.join(config.cache_dir, "node-id")
    try:
        with open(path, "r", encoding="utf-8") as f:
            stored = f.read().strip()
        if stored:
            return stored
    except FileNotFoundError:
        pass

    generated = uuid.uuid4().hex
    os.makedirs(config.cache_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(generated + "\n")
    logger.info("Generated node id %s in %s", generated, path)
    return generated
