"""YAML config loader with snapshot persistence and runtime get/set."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from courier.config.defaults import DEFAULT_STATUS_ALIASES
from courier.config.schema import CourierConfig

logger = logging.getLogger(__name__)


def load_config(path: str | Path | None = None) -> CourierConfig:
    """Load and validate config from a YAML file.

    A missing file yields the defaults. If no status aliases are specified,
    injects DEFAULT_STATUS_ALIASES.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            logger.warning("Config file %s not found, using defaults", path)

    tracking = raw.setdefault("tracking", {}) or {}
    raw["tracking"] = tracking
    if not tracking.get("status_aliases"):
        tracking["status_aliases"] = dict(DEFAULT_STATUS_ALIASES)

    return CourierConfig(**raw)


def config_hash(config: CourierConfig) -> str:
    """Compute a deterministic SHA256 hash of the config."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def snapshot_config(config: CourierConfig, db: Any) -> str:
    """Persist a config snapshot to the database if it changed. Returns the hash."""
    h = config_hash(config)
    cursor = db.execute(
        "SELECT 1 FROM config_snapshots WHERE config_hash = ?", (h,)
    )
    if cursor.fetchone() is None:
        db.execute(
            "INSERT INTO config_snapshots (config_hash, config_json, created_at) "
            "VALUES (?, ?, CURRENT_TIMESTAMP)",
            (h, config.model_dump_json()),
        )
        db.commit()
    return h


def get_config_value(config: CourierConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'propagation.max_attempts'."""
    obj: Any = config
    for part in dotted_key.split("."):
        if isinstance(obj, dict) and part in obj:
            obj = obj[part]
        elif hasattr(obj, part):
            obj = getattr(obj, part)
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj


def set_config_value(config: CourierConfig, dotted_key: str, value: Any) -> CourierConfig:
    """Set a config value by dotted key path and re-validate.

    Returns a new CourierConfig instance.
    """
    data = json.loads(config.model_dump_json())
    parts = dotted_key.split(".")
    target = data
    for part in parts[:-1]:
        if part not in target:
            raise KeyError(f"Config key not found: {dotted_key}")
        target = target[part]
    old_value = target.get(parts[-1])
    # bool first: bool is an int subclass
    if isinstance(old_value, bool) and isinstance(value, str):
        value = value.lower() in ("1", "true", "yes", "on")
    elif isinstance(old_value, int) and isinstance(value, str):
        value = int(value)
    elif isinstance(old_value, float) and isinstance(value, str):
        value = float(value)
    target[parts[-1]] = value
    return CourierConfig(**data)


def save_config(config: CourierConfig, path: str | Path) -> None:
    """Write config back to YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(json.loads(config.model_dump_json()), f, sort_keys=False)
