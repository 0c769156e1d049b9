"""YAML configuration loader.

Reads config/schemaloom.yaml (or the file named by SCHEMALOOM_CONFIG) once
and serves nested lookups:

    >>> get_config_value("schemaloom", "pipeline", "batch_size", default=5)
    5
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SCHEMALOOM_CONFIG"
CONFIG_FILENAME = "schemaloom.yaml"

_config_cache: Optional[Dict[str, Any]] = None
_cache_lock = threading.Lock()


def get_config_path() -> Path:
    """Directory holding the YAML config files (repo-root/config)."""
    return Path(__file__).parent.parent.parent.parent / "config"


def _config_file() -> Path:
    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return get_config_path() / CONFIG_FILENAME


def load_config(force_reload: bool = False) -> Dict[str, Any]:
    """Load and cache the YAML config. Missing file yields an empty dict."""
    global _config_cache
    with _cache_lock:
        if _config_cache is not None and not force_reload:
            return _config_cache

        path = _config_file()
        if not path.exists():
            logger.warning(f"Config file not found at {path}, using built-in defaults")
            _config_cache = {}
            return _config_cache

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping at top level")

        logger.debug(f"Loaded config from {path}")
        _config_cache = data
        return _config_cache


def get_config_value(*keys: str, default: Any = None) -> Any:
    """Walk nested keys; return default when any level is missing."""
    node: Any = load_config()
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def reset_config_cache():
    """Drop the cached config (tests and config edits)."""
    global _config_cache
    with _cache_lock:
        _config_cache = None
