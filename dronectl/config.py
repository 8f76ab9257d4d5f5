"""dronectl configuration: YAML loading, defaults and validation.

Lookup order for the config file: explicit ``--config`` path, then
``$DRONECTL_CONFIG``, then the built-in defaults alone. Values in the file
are deep-merged onto :data:`DEFAULTS`, so a file only needs the keys it
changes.

Call :func:`validate_config` early in startup to fail fast with a readable
message instead of a KeyError deep inside a reconciler.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger("DroneCtl.Config")

STRATEGY_NAMES = ("pod-per-node", "deployment")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULTS: Dict[str, Any] = {
    "controller": {
        "strategy": "pod-per-node",
        "namespace": "",
        "workers": 1,
        "resync_s": 30.0,
        "backoff": {"base_s": 0.005, "max_s": 300.0},
    },
    "drone": {
        "image": "danacr/drone-pod:latest",
        "node_role_label": "node-role.kubernetes.io/drone",
        "deployment_name": "mydrones",
    },
    "logging": {"level": "INFO"},
    "api": {"host": "127.0.0.1", "port": 8000},
}


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def find_config(config_path: Optional[str] = None) -> Optional[Path]:
    if config_path:
        return Path(config_path)
    env_cfg = os.getenv("DRONECTL_CONFIG")
    if env_cfg:
        return Path(env_cfg)
    return None


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the config file (if any) merged onto the defaults.

    Raises:
        FileNotFoundError: an explicit path was given but does not exist.
        ValueError: the file is not a YAML mapping.
    """
    path = find_config(config_path)
    if path is None:
        logger.debug("No config file given, using defaults")
        return copy.deepcopy(DEFAULTS)

    with open(path) as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a mapping, got {type(data).__name__}")
    logger.debug(f"Loaded config from {path}")
    return _merge(DEFAULTS, data)


def validate_config(config: dict) -> Tuple[bool, List[str]]:
    """Validate a loaded config dict.

    Returns:
        A ``(is_valid, errors)`` tuple; ``errors`` holds one human-readable
        line per problem.
    """
    if not isinstance(config, dict):
        return False, ["Config must be a dict (check YAML syntax)"]

    errors: List[str] = []

    # ── controller ────────────────────────────────────────────────────────────
    ctrl = config.get("controller", {})
    if not isinstance(ctrl, dict):
        errors.append("'controller' must be a mapping (dict), not a scalar")
        ctrl = {}
    strategy = ctrl.get("strategy")
    if strategy not in STRATEGY_NAMES:
        errors.append(
            f"'controller.strategy' must be one of {', '.join(STRATEGY_NAMES)} (got {strategy!r})"
        )
    workers = ctrl.get("workers", 1)
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        errors.append(f"'controller.workers' must be a positive integer (got {workers!r})")
    resync = ctrl.get("resync_s", 0)
    if not isinstance(resync, (int, float)) or resync < 0:
        errors.append(f"'controller.resync_s' must be a number >= 0 (got {resync!r})")
    backoff = ctrl.get("backoff", {})
    if isinstance(backoff, dict):
        base_s = backoff.get("base_s", 0.005)
        max_s = backoff.get("max_s", 300.0)
        if not isinstance(base_s, (int, float)) or base_s <= 0:
            errors.append(f"'controller.backoff.base_s' must be > 0 (got {base_s!r})")
        elif not isinstance(max_s, (int, float)) or max_s < base_s:
            errors.append("'controller.backoff.max_s' must be >= 'controller.backoff.base_s'")
    else:
        errors.append("'controller.backoff' must be a mapping (dict)")

    # ── drone ─────────────────────────────────────────────────────────────────
    drone = config.get("drone", {})
    if isinstance(drone, dict):
        for key in ("image", "node_role_label", "deployment_name"):
            if not drone.get(key):
                errors.append(f"Missing or empty required key: 'drone.{key}'")
    else:
        errors.append("'drone' must be a mapping (dict), not a scalar")

    # ── logging / api ─────────────────────────────────────────────────────────
    level = str(config.get("logging", {}).get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        errors.append(f"'logging.level' must be one of {', '.join(LOG_LEVELS)} (got {level!r})")
    port = config.get("api", {}).get("port", 8000)
    if not isinstance(port, int) or not 0 < port < 65536:
        errors.append(f"'api.port' must be a TCP port number (got {port!r})")

    return len(errors) == 0, errors


def log_validation_result(config: dict, label: str = "dronectl config") -> bool:
    """Validate *config* and log each error. Returns True if valid."""
    ok, errors = validate_config(config)
    if ok:
        logger.debug("%s validation passed", label)
    else:
        for msg in errors:
            logger.error("%s validation error: %s", label, msg)
    return ok
