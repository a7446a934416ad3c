from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("venue", "scheduler")

# env var -> (section, key, cast)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "LNSCHED_VENUE_BASE_URL": ("venue", "base_url", str),
    "LNSCHED_TRIGGER_INTERVAL_SECONDS": ("scheduler", "trigger_interval_seconds", int),
    "LNSCHED_RECONCILIATION_INTERVAL_SECONDS": ("scheduler", "reconciliation_interval_seconds", int),
    "LNSCHED_MAX_WORKERS": ("scheduler", "max_workers", int),
}

_lock = threading.Lock()
_loaded: dict[str, dict[str, Any]] = {}


def default_config_path() -> Path:
    override = (os.environ.get("LNSCHED_CONFIG_PATH") or "").strip()
    if override:
        return Path(override)
    # lnscheduler/utils/config_loader.py -> project root
    return Path(__file__).resolve().parents[2] / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.getenv(var)
        if raw:
            cfg.setdefault(section, {})[key] = cast(raw)


def validate_config(cfg: dict[str, Any]) -> None:
    """
    Fail fast if the configuration is missing required sections or has unusable values.
    """
    absent = [s for s in REQUIRED_SECTIONS if s not in cfg]
    if absent:
        raise ValueError(f"Config is missing section(s): {', '.join(absent)}")

    scheduler = cfg.get("scheduler") or {}
    for key in ("trigger_interval_seconds", "reconciliation_interval_seconds", "max_workers"):
        if key in scheduler and int(scheduler[key]) <= 0:
            raise ValueError(f"scheduler.{key} must be positive")
    scope = scheduler.get("reconciliation_scope", "all")
    if scope not in ("open", "running", "closed", "all"):
        raise ValueError(f"scheduler.reconciliation_scope must be open|running|closed|all; got {scope!r}")


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"{path} must hold a YAML mapping, not {type(doc).__name__}")
    return doc


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Return the parsed config for `config_path` (default `config/config.yaml` or `LNSCHED_CONFIG_PATH`).

    The file is parsed, env-overridden and validated once per path; every call gets its own deep copy.
    """
    path = Path(config_path) if config_path else default_config_path()
    key = str(path.resolve())

    with _lock:
        if force_reload or key not in _loaded:
            cfg = _read_yaml(path)
            _apply_env_overrides(cfg)
            validate_config(cfg)
            _loaded[key] = cfg
            logger.info(f"Config loaded from {key}")
        return deepcopy(_loaded[key])
