from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .utils.path import default_config_path, to_abs_path

logger = logging.getLogger(__name__)

@dataclass
class CFG:
    host: str = "127.0.0.1"
    port: int = 8765
    interval: float = 1.0
    udp_enabled: bool = True
    capture: bool = False
    resolve_owners: bool = False
    elevate_cmd: str = "pkexec"
    helper_timeout: float = 5.0
    helper_start_timeout: float = 120.0
    resolver_cooldown: float = 30.0
    failure_threshold: int = 3
    proc_root: Path = field(default_factory=lambda: Path("/proc"))
    source: Optional[Path] = None  # config file the values came from

# CLI dest -> CFG field, where they differ
ARG_FIELDS = {
    "udp": "udp_enabled",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

def _coerce(name: str, value: Any, current: Any) -> Any:
    kind = type(current)
    try:
        if isinstance(current, bool):
            if isinstance(value, bool):
                return value
            s = str(value).strip().lower()
            if s in _TRUE:
                return True
            if s in _FALSE:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if isinstance(current, Path) or name == "proc_root":
            return Path(value)
        if kind in (int, float):
            out = kind(value)
            if out < 0:
                raise ValueError("must not be negative")
            return out
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: {e}") from e

def apply_overrides(cfg: CFG, values: Dict[str, Any]) -> CFG:
    known = {f.name for f in fields(CFG)} - {"source"}
    for k, v in values.items():
        k = k.replace("-", "_")
        k = ARG_FIELDS.get(k, k)
        if k not in known:
            logger.warning("ignoring unknown config key %r", k)
            continue
        if v is None:
            continue
        setattr(cfg, k, _coerce(k, v, getattr(cfg, k)))
    if cfg.interval <= 0:
        raise ConfigError("interval must be positive")
    if cfg.failure_threshold < 1:
        raise ConfigError("failure_threshold must be at least 1")
    return cfg

def load_config_file(path: Optional[str | Path]) -> tuple[Dict[str, Any], Optional[Path]]:
    if not path:
        return {}, None
    p = to_abs_path(path)
    if not p:
        return {}, None
    if not p.exists():
        logger.warning("config not found: %s", p)
        return {}, None
    txt = p.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(txt) if p.suffix in (".yaml", ".yml") else json.loads(txt)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"{p}: {e}") from e
    if data is None:
        return {}, p
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top level must be a mapping")
    return data, p

def init_cfg_from_args(args) -> CFG:
    """Defaults < config file < command line flags."""
    cfg = CFG()
    path = getattr(args, "config", None) or default_config_path()
    data, source = load_config_file(path)
    apply_overrides(cfg, data)
    cfg.source = source
    if source:
        logger.info("config: %s", source)

    cli = {}
    for name in ("host", "port", "interval", "udp", "capture", "resolve_owners", "elevate_cmd",
                 "helper_timeout", "helper_start_timeout", "resolver_cooldown",
                 "failure_threshold", "proc_root"):
        val = getattr(args, name, None)
        if val is not None:
            cli[name] = val
    apply_overrides(cfg, cli)
    return cfg
