from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .expression import MAX_EXPRESSION_LENGTH, MAX_NESTING_DEPTH


class AttrDict(dict):
    """Dict with attribute access (x.y)."""
    def __getattr__(self, name: str):
        try:
            return self[name]
        except KeyError as e:
            raise AttributeError(name) from e
    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value
    def __delattr__(self, name: str) -> None:
        del self[name]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# Flat UPPERCASE key -> (section, nested key)
_FLAT_TO_NESTED: Dict[str, Tuple[str, str]] = {
    "DATABASE_URL": ("database", "url"),
    "DATABASE_ECHO": ("database", "echo"),
    "SERVER_HOST": ("server", "host"),
    "SERVER_PORT": ("server", "port"),
    "DEBUG": ("server", "debug"),
    "LOG_LEVEL": ("logging", "level"),
    "FORMULA_MAX_EXPRESSION_LENGTH": ("formulas", "max_expression_length"),
    "FORMULA_MAX_NESTING_DEPTH": ("formulas", "max_nesting_depth"),
    "SEED_GLOBAL_DEFAULTS": ("formulas", "seed_global_defaults"),
}


def _default_config() -> AttrDict:
    flat: Dict[str, Any] = {
        "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///./data/formulary.db"),
        "DATABASE_ECHO": _env_flag("DATABASE_ECHO", "false"),
        "SERVER_HOST": os.getenv("SERVER_HOST", "0.0.0.0"),
        "SERVER_PORT": _env_int("SERVER_PORT", 5234),
        "DEBUG": _env_flag("DEBUG", "false"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "FORMULA_MAX_EXPRESSION_LENGTH": _env_int("FORMULA_MAX_EXPRESSION_LENGTH", MAX_EXPRESSION_LENGTH),
        "FORMULA_MAX_NESTING_DEPTH": _env_int("FORMULA_MAX_NESTING_DEPTH", MAX_NESTING_DEPTH),
        "SEED_GLOBAL_DEFAULTS": _env_flag("SEED_GLOBAL_DEFAULTS", "true"),
    }
    cfg: Dict[str, Any] = dict(flat)
    for flat_key, (section, key) in _FLAT_TO_NESTED.items():
        cfg.setdefault(section, {})[key] = flat[flat_key]
    return AttrDict(cfg)


DEFAULT_CONFIG: AttrDict = _default_config()


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if ext in {".yml", ".yaml"}:
        return yaml.safe_load(text) or {}
    if ext == ".toml":
        return tomllib.loads(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Unsupported config format for {path}. {e}") from e


def _deep_merge(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


def _sync_keys(cfg: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Keep flat and nested keys in agreement; whichever the file set wins."""
    for flat_key, (section, key) in _FLAT_TO_NESTED.items():
        nested = cfg.setdefault(section, {})
        if flat_key in overrides:
            nested[key] = cfg[flat_key]
        elif key in (overrides.get(section) or {}):
            cfg[flat_key] = nested[key]
        else:
            nested.setdefault(key, cfg.get(flat_key))


def load_config(config_path: Optional[str] = None) -> AttrDict:
    """Start from the env-driven defaults, deep-merge an optional
    JSON/YAML/TOML file on top, and return an AttrDict with both
    flat and nested keys populated."""
    base = {k: (dict(v) if isinstance(v, dict) else v) for k, v in _default_config().items()}
    overrides: Dict[str, Any] = {}
    if config_path:
        p = Path(config_path)
        if p.exists():
            overrides = _read_config_file(p) or {}
            _deep_merge(base, overrides)
    _sync_keys(base, overrides)
    return AttrDict(base)


@dataclass(frozen=True)
class EngineSettings:
    max_expression_length: int = MAX_EXPRESSION_LENGTH
    max_nesting_depth: int = MAX_NESTING_DEPTH


def get_engine_settings(config: Optional[Dict[str, Any]] = None) -> EngineSettings:
    cfg = config if config is not None else load_config()
    section = cfg.get("formulas", {})
    return EngineSettings(
        max_expression_length=int(
            section.get("max_expression_length", cfg.get("FORMULA_MAX_EXPRESSION_LENGTH", MAX_EXPRESSION_LENGTH))
        ),
        max_nesting_depth=int(
            section.get("max_nesting_depth", cfg.get("FORMULA_MAX_NESTING_DEPTH", MAX_NESTING_DEPTH))
        ),
    )
