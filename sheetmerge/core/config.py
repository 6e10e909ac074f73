"""
Service settings.

Resolution order (later wins):
    1. built-in defaults
    2. optional YAML/JSON settings file
    3. SHEETMERGE_* environment variables

Settings file (YAML or JSON), any subset of the keys below:
    scan_page_size: 50
    scan_max_pages: 50
    seed_file: ./seed.yaml

Environment variable:
    SHEETMERGE_CONFIG_FILE: path to the settings file (optional).
    Default search path: <project_root>/sheetmerge.yaml
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from sheetmerge.core.merge.scanner import MAX_PAGE_SIZE

_log = logging.getLogger("sheetmerge.config")

ENV_PREFIX = "SHEETMERGE_"
PROJECT_ROOT = Path(__file__).resolve().parents[2]

_TRUE = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    scan_page_size: int = 50
    scan_max_pages: int = 50
    scan_page_delay_seconds: float = 0.2
    insert_batch_size: int = 100
    preset_ttl_hours: float = 24.0
    workspace_dir: Path = PROJECT_ROOT / "workspace"
    seed_file: Optional[Path] = None
    rate_limit_enabled: bool = False
    rate_limit_rpm: int = 120
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    log_level: str = "INFO"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def _as_origins(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = [v.strip() for v in str(value).split(",")]
    return tuple(v for v in items if v) or ("*",)


def _as_page_size(value: Any) -> int:
    n = int(value)
    if not 1 <= n <= MAX_PAGE_SIZE:
        raise ValueError(f"must be within 1..{MAX_PAGE_SIZE}")
    return n


def _as_positive_int(value: Any) -> int:
    n = int(value)
    if n < 1:
        raise ValueError("must be >= 1")
    return n


def _as_non_negative_float(value: Any) -> float:
    n = float(value)
    if n < 0:
        raise ValueError("must be >= 0")
    return n


def _as_log_level(value: Any) -> str:
    level = str(value).strip().upper() or "INFO"
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"unknown log level {value!r}")
    return level


def _as_optional_path(value: Any) -> Optional[Path]:
    s = str(value or "").strip()
    return Path(s) if s else None


_COERCE = {
    "env": lambda v: str(v).strip().lower() or "dev",
    "scan_page_size": _as_page_size,
    "scan_max_pages": _as_positive_int,
    "scan_page_delay_seconds": _as_non_negative_float,
    "insert_batch_size": _as_positive_int,
    "preset_ttl_hours": _as_non_negative_float,
    "workspace_dir": lambda v: Path(str(v).strip()),
    "seed_file": _as_optional_path,
    "rate_limit_enabled": _as_bool,
    "rate_limit_rpm": _as_positive_int,
    "cors_origins": _as_origins,
    "log_level": _as_log_level,
}


def _parse_settings_dict(raw: Mapping[str, Any], *, origin: str) -> Dict[str, Any]:
    """Coerce known keys; unknown keys and bad values are skipped with a warning."""
    known = {f.name for f in fields(Settings)}
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        k = str(key).strip().lower()
        if k not in known:
            _log.warning("Skipping unknown setting %r from %s", key, origin)
            continue
        try:
            out[k] = _COERCE[k](value)
        except (ValueError, TypeError) as exc:
            _log.warning("Skipping invalid setting %s=%r from %s: %s", k, value, origin, exc)
    return out


def load_settings_file(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load setting overrides from a YAML or JSON file.

    Returns an empty dict if the file is absent, not readable, or malformed.
    """
    resolved = _resolve_path(path)
    if resolved is None or not resolved.exists():
        return {}

    try:
        raw_text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        _log.warning("Cannot read settings file %s: %s", resolved, exc)
        return {}

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            _log.warning("Failed to parse settings file %s as JSON or YAML: %s", resolved, exc)
            return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        _log.warning("Settings file %s must be a mapping, got %s", resolved, type(data).__name__)
        return {}

    overrides = _parse_settings_dict(data, origin=str(resolved))
    if overrides:
        _log.info("Loaded %d settings from %s", len(overrides), resolved)
    return overrides


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    raw = {}
    for f in fields(Settings):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value is not None and value.strip() != "":
            raw[f.name] = value
    return _parse_settings_dict(raw, origin="environment")


def load_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    if path is None and env.get(ENV_PREFIX + "CONFIG_FILE", "").strip():
        path = Path(env[ENV_PREFIX + "CONFIG_FILE"].strip())

    settings = replace(Settings(), **load_settings_file(path))
    return replace(settings, **_env_overrides(env))


def _resolve_path(path: Optional[Path]) -> Optional[Path]:
    if path is not None:
        return Path(path)
    return PROJECT_ROOT / "sheetmerge.yaml"
