"""Configuration loading: defaults, YAML overrides, environment and input files."""

from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from globecrawl.errors import ConfigError
from globecrawl.logging_config import get_logger
from globecrawl.models import Genre, Region

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yml")

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "data",
        "regions": "input/regions.json",
        "genres": "input/genres.json",
        "cookies": "input/cookies.json",
        "unaltered_identities": "input/unaltered_identities.json",
        "output_dir": "output",
    },
    "identity": {
        "home_region": "united-states",
        "connect_command": ["openvpn-gui", "--connect", "{region}"],
        "disconnect_command": ["openvpn-gui", "--command", "disconnect_all"],
        "lookup": {
            "mode": "command",
            "command": ["ipconfig"],
            "marker": "IPv4",
            "url": "https://api.ipify.org",
            "timeout": 10,
        },
        "disconnect_attempts": 60,
        "connect_attempts": 180,
        "poll_interval": 1.0,
        "settle_delay": 5.0,
    },
    "extractor": {
        "load_timeout": 3.0,
        "poll_interval": 0.25,
        "scroll_pause": 1.0,
        "max_rounds": 0,
    },
    "browser": {
        "base_url": "https://www.netflix.com",
        "headless": True,
        "viewport": {"width": 1280, "height": 800},
        "navigation_timeout_ms": 60000,
        "thumbnail_timeout": 30.0,
    },
    "resume": {"enabled": True},
    "logging": {"dir": "logs", "level": "INFO"},
    "progress_log": "logs/progress.jsonl",
    "healthcheck_url": "",
}

_FALSE_VALUES = {"0", "false", "no", "off"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def deep_merge(default: Any, override: Any) -> Any:
    """Recursively merge ``override`` onto ``default`` without mutating either."""

    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``config`` with ``GLOBECRAWL_*`` environment overrides applied."""

    merged = deepcopy(config)
    paths = merged["paths"]
    identity = merged["identity"]
    extractor = merged["extractor"]
    browser = merged["browser"]

    data_dir = os.getenv("GLOBECRAWL_DATA_DIR")
    if data_dir:
        paths["data_dir"] = data_dir
    home_region = os.getenv("GLOBECRAWL_HOME_REGION")
    if home_region:
        identity["home_region"] = home_region.strip()
    lookup_mode = os.getenv("GLOBECRAWL_IDENTITY_LOOKUP")
    if lookup_mode:
        identity["lookup"]["mode"] = lookup_mode.strip().lower()

    identity["connect_attempts"] = _env_int(
        "GLOBECRAWL_CONNECT_ATTEMPTS", identity["connect_attempts"]
    )
    identity["disconnect_attempts"] = _env_int(
        "GLOBECRAWL_DISCONNECT_ATTEMPTS", identity["disconnect_attempts"]
    )
    identity["settle_delay"] = _env_float("GLOBECRAWL_SETTLE_DELAY", identity["settle_delay"])
    extractor["load_timeout"] = _env_float("GLOBECRAWL_LOAD_TIMEOUT", extractor["load_timeout"])
    browser["headless"] = _as_bool(os.getenv("GLOBECRAWL_HEADLESS"), browser["headless"])
    merged["resume"]["enabled"] = _as_bool(
        os.getenv("GLOBECRAWL_RESUME"), merged["resume"]["enabled"]
    )

    log_dir = os.getenv("GLOBECRAWL_LOG_DIR")
    if log_dir:
        merged["logging"]["dir"] = log_dir
    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        merged["logging"]["level"] = log_level.strip().upper()

    healthcheck = os.getenv("GLOBECRAWL_HEALTHCHECK_URL")
    if healthcheck is not None:
        merged["healthcheck_url"] = healthcheck.strip()
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load ``config.yml`` (if present) over the defaults, then apply env overrides."""

    load_dotenv()
    path = path or DEFAULT_CONFIG_PATH
    if path.exists():
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", path)
        data = {}

    merged = deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)
    return apply_env_overrides(merged)


def resolve_path(config: dict[str, Any], key: str) -> Path:
    """Resolve a ``paths`` entry against ``paths.data_dir`` unless it is absolute."""

    paths = config.get("paths", {})
    value = paths.get(key)
    if not value:
        raise ConfigError(f"paths.{key} is missing in configuration")
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return Path(paths.get("data_dir") or ".") / path


def _read_json(path: Path) -> Any:
    if not path.exists():
        raise ConfigError(f"Input file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc


def load_regions(path: Path) -> list[Region]:
    data = _read_json(path)
    if not isinstance(data, list):
        raise ConfigError(f"Regions file must hold a JSON array: {path}")
    regions: list[Region] = []
    for entry in data:
        region = str(entry).strip()
        if region and region not in regions:
            regions.append(region)
    if not regions:
        raise ConfigError(f"No regions defined in {path}")
    return regions


def load_genres(path: Path) -> list[Genre]:
    data = _read_json(path)
    if not isinstance(data, list):
        raise ConfigError(f"Genres file must hold a JSON array: {path}")
    genres: list[Genre] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        genre_id = str(entry.get("id") or "").strip()
        name = str(entry.get("name") or "").strip()
        if genre_id:
            genres.append(Genre(id=genre_id, name=name or genre_id))
    if not genres:
        raise ConfigError(f"No genres defined in {path}. Run `globecrawl discover genres` first.")
    return genres


def load_cookies(path: Path) -> list[dict[str, Any]]:
    """Return the opaque session cookie blob as a list of Playwright cookie dicts."""

    data = _read_json(path)
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ConfigError(f"Cookies file must hold a JSON array of objects: {path}")
    return data


def load_unaltered_identities(path: Path) -> frozenset[str]:
    data = _read_json(path)
    if isinstance(data, str):
        data = [data]
    if not isinstance(data, list):
        raise ConfigError(f"Unaltered identities file must hold a JSON array: {path}")
    identities = frozenset(str(entry).strip() for entry in data if str(entry).strip())
    if not identities:
        raise ConfigError(f"No unaltered identities defined in {path}")
    return identities
