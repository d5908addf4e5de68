"""
Configuration: built-in defaults, an optional YAML file, then environment
variables. The YAML file is watched and re-read while the server runs.
"""
from __future__ import annotations

import copy
import logging
import os
from typing import Callable, Dict, Optional

import yaml
from watchdog.events import FileSystemEventHandler

from .errors import ConfigError

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_TEMPLATE = os.path.join(BASE_DIR, "templates", "preprocess.svg")
DEFAULT_CONFIG_PATH = "config.yaml"

PROVIDERS = ("darksky", "climacell", "owm")

# ------------------------------------------------------------------
# DEFAULT CONFIG
# ------------------------------------------------------------------
DEFAULT_CONFIG = {
    "weather": {
        "provider": "darksky",
        "api_keys": {
            "darksky": "",
            "climacell": "",
            "owm": "",
        },
        "latitude": None,
        "longitude": None,
        "timezone": None,
        "units": "us",
        "timeout": 60,
    },
    "schedule": {
        "cron": "*/30 * * * *",
        "run_on_start": True,
    },
    "render": {
        "template": DEFAULT_TEMPLATE,
        "output_dir": "output",
        "rasterizer": "rsvg-convert",
        "gray_levels": 16,
        "rotate": 0,
        "strict": True,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
    },
}

# env name -> (section, key, cast)
ENV_OVERRIDES = {
    "WEATHER_PROVIDER": ("weather", "provider", str),
    "LATITUDE": ("weather", "latitude", float),
    "LONGITUDE": ("weather", "longitude", float),
    "UNITS": ("weather", "units", str),
    "CRON_SCHEDULE": ("schedule", "cron", str),
    "TEMPLATE_PATH": ("render", "template", str),
    "OUTPUT_DIR": ("render", "output_dir", str),
    "RASTERIZER": ("render", "rasterizer", str),
    "HOST": ("server", "host", str),
    "PORT": ("server", "port", int),
}

API_KEY_ENV = {
    "darksky": "DARKSKY_API_KEY",
    "climacell": "CLIMACELL_API_KEY",
    "owm": "OWM_API_KEY",
}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: str) -> Dict:
    if not path or not os.path.exists(path):
        return {}
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _parse_gps(value: str):
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 2:
        raise ConfigError(f"GPS_COORDINATES must look like 'lat,lon', got {value!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise ConfigError(f"GPS_COORDINATES must look like 'lat,lon', got {value!r}") from exc


def apply_env(cfg: Dict, environ=None) -> Dict:
    env = os.environ if environ is None else environ
    cfg = copy.deepcopy(cfg)

    gps = env.get("GPS_COORDINATES")
    if gps and not (env.get("LATITUDE") or env.get("LONGITUDE")):
        cfg["weather"]["latitude"], cfg["weather"]["longitude"] = _parse_gps(gps)

    for name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            cfg[section][key] = cast(raw)
        except ValueError as exc:
            raise ConfigError(f"{name}={raw!r} is not a valid {cast.__name__}") from exc

    for provider, name in API_KEY_ENV.items():
        if env.get(name):
            cfg["weather"]["api_keys"][provider] = env[name]

    tz = env.get("TIMEZONE") or env.get("TZ")
    if tz:
        cfg["weather"]["timezone"] = tz

    cfg["weather"]["provider"] = str(cfg["weather"]["provider"]).strip().lower()
    return cfg


def load_config(path: Optional[str] = None, environ=None) -> Dict:
    env = os.environ if environ is None else environ
    path = path or env.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH
    cfg = _deep_merge(DEFAULT_CONFIG, _read_yaml(path))
    return apply_env(cfg, env)


def validate_config(cfg: Dict) -> Dict:
    weather = cfg.get("weather", {})
    provider = weather.get("provider")
    if provider not in PROVIDERS:
        raise ConfigError(f"unknown weather provider {provider!r}; expected one of {', '.join(PROVIDERS)}")
    if not (weather.get("api_keys") or {}).get(provider):
        raise ConfigError(f"no API key for {provider}; set {API_KEY_ENV[provider]}")
    if weather.get("latitude") is None or weather.get("longitude") is None:
        raise ConfigError("coordinates missing; set LATITUDE and LONGITUDE")
    if weather.get("units") not in ("us", "si"):
        raise ConfigError(f"units must be 'us' or 'si', got {weather.get('units')!r}")
    return cfg


# ------------------------------------------------------------------
# CONFIG WATCHER
# ------------------------------------------------------------------
class ConfigFileHandler(FileSystemEventHandler):
    def __init__(self, path: str, callback: Callable[[Dict], None], environ=None):
        self.path = os.path.abspath(path)
        self.callback = callback
        self.environ = environ

    def on_modified(self, event):
        if os.path.abspath(event.src_path) != self.path:
            return
        try:
            cfg = validate_config(load_config(self.path, self.environ))
        except ConfigError as exc:
            logger.error("Ignoring config change in %s: %s", self.path, exc)
            return
        logger.info("Reloaded config from %s", self.path)
        self.callback(cfg)
