"""
Turn vendor payloads into the vendor-neutral Forecast.

Every vendor has its own idea of optional fields, units wrappers and time
encodings. Anything the display needs but cannot find raises DecodeError;
anything it can live without decodes to None.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import arrow
from tzlocal import get_localzone

from .errors import DecodeError
from .models import (
    FORECAST_DAYS,
    Conditions,
    DayForecast,
    Forecast,
    climacell_icon,
    climacell_moon_phase,
    darksky_icon,
    moon_phase_name,
    owm_icon,
)
from .providers import ClimaCellClient, DarkSkyClient, OpenWeatherMapClient, WeatherClient

logger = logging.getLogger(__name__)


def _get_system_tz() -> str:
    try:
        return str(get_localzone())
    except Exception:
        return "UTC"


def resolve_tz(*candidates: Optional[str]) -> str:
    for name in candidates:
        if not name:
            continue
        try:
            arrow.now(name)
        except ValueError:
            logger.warning("Ignoring unknown timezone %r", name)
            continue
        return name
    return _get_system_tz()


def _float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _require(mapping: Any, key: str, where: str) -> Any:
    if not isinstance(mapping, dict) or key not in mapping or mapping[key] is None:
        raise DecodeError(f"{where}: missing {key!r}")
    return mapping[key]


def _from_unix(ts: Any, tz: str) -> Optional[datetime]:
    if ts is None:
        return None
    try:
        return arrow.get(float(ts)).to(tz).datetime
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"bad timestamp {ts!r}") from exc


def _from_iso(value: Any, tz: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return arrow.get(value).to(tz).datetime
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"bad timestamp {value!r}") from exc


def _check_days(days: List[DayForecast], provider: str):
    if len(days) < FORECAST_DAYS:
        raise DecodeError(f"{provider}: expected at least {FORECAST_DAYS} forecast days, got {len(days)}")


# ------------------------------------------------------------------
# Dark Sky
# ------------------------------------------------------------------
def decode_darksky(payload: Dict, tz: Optional[str] = None) -> Forecast:
    if not isinstance(payload, dict):
        raise DecodeError("darksky: payload is not an object")
    tzname = resolve_tz(payload.get("timezone"), tz)
    currently = _require(payload, "currently", "darksky")
    daily = _require(_require(payload, "daily", "darksky"), "data", "darksky.daily")

    humidity = _float(currently.get("humidity"))
    current = Conditions(
        observed_at=_from_unix(_require(currently, "time", "darksky.currently"), tzname),
        temperature=_float(_require(currently, "temperature", "darksky.currently")),
        wind_speed=_float(currently.get("windSpeed")),
        wind_bearing=_float(currently.get("windBearing")),
        icon=darksky_icon(currently.get("icon")),
        summary=currently.get("summary") or "",
        feels_like=_float(currently.get("apparentTemperature")),
        humidity=humidity * 100.0 if humidity is not None else None,
    )

    days = []
    for i, row in enumerate(daily):
        where = f"darksky.daily[{i}]"
        days.append(DayForecast(
            day=_from_unix(_require(row, "time", where), tzname),
            high=_float(row.get("temperatureHigh", row.get("temperatureMax"))),
            low=_float(row.get("temperatureLow", row.get("temperatureMin"))),
            sunrise=_from_unix(row.get("sunriseTime"), tzname),
            sunset=_from_unix(row.get("sunsetTime"), tzname),
            moon_phase=moon_phase_name(_float(row.get("moonPhase"))),
            icon=darksky_icon(row.get("icon")),
        ))
    _check_days(days, "darksky")
    return Forecast(current=current, days=days, timezone=tzname, provider="darksky")


# ------------------------------------------------------------------
# ClimaCell v3
# ------------------------------------------------------------------
def _cc_value(row: Dict, key: str) -> Any:
    """Unwrap ``{"value": ..., "units": ...}``; absent or null fields are None."""
    wrapped = row.get(key)
    if isinstance(wrapped, dict):
        return wrapped.get("value")
    return None


def _cc_min_max(row: Dict, key: str, where: str):
    """Split the ``[{"min": {...}}, {"max": {...}}]`` daily shape.

    Entries are matched on their min/max key rather than position.
    """
    records = row.get(key)
    if records is None:
        return None, None
    if not isinstance(records, list):
        raise DecodeError(f"{where}.{key}: expected a list, got {type(records).__name__}")
    if len(records) < 2:
        raise DecodeError(f"{where}.{key}: short JSON array")
    low = high = None
    for rec in records:
        if not isinstance(rec, dict):
            continue
        if isinstance(rec.get("min"), dict):
            low = _float(rec["min"].get("value"))
        if isinstance(rec.get("max"), dict):
            high = _float(rec["max"].get("value"))
    return low, high


def _cc_day(value: Any, tz: str, where: str) -> datetime:
    if not value:
        raise DecodeError(f"{where}: missing 'observation_time'")
    try:
        if len(str(value)) == 10:
            # Plain local date.
            return arrow.get(str(value), "YYYY-MM-DD").replace(tzinfo=tz).datetime
        return arrow.get(value).to(tz).floor("day").datetime
    except ValueError as exc:
        raise DecodeError(f"{where}: bad observation_time {value!r}") from exc


def decode_climacell(realtime: Dict, daily: List[Dict], tz: Optional[str] = None) -> Forecast:
    if not isinstance(realtime, dict):
        raise DecodeError("climacell: realtime payload is not an object")
    if not isinstance(daily, list):
        raise DecodeError("climacell: daily payload is not a list")
    tzname = resolve_tz(tz)

    observed = _cc_value(realtime, "observation_time")
    if observed is None:
        raise DecodeError("climacell.realtime: missing 'observation_time'")
    temperature = _cc_value(realtime, "temp")
    if temperature is None:
        raise DecodeError("climacell.realtime: missing 'temp'")
    code = _cc_value(realtime, "weather_code")
    current = Conditions(
        observed_at=_from_iso(observed, tzname),
        temperature=_float(temperature),
        wind_speed=_float(_cc_value(realtime, "wind_speed")),
        wind_bearing=_float(_cc_value(realtime, "wind_direction")),
        icon=climacell_icon(code),
        summary=(code or "").replace("_", " "),
        feels_like=_float(_cc_value(realtime, "feels_like")),
        humidity=_float(_cc_value(realtime, "humidity")),
    )

    days = []
    for i, row in enumerate(daily):
        where = f"climacell.daily[{i}]"
        if not isinstance(row, dict):
            raise DecodeError(f"{where}: not an object")
        low, high = _cc_min_max(row, "temp", where)
        days.append(DayForecast(
            day=_cc_day(_cc_value(row, "observation_time"), tzname, where),
            high=high,
            low=low,
            sunrise=_from_iso(_cc_value(row, "sunrise"), tzname),
            sunset=_from_iso(_cc_value(row, "sunset"), tzname),
            moon_phase=climacell_moon_phase(_cc_value(row, "moon_phase")),
            icon=climacell_icon(_cc_value(row, "weather_code")),
        ))
    _check_days(days, "climacell")
    return Forecast(current=current, days=days, timezone=tzname, provider="climacell")


# ------------------------------------------------------------------
# OpenWeatherMap One Call
# ------------------------------------------------------------------
def _owm_icon_code(row: Dict) -> Optional[str]:
    weather = row.get("weather") or []
    if weather and isinstance(weather[0], dict):
        return weather[0].get("icon")
    return None


def _owm_summary(row: Dict) -> str:
    weather = row.get("weather") or []
    if weather and isinstance(weather[0], dict):
        return weather[0].get("description") or ""
    return ""


def decode_owm(payload: Dict, tz: Optional[str] = None) -> Forecast:
    if not isinstance(payload, dict):
        raise DecodeError("owm: payload is not an object")
    tzname = resolve_tz(payload.get("timezone"), tz)
    cur = _require(payload, "current", "owm")
    daily = _require(payload, "daily", "owm")

    current = Conditions(
        observed_at=_from_unix(_require(cur, "dt", "owm.current"), tzname),
        temperature=_float(_require(cur, "temp", "owm.current")),
        wind_speed=_float(cur.get("wind_speed")),
        wind_bearing=_float(cur.get("wind_deg")),
        icon=owm_icon(_owm_icon_code(cur)),
        summary=_owm_summary(cur),
        feels_like=_float(cur.get("feels_like")),
        humidity=_float(cur.get("humidity")),
    )

    days = []
    for i, row in enumerate(daily):
        where = f"owm.daily[{i}]"
        temp = row.get("temp") if isinstance(row, dict) else None
        if not isinstance(temp, dict):
            raise DecodeError(f"{where}: missing 'temp'")
        day = _from_unix(_require(row, "dt", where), tzname)
        days.append(DayForecast(
            day=arrow.get(day).floor("day").datetime,
            high=_float(temp.get("max")),
            low=_float(temp.get("min")),
            sunrise=_from_unix(row.get("sunrise"), tzname),
            sunset=_from_unix(row.get("sunset"), tzname),
            moon_phase=moon_phase_name(_float(row.get("moon_phase"))),
            icon=owm_icon(_owm_icon_code(row)),
        ))
    _check_days(days, "owm")
    return Forecast(current=current, days=days, timezone=tzname, provider="owm")


def fetch_forecast(client: WeatherClient, cfg: Dict) -> Forecast:
    weather = cfg.get("weather", {})
    lat = float(weather["latitude"])
    lon = float(weather["longitude"])
    units = weather.get("units", "us")
    tz = weather.get("timezone")

    if isinstance(client, DarkSkyClient):
        return decode_darksky(client.forecast(lat, lon, units=units), tz)
    if isinstance(client, ClimaCellClient):
        realtime = client.realtime(lat, lon, units=units)
        daily = client.daily_forecast(lat, lon, units=units)
        return decode_climacell(realtime, daily, tz)
    if isinstance(client, OpenWeatherMapClient):
        return decode_owm(client.onecall(lat, lon, units=units), tz)
    raise TypeError(f"unsupported client {type(client).__name__}")
