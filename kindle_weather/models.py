from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

FORECAST_DAYS = 4
FALLBACK_ICON = "mist"

# Neutral icon ids; each has a <symbol> of the same id in the template.
ICONS = ("skc", "few", "bkn", "ovc", "ra", "sn", "fzra", "tsra", "wind", "fg", FALLBACK_ICON)

DARKSKY_ICONS = {
    "clear-day": "skc",
    "clear-night": "skc",
    "rain": "ra",
    "snow": "sn",
    "sleet": "fzra",
    "hail": "fzra",
    "wind": "wind",
    "fog": "fg",
    "cloudy": "ovc",
    "partly-cloudy-day": "few",
    "partly-cloudy-night": "few",
    "thunderstorm": "tsra",
}

CLIMACELL_ICONS = {
    "freezing_rain_heavy": "fzra",
    "freezing_rain": "fzra",
    "freezing_rain_light": "fzra",
    "freezing_drizzle": "fzra",
    "ice_pellets_heavy": "fzra",
    "ice_pellets": "fzra",
    "ice_pellets_light": "fzra",
    "snow_heavy": "sn",
    "snow": "sn",
    "snow_light": "sn",
    "flurries": "sn",
    "tstorm": "tsra",
    "rain_heavy": "ra",
    "rain": "ra",
    "rain_light": "ra",
    "drizzle": "ra",
    "fog_light": "fg",
    "fog": "fg",
    "cloudy": "ovc",
    "mostly_cloudy": "bkn",
    "partly_cloudy": "few",
    "mostly_clear": "few",
    "clear": "skc",
}

# OpenWeatherMap icon codes without the day/night suffix.
OWM_ICONS = {
    "01": "skc",
    "02": "few",
    "03": "bkn",
    "04": "ovc",
    "09": "ra",
    "10": "ra",
    "11": "tsra",
    "13": "sn",
    "50": "fg",
}

CLIMACELL_MOON_PHASES = {
    "new_moon": "New",
    "new": "New",
    "waxing_crescent": "Waxing Crescent",
    "first_quarter": "First Quarter",
    "waxing_gibbous": "Waxing Gibbous",
    "full": "Full",
    "full_moon": "Full",
    "waning_gibbous": "Waning Gibbous",
    "third_quarter": "Last Quarter",
    "last_quarter": "Last Quarter",
    "waning_crescent": "Waning Crescent",
}


def darksky_icon(name: Optional[str]) -> str:
    return DARKSKY_ICONS.get(name or "", FALLBACK_ICON)


def climacell_icon(code: Optional[str]) -> str:
    return CLIMACELL_ICONS.get(code or "", FALLBACK_ICON)


def owm_icon(code: Optional[str]) -> str:
    return OWM_ICONS.get((code or "")[:2], FALLBACK_ICON)


def moon_phase_name(fraction: Optional[float]) -> Optional[str]:
    """Name the lunation fraction used by Dark Sky and OpenWeatherMap.

    0 is a new moon, 0.5 a full moon; the quarter values are exact and
    everything between them is a crescent or gibbous phase. OpenWeatherMap
    also reports 1.0 for a new moon.
    """
    if fraction is None:
        return None
    f = float(fraction)
    if f < 0:
        return None
    if f == 0 or f >= 1:
        return "New"
    if f < 0.25:
        return "Waxing Crescent"
    if f == 0.25:
        return "First Quarter"
    if f < 0.5:
        return "Waxing Gibbous"
    if f == 0.5:
        return "Full"
    if f < 0.75:
        return "Waning Gibbous"
    if f == 0.75:
        return "Last Quarter"
    return "Waning Crescent"


def climacell_moon_phase(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    key = value.strip().lower()
    if key in CLIMACELL_MOON_PHASES:
        return CLIMACELL_MOON_PHASES[key]
    return key.replace("_", " ").title()


@dataclass
class Conditions:
    observed_at: datetime
    temperature: Optional[float]
    wind_speed: Optional[float] = None
    wind_bearing: Optional[float] = None
    icon: str = FALLBACK_ICON
    summary: str = ""
    feels_like: Optional[float] = None
    humidity: Optional[float] = None


@dataclass
class DayForecast:
    day: datetime
    high: Optional[float]
    low: Optional[float]
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    moon_phase: Optional[str] = None
    icon: str = FALLBACK_ICON


@dataclass
class Forecast:
    current: Conditions
    days: List[DayForecast] = field(default_factory=list)
    timezone: str = "UTC"
    provider: str = ""

    @property
    def today(self) -> DayForecast:
        return self.days[0]
