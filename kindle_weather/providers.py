"""
HTTP clients for the supported weather vendors.

Each client returns the raw JSON payload; turning it into a Forecast is the
job of ``normalize``.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from .errors import APIError, ConfigError, DecodeError, FetchError

logger = logging.getLogger(__name__)

USER_AGENT = "kindle-weather/0.3"
DEFAULT_TIMEOUT = 60

# Status codes for which the vendors send a JSON error body.
ERROR_BODY_STATUSES = (400, 401, 403, 404, 500)

CLIMACELL_REALTIME_FIELDS = [
    "precipitation", "precipitation_type", "temp", "feels_like", "dewpoint",
    "wind_speed", "wind_gust", "baro_pressure", "visibility", "humidity",
    "wind_direction", "sunrise", "sunset", "cloud_cover", "cloud_ceiling",
    "cloud_base", "surface_shortwave_radiation", "moon_phase", "weather_code",
]
CLIMACELL_HOURLY_FIELDS = CLIMACELL_REALTIME_FIELDS + ["precipitation_probability"]
CLIMACELL_DAILY_FIELDS = [
    "precipitation", "precipitation_accumulation", "temp", "feels_like",
    "wind_speed", "baro_pressure", "visibility", "humidity", "wind_direction",
    "sunrise", "sunset", "moon_phase", "weather_code", "dewpoint",
]


class WeatherClient:
    base_url = ""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})

    def _headers(self) -> Dict[str, str]:
        return {}

    def _get(self, path: str, params: Optional[Dict] = None):
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            res = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"sending weather data request to {path}: {exc}") from exc

        if res.status_code == 200:
            try:
                return res.json()
            except ValueError as exc:
                raise DecodeError(f"deserializing weather response data from {path}: {exc}") from exc
        if res.status_code in ERROR_BODY_STATUSES:
            raise self._api_error(res)
        raise APIError(res.status_code, f"unexpected HTTP response status code: {res.status_code}")

    def _api_error(self, res) -> APIError:
        try:
            body = res.json()
        except ValueError:
            return APIError(res.status_code, res.text.strip())
        if not isinstance(body, dict):
            return APIError(res.status_code, str(body))
        try:
            status = int(body.get("statusCode") or body.get("code") or res.status_code)
        except (TypeError, ValueError):
            status = res.status_code
        # 401/403 bodies carry no status, so the HTTP one wins.
        if res.status_code in (401, 403):
            status = res.status_code
        message = body.get("message") or body.get("error") or ""
        return APIError(status, str(message), str(body.get("errorCode") or ""))

    def close(self):
        self.session.close()


class DarkSkyClient(WeatherClient):
    base_url = "https://api.darksky.net"

    def forecast(self, lat: float, lon: float, units: str = "us") -> Dict:
        logger.debug("Fetching Dark Sky forecast for %s,%s", lat, lon)
        return self._get(
            f"forecast/{self.api_key}/{lat},{lon}",
            params={"units": units, "exclude": "minutely,hourly,alerts,flags"},
        )


class ClimaCellClient(WeatherClient):
    base_url = "https://api.climacell.co/v3"

    def _headers(self) -> Dict[str, str]:
        return {"apikey": self.api_key}

    @staticmethod
    def _params(lat: float, lon: float, fields, units: str) -> Dict[str, str]:
        return {
            "lat": str(lat),
            "lon": str(lon),
            "unit_system": units,
            "fields": ",".join(fields),
        }

    def realtime(self, lat: float, lon: float, fields=None, units: str = "us") -> Dict:
        logger.debug("Fetching ClimaCell realtime for %s,%s", lat, lon)
        return self._get("weather/realtime", self._params(lat, lon, fields or CLIMACELL_REALTIME_FIELDS, units))

    def hourly_forecast(self, lat: float, lon: float, fields=None, units: str = "us"):
        return self._get("weather/forecast/hourly", self._params(lat, lon, fields or CLIMACELL_HOURLY_FIELDS, units))

    def daily_forecast(self, lat: float, lon: float, fields=None, units: str = "us"):
        logger.debug("Fetching ClimaCell daily forecast for %s,%s", lat, lon)
        return self._get("weather/forecast/daily", self._params(lat, lon, fields or CLIMACELL_DAILY_FIELDS, units))


class OpenWeatherMapClient(WeatherClient):
    base_url = "https://api.openweathermap.org/data/3.0"

    def onecall(self, lat: float, lon: float, units: str = "us") -> Dict:
        logger.debug("Fetching OpenWeatherMap One Call for %s,%s", lat, lon)
        return self._get(
            "onecall",
            params={
                "lat": lat,
                "lon": lon,
                "appid": self.api_key,
                "units": "imperial" if units == "us" else "metric",
                "exclude": "minutely,hourly,alerts",
            },
        )


CLIENTS = {
    "darksky": DarkSkyClient,
    "climacell": ClimaCellClient,
    "owm": OpenWeatherMapClient,
}


def get_client(cfg: Dict, session: Optional[requests.Session] = None) -> WeatherClient:
    weather = cfg.get("weather", {})
    provider = weather.get("provider")
    if provider not in CLIENTS:
        raise ConfigError(f"unknown weather provider {provider!r}")
    api_key = (weather.get("api_keys") or {}).get(provider) or ""
    return CLIENTS[provider](api_key, session=session, timeout=float(weather.get("timeout", DEFAULT_TIMEOUT)))
