"""
Token substitution for the display template.

The template is a plain SVG in which placeholder words such as ``TEMP_NOW``
or ``ICON_TWO`` stand for values. Day one is today, day two tomorrow, and so
forth.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

import arrow

from .errors import TemplateError
from .models import FORECAST_DAYS, Forecast

logger = logging.getLogger(__name__)

MISSING = "--"
KITCHEN_FORMAT = "h:mmA"
WEEKDAY_FORMAT = "dddd"
UPDATED_FORMAT = "dddd MMM D HH:mm"

DAY_WORDS = ("ONE", "TWO", "THREE", "FOUR")

TOKEN_NAMES = frozenset(
    ["TEMP_NOW", "FEELS_LIKE", "HUMIDITY", "WIND_SPEED", "WIND_DIR",
     "SUNRISE", "SUNSET", "MOON_PHASE", "SUMMARY", "DATE_STRING"]
    + [f"HIGH_{w}" for w in DAY_WORDS]
    + [f"LOW_{w}" for w in DAY_WORDS]
    + [f"ICON_{w}" for w in DAY_WORDS]
    + [f"DAY_{w}" for w in DAY_WORDS[1:]]
)

PLACEHOLDER_RE = re.compile(r"\b[A-Z]{2,}(?:_[A-Z]{2,})+\b")


def _number(value: Optional[float]) -> str:
    if value is None:
        return MISSING
    text = f"{value:.0f}"
    return "0" if text == "-0" else text


def _time(value: Optional[datetime], tz: str, fmt: str) -> str:
    if value is None:
        return MISSING
    return arrow.get(value).to(tz).format(fmt)


def build_tokens(forecast: Forecast, now: Optional[datetime] = None) -> Dict[str, str]:
    if len(forecast.days) < FORECAST_DAYS:
        raise TemplateError(f"need {FORECAST_DAYS} forecast days, got {len(forecast.days)}")
    tz = forecast.timezone
    current = forecast.current
    today = forecast.today
    updated = arrow.get(now).to(tz) if now is not None else arrow.now(tz)

    tokens = {
        "TEMP_NOW": _number(current.temperature),
        "FEELS_LIKE": _number(current.feels_like),
        "HUMIDITY": _number(current.humidity),
        "WIND_SPEED": _number(current.wind_speed),
        "WIND_DIR": _number(current.wind_bearing),
        "SUMMARY": current.summary or MISSING,
        "SUNRISE": _time(today.sunrise, tz, KITCHEN_FORMAT),
        "SUNSET": _time(today.sunset, tz, KITCHEN_FORMAT),
        "MOON_PHASE": today.moon_phase or MISSING,
        "DATE_STRING": updated.format(UPDATED_FORMAT),
        "ICON_ONE": current.icon,
    }
    for word, day in zip(DAY_WORDS, forecast.days):
        tokens[f"HIGH_{word}"] = _number(day.high)
        tokens[f"LOW_{word}"] = _number(day.low)
        if word != "ONE":
            tokens[f"ICON_{word}"] = day.icon
            tokens[f"DAY_{word}"] = _time(day.day, tz, WEEKDAY_FORMAT)
    return tokens


def substitute(svg: str, tokens: Dict[str, str]) -> str:
    """Replace every token in one pass, longest first.

    Values are never re-scanned, so a value that happens to contain another
    token's name stays as it is.
    """
    if not tokens:
        return svg
    pattern = re.compile("|".join(re.escape(t) for t in sorted(tokens, key=len, reverse=True)))
    return pattern.sub(lambda m: escape(tokens[m.group(0)]), svg)


def unresolved_tokens(svg: str) -> List[str]:
    found = set(PLACEHOLDER_RE.findall(svg))
    found.update(name for name in TOKEN_NAMES if name in svg)
    return sorted(found)


def render_template(path: str, tokens: Dict[str, str], strict: bool = True) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            svg = f.read()
    except OSError as exc:
        raise TemplateError(f"reading template {path}: {exc}") from exc

    out = substitute(svg, tokens)
    leftover = unresolved_tokens(out)
    if leftover:
        if strict:
            raise TemplateError(f"unresolved placeholders in {path}: {', '.join(leftover)}")
        logger.warning("Unresolved placeholders in %s: %s", path, ", ".join(leftover))
    return out
