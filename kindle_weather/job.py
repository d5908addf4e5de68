"""
The generation cycle (fetch -> decode -> substitute -> write -> convert) and
the cron schedule that drives it.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

import arrow
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .errors import ConfigError, WeatherError
from .normalize import fetch_forecast, resolve_tz
from .providers import WeatherClient, get_client
from .raster import rasterize, to_kindle_grayscale, write_atomic
from .template import build_tokens, render_template

logger = logging.getLogger(__name__)

SVG_NAME = "output.svg"
PNG_NAME = "output.png"
JOB_ID = "generate"


@dataclass
class GenerationResult:
    svg_path: str
    png_path: str
    generated_at: datetime
    provider: str


# Shared with the web server; guarded by _status_lock.
status: Dict = {
    "last_success": None,
    "last_error": None,
    "last_error_at": None,
    "runs": 0,
}
_status_lock = threading.Lock()


def status_snapshot() -> Dict:
    with _status_lock:
        return dict(status)


def output_paths(cfg: Dict):
    out_dir = cfg["render"]["output_dir"]
    return os.path.join(out_dir, SVG_NAME), os.path.join(out_dir, PNG_NAME)


def generate(cfg: Dict, client: Optional[WeatherClient] = None, now: Optional[datetime] = None) -> GenerationResult:
    render = cfg["render"]
    svg_path, png_path = output_paths(cfg)
    os.makedirs(render["output_dir"], exist_ok=True)

    own_client = client is None
    client = client or get_client(cfg)
    try:
        forecast = fetch_forecast(client, cfg)
    finally:
        if own_client:
            client.close()
    logger.info(
        "Fetched %s forecast: %s°, %d days",
        forecast.provider, forecast.current.temperature, len(forecast.days),
    )

    tokens = build_tokens(forecast, now=now)
    svg = render_template(render["template"], tokens, strict=bool(render.get("strict", True)))
    write_atomic(svg_path, lambda f: f.write(svg.encode("utf-8")))

    # Rasterize beside the output so the served PNG is only ever replaced whole.
    # Each run stages its own file; overlapping runs resolve as last write wins.
    fd, staging = tempfile.mkstemp(dir=render["output_dir"], prefix=".render-", suffix=".png")
    os.close(fd)
    try:
        rasterize(svg_path, staging, render.get("rasterizer", "rsvg-convert"))
        to_kindle_grayscale(staging, levels=int(render.get("gray_levels", 16)), rotate=int(render.get("rotate", 0)))
        os.replace(staging, png_path)
    finally:
        if os.path.exists(staging):
            os.unlink(staging)

    generated_at = arrow.get(now).datetime if now is not None else arrow.utcnow().datetime
    logger.info("Wrote %s and %s", svg_path, png_path)
    return GenerationResult(svg_path=svg_path, png_path=png_path, generated_at=generated_at, provider=forecast.provider)


def run_job(cfg_getter: Callable[[], Dict], generator: Optional[Callable[[Dict], GenerationResult]] = None) -> Optional[GenerationResult]:
    """Scheduled entry point: one cycle, failures are logged and the next tick retries.

    ``cfg_getter`` is called per run so a reloaded config applies to the next
    cycle. ``generator`` defaults to :func:`generate`.
    """
    generator = generator or generate
    cfg = cfg_getter()
    with _status_lock:
        status["runs"] += 1
    try:
        result = generator(cfg)
    except WeatherError as exc:
        logger.error("Generation failed, skipping this cycle: %s", exc)
        _record_error(exc)
        return None
    except Exception as exc:
        logger.exception("Unexpected error during generation")
        _record_error(exc)
        return None
    with _status_lock:
        status["last_success"] = result.generated_at.isoformat()
    return result


def _record_error(exc: BaseException):
    with _status_lock:
        status["last_error"] = f"{type(exc).__name__}: {exc}"
        status["last_error_at"] = arrow.utcnow().isoformat()


def cron_trigger(expression: str, tz: Optional[str] = None) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(expression, timezone=tz or "UTC")
    except ValueError as exc:
        raise ConfigError(f"invalid cron schedule {expression!r}: {exc}") from exc


def build_scheduler(cfg: Dict, job: Callable[[], object]) -> BackgroundScheduler:
    tz = resolve_tz(cfg["weather"].get("timezone"))
    trigger = cron_trigger(cfg["schedule"]["cron"], tz)
    scheduler = BackgroundScheduler(timezone=tz)
    kwargs = {}
    if cfg["schedule"].get("run_on_start", True):
        kwargs["next_run_time"] = arrow.now(tz).datetime
    scheduler.add_job(
        job,
        trigger,
        id=JOB_ID,
        name="generate weather display",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
        **kwargs,
    )
    logger.info("Scheduled generation with cron %r (%s)", cfg["schedule"]["cron"], tz)
    return scheduler


def reschedule(scheduler: BackgroundScheduler, cfg: Dict):
    tz = resolve_tz(cfg["weather"].get("timezone"))
    scheduler.reschedule_job(JOB_ID, trigger=cron_trigger(cfg["schedule"]["cron"], tz))
    logger.info("Rescheduled generation with cron %r", cfg["schedule"]["cron"])
