from __future__ import annotations

import os

import pytest
from PIL import Image

from kindle_weather import app as app_module
from kindle_weather import job
from kindle_weather.errors import FetchError


@pytest.fixture
def client(cfg, monkeypatch):
    monkeypatch.setattr(app_module, "current_config", cfg)
    monkeypatch.setattr(app_module, "scheduler", None)
    job.status.update({"last_success": None, "last_error": None, "last_error_at": None, "runs": 0})
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


def _write_outputs(cfg):
    svg_path, png_path = job.output_paths(cfg)
    os.makedirs(os.path.dirname(svg_path), exist_ok=True)
    with open(svg_path, "w") as f:
        f.write("<svg/>")
    Image.new("L", (600, 800), 255).save(png_path)


def test_index_redirects_to_png(client):
    res = client.get("/")
    assert res.status_code == 302
    assert res.headers["Location"].endswith("/weather.png")


def test_png_missing_before_first_cycle(client):
    res = client.get("/weather.png")
    assert res.status_code == 404
    assert res.get_json() == {"error": "no image generated yet"}


def test_serves_latest_outputs(client, cfg):
    _write_outputs(cfg)
    png = client.get("/weather.png")
    assert png.status_code == 200
    assert png.mimetype == "image/png"
    assert png.headers["Cache-Control"] == "no-cache"
    assert png.data[:8] == b"\x89PNG\r\n\x1a\n"
    png.close()

    svg = client.get("/weather.svg")
    assert svg.status_code == 200
    assert svg.mimetype == "image/svg+xml"
    assert svg.data == b"<svg/>"
    svg.close()


def test_status(client):
    job.status["last_error"] = "FetchError: timed out"
    data = client.get("/status").get_json()
    assert data["provider"] == "darksky"
    assert data["schedule"] == "*/30 * * * *"
    assert data["last_error"] == "FetchError: timed out"
    assert data["last_success"] is None


def test_refresh_success(client, cfg, monkeypatch, fixed_now):
    def fake_generate(c):
        assert c is cfg
        return job.GenerationResult("a.svg", "a.png", fixed_now, "darksky")

    monkeypatch.setattr(job, "generate", fake_generate)
    res = client.post("/refresh")
    assert res.status_code == 200
    assert res.get_json() == {"ok": True, "generated_at": fixed_now.isoformat()}


def test_refresh_failure(client, monkeypatch):
    def fake_generate(c):
        raise FetchError("sending weather data request: timed out")

    monkeypatch.setattr(job, "generate", fake_generate)
    res = client.post("/refresh")
    assert res.status_code == 502
    assert res.get_json()["error"] == "FetchError: sending weather data request: timed out"


def test_refresh_requires_post(client):
    assert client.get("/refresh").status_code == 405


def test_update_app_config_swaps_config(client, cfg, monkeypatch):
    new_cfg = dict(cfg, weather=dict(cfg["weather"], provider="owm"))
    app_module.update_app_config(new_cfg)
    assert app_module.get_config() is new_cfg


def _trigger_fields(scheduler):
    trigger = scheduler.get_job(job.JOB_ID).trigger
    return {f.name: str(f) for f in trigger.fields}, str(trigger.timezone)


@pytest.fixture
def live_scheduler(cfg, monkeypatch):
    cfg["weather"]["timezone"] = "America/New_York"
    scheduler = job.build_scheduler(cfg, lambda: None)
    monkeypatch.setattr(app_module, "current_config", cfg)
    monkeypatch.setattr(app_module, "scheduler", scheduler)
    return scheduler


def test_config_reload_reschedules_on_new_cron(cfg, live_scheduler):
    new_cfg = dict(cfg, schedule=dict(cfg["schedule"], cron="5 6-22 * * *"))
    app_module.update_app_config(new_cfg)
    fields, tz = _trigger_fields(live_scheduler)
    assert fields["minute"] == "5"
    assert fields["hour"] == "6-22"
    assert tz == "America/New_York"


def test_config_reload_reschedules_on_new_timezone(cfg, live_scheduler):
    new_cfg = dict(cfg, weather=dict(cfg["weather"], timezone="Europe/Berlin"))
    app_module.update_app_config(new_cfg)
    fields, tz = _trigger_fields(live_scheduler)
    assert fields["minute"] == "*/30"
    assert tz == "Europe/Berlin"


def test_config_reload_with_bad_cron_keeps_schedule(cfg, live_scheduler, caplog):
    new_cfg = dict(cfg, schedule=dict(cfg["schedule"], cron="61 * * * *"))
    app_module.update_app_config(new_cfg)
    fields, _ = _trigger_fields(live_scheduler)
    assert fields["minute"] == "*/30"
    assert "Keeping previous schedule" in caplog.text


def test_main_once_reports_config_errors(monkeypatch, tmp_path):
    monkeypatch.delenv("DARKSKY_API_KEY", raising=False)
    monkeypatch.setenv("WEATHER_PROVIDER", "darksky")
    assert app_module.main(["--once", "--config", str(tmp_path / "none.yaml")]) == 2


def test_main_once_runs_a_single_cycle(monkeypatch, tmp_path, capsys, fixed_now):
    monkeypatch.setenv("WEATHER_PROVIDER", "darksky")
    monkeypatch.setenv("DARKSKY_API_KEY", "k")
    monkeypatch.setenv("LATITUDE", "1")
    monkeypatch.setenv("LONGITUDE", "2")
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path))
    monkeypatch.setattr(app_module, "current_config", None)
    monkeypatch.setattr(
        job, "generate",
        lambda c: job.GenerationResult("x.svg", str(tmp_path / "output.png"), fixed_now, "darksky"),
    )
    assert app_module.main(["--once", "--config", str(tmp_path / "none.yaml")]) == 0
    assert capsys.readouterr().out.strip() == str(tmp_path / "output.png")


def test_main_once_failure_exit_code(monkeypatch, tmp_path):
    monkeypatch.setenv("WEATHER_PROVIDER", "darksky")
    monkeypatch.setenv("DARKSKY_API_KEY", "k")
    monkeypatch.setenv("LATITUDE", "1")
    monkeypatch.setenv("LONGITUDE", "2")
    monkeypatch.setattr(app_module, "current_config", None)

    def boom(c):
        raise FetchError("offline")

    monkeypatch.setattr(job, "generate", boom)
    assert app_module.main(["--once", "--config", str(tmp_path / "none.yaml")]) == 1
