# -*- coding:utf8 -*-
import argparse
import logging
import os
import sys
import time

from flask import Flask, jsonify, redirect, send_file, url_for
from watchdog.observers import Observer

from . import job
from .config import ConfigFileHandler, load_config, validate_config
from .errors import WeatherError

logger = logging.getLogger(__name__)

app = Flask(__name__)

current_config = None
scheduler = None


def get_config():
    return current_config


def _schedule_key(cfg):
    return cfg["schedule"]["cron"], cfg["weather"].get("timezone")


def update_app_config(cfg):
    global current_config
    previous = current_config
    current_config = cfg
    if scheduler is not None and previous is not None and _schedule_key(previous) != _schedule_key(cfg):
        try:
            job.reschedule(scheduler, cfg)
        except WeatherError as exc:
            logger.error("Keeping previous schedule: %s", exc)


# ------------------------------------------------------------------
# ROUTES
# ------------------------------------------------------------------
def _send_output(path, mimetype):
    if not path or not os.path.exists(path):
        return jsonify({"error": "no image generated yet"}), 404
    response = send_file(os.path.abspath(path), mimetype=mimetype, max_age=0)
    response.headers["Cache-Control"] = "no-cache"
    return response


@app.route("/")
def index():
    return redirect(url_for("weather_png"))


@app.route("/weather.png")
def weather_png():
    _, png_path = job.output_paths(current_config)
    return _send_output(png_path, "image/png")


@app.route("/weather.svg")
def weather_svg():
    svg_path, _ = job.output_paths(current_config)
    return _send_output(svg_path, "image/svg+xml")


@app.route("/status", methods=["GET"])
def status_get():
    snapshot = job.status_snapshot()
    snapshot.update({
        "provider": current_config["weather"]["provider"],
        "schedule": current_config["schedule"]["cron"],
    })
    if scheduler is not None:
        scheduled = scheduler.get_job(job.JOB_ID)
        if scheduled is not None and scheduled.next_run_time is not None:
            snapshot["next_run"] = scheduled.next_run_time.isoformat()
    return jsonify(snapshot)


@app.route("/refresh", methods=["POST"])
def refresh():
    result = job.run_job(get_config)
    snapshot = job.status_snapshot()
    if result is None:
        return jsonify({"ok": False, "error": snapshot["last_error"]}), 502
    return jsonify({"ok": True, "generated_at": snapshot["last_success"]})


# ------------------------------------------------------------------
# MAIN
# ------------------------------------------------------------------
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate and serve a Kindle weather display.")
    parser.add_argument("--config", help="YAML config file (default: $CONFIG_PATH or ./config.yaml)")
    parser.add_argument("--once", action="store_true", help="Run one generation cycle and exit.")
    parser.add_argument("--no-serve", action="store_true", help="Run the schedule without the file server.")
    return parser.parse_args(argv)


def _start_watcher(cfg_path):
    directory = os.path.dirname(os.path.abspath(cfg_path))
    if not os.path.isdir(directory):
        return None
    observer = Observer()
    observer.schedule(ConfigFileHandler(cfg_path, update_app_config), directory, recursive=False)
    observer.daemon = True
    observer.start()
    return observer


def main(argv=None):
    global scheduler
    args = parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg_path = args.config or os.getenv("CONFIG_PATH") or "config.yaml"
    try:
        update_app_config(validate_config(load_config(cfg_path)))
    except WeatherError as exc:
        logger.error("%s", exc)
        return 2

    if args.once:
        try:
            result = job.generate(current_config)
        except WeatherError as exc:
            logger.error("Generation failed: %s", exc)
            return 1
        print(result.png_path)
        return 0

    try:
        scheduler = job.build_scheduler(current_config, lambda: job.run_job(get_config))
    except WeatherError as exc:
        logger.error("%s", exc)
        return 2
    observer = _start_watcher(cfg_path)
    scheduler.start()
    try:
        if args.no_serve:
            while True:
                time.sleep(3600)
        else:
            server = current_config["server"]
            app.run(host=server["host"], port=int(server["port"]), use_reloader=False, threaded=True)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.shutdown(wait=False)
        if observer is not None:
            observer.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
