"""
Pytest fixtures: vendor payloads from tests/fixtures, a config pointing at a
temporary output directory, and a fake requests session.
"""
from __future__ import annotations

import copy
import json
import os
from datetime import datetime, timezone

import pytest

from kindle_weather.config import DEFAULT_CONFIG

FIXTURE_DIR = os.path.join(os.path.dirname(__file__), "fixtures")

# 2020-06-01 15:04 UTC, a Monday.
FIXED_NOW = datetime(2020, 6, 1, 15, 4, tzinfo=timezone.utc)


def load_fixture(name):
    with open(os.path.join(FIXTURE_DIR, name)) as f:
        return json.load(f)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            return json.loads(self.text)
        return self._body


class FakeSession:
    """Stands in for requests.Session; answers GETs from a url-suffix -> response map."""

    def __init__(self, routes=None, error=None):
        self.headers = {}
        self.routes = routes or {}
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                return response
        return FakeResponse(404, {"message": f"no route for {url}"})

    def close(self):
        self.closed = True


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def darksky_payload():
    return load_fixture("darksky.json")


@pytest.fixture
def climacell_payloads():
    return load_fixture("climacell_realtime.json"), load_fixture("climacell_daily.json")


@pytest.fixture
def owm_payload():
    return load_fixture("owm_onecall.json")


@pytest.fixture
def cfg(tmp_path):
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["weather"].update({"provider": "darksky", "latitude": 40.7128, "longitude": -74.006})
    config["weather"]["api_keys"]["darksky"] = "test-key"
    config["render"]["output_dir"] = str(tmp_path / "output")
    return config


@pytest.fixture
def darksky_session(darksky_payload):
    return FakeSession({"/40.7128,-74.006": FakeResponse(200, darksky_payload)})
