"""Shared fixtures for header monitor tests."""

from datetime import datetime

import pytest

from header_monitor.errors import FetchFailure
from header_monitor.models import ActiveStage, Reading, StageHeader
from header_monitor.store import AlertStore, Database, HeaderStore, ProjectStore
from header_monitor.telemetry_client import TelemetryClient

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0)


class FakeTelemetryClient(TelemetryClient):
    """In-memory provider. Values may be Readings or exceptions to raise."""

    def __init__(self):
        self.readings: dict[str, Reading | Exception] = {}
        self.active_stages: list[ActiveStage] = []
        self.stage_headers: dict[str, list[StageHeader] | Exception] = {}
        self.fetched: list[str] = []

    def get(self, path, params=None):
        raise FetchFailure(f"No route for {path}")

    def fetch_reading(self, header_id):
        self.fetched.append(header_id)
        reading = self.readings.get(header_id)
        if reading is None:
            raise FetchFailure(f"Unknown header {header_id}", header_id=header_id)
        if isinstance(reading, Exception):
            raise reading
        return reading

    def get_active_stages(self):
        return list(self.active_stages)

    def get_stage_headers(self, stage_id):
        headers = self.stage_headers.get(stage_id, [])
        if isinstance(headers, Exception):
            raise headers
        return list(headers)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database per test."""
    return Database(str(tmp_path / "monitor.db"))


@pytest.fixture
def header_store(db):
    return HeaderStore(db)


@pytest.fixture
def alert_store(db):
    return AlertStore(db)


@pytest.fixture
def project_store(db):
    return ProjectStore(db)


@pytest.fixture
def telemetry():
    return FakeTelemetryClient()


def loading(value, ts="2024-06-01T12:00:00Z"):
    """Reading from an operation that is actively producing data."""
    return Reading(value=value, timestamp=ts, telemetry_state="LOADING")


def ended(value, ts="2024-06-01T12:00:00Z"):
    return Reading(value=value, timestamp=ts, telemetry_state="ENDED")
