"""Telemetry provider client.

Fetches the latest reading of a header and the stage/header directory, and
normalizes the provider's response shapes into Reading objects.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import requests

from .config import config
from .errors import FetchFailure
from .models import ActiveStage, Reading, StageHeader

logger = logging.getLogger(__name__)


def normalize_timestamp(value: Any) -> str | None:
    """Convert epoch milliseconds or an ISO string to an ISO-8601 UTC string."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Unparseable provider timestamp: {value!r}")
        return None
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _latest_point(points: list) -> tuple[float | None, Any]:
    """Last non-null value in a series of [ts, value] pairs or {timestamp, value} objects."""
    value, timestamp = None, None
    for point in reversed(points):
        if point is None:
            continue
        if isinstance(point, (list, tuple)) and len(point) >= 2:
            value, timestamp = _to_number(point[1]), point[0]
        elif isinstance(point, dict):
            value, timestamp = _to_number(point.get("value")), point.get("timestamp")
        else:
            value, timestamp = _to_number(point), None
        if value is not None:
            break
    return value, timestamp


def normalize_reading(payload: dict) -> Reading:
    """Normalize a datum response.

    Supported shapes, tried in order:
        {"datum": {"value": v, "timestamp": t}}
        {"data": {"data": [[t, v], ...] | [{"timestamp": t, "value": v}, ...],
                  "startTimestamp": t0, "endTimestamp": t1, "state": s}}
        {"value": v, "timestamp": t}

    The state is read from data.state. A missing timestamp falls back to now.
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    state = data.get("state")
    value, timestamp = None, None

    datum = payload.get("datum")
    if isinstance(datum, dict) and "value" in datum:
        value, timestamp = _to_number(datum.get("value")), datum.get("timestamp")
    elif isinstance(data.get("data"), list):
        value, timestamp = _latest_point(data["data"])
        if not timestamp:
            timestamp = data.get("endTimestamp") or data.get("startTimestamp")
    elif "value" in payload:
        value, timestamp = _to_number(payload.get("value")), payload.get("timestamp")

    iso_timestamp = normalize_timestamp(timestamp)
    if iso_timestamp is None:
        iso_timestamp = normalize_timestamp(datetime.now(timezone.utc).isoformat())

    return Reading(value=value, timestamp=iso_timestamp, telemetry_state=state)


def _list_items(payload: Any, key: str) -> list[dict]:
    """Dict items of payload[key]; a missing key means an empty list.

    Raises:
        FetchFailure: If the payload or payload[key] has the wrong shape
    """
    if payload is None:
        return []
    if not isinstance(payload, dict):
        raise FetchFailure(f"Malformed response: expected an object, got {type(payload).__name__}")
    items = payload.get(key, [])
    if not isinstance(items, list):
        raise FetchFailure(f"Malformed response: '{key}' is {type(items).__name__}, not a list")
    return [item for item in items if isinstance(item, dict)]


class TelemetryClient(ABC):
    """Abstract telemetry client - implement for different backends."""

    @abstractmethod
    def get(self, path: str, params: dict | None = None) -> dict:
        """GET a provider resource.

        Raises:
            FetchFailure: On transport errors, timeouts or non-2xx responses
        """
        pass

    def fetch_reading(self, header_id: str) -> Reading:
        """Latest reading of one header."""
        try:
            payload = self.get(f"stages/datum/{header_id}")
        except FetchFailure as e:
            e.header_id = header_id
            raise
        if payload is not None and not isinstance(payload, dict):
            raise FetchFailure(f"Malformed datum response: {type(payload).__name__}", header_id=header_id)
        reading = normalize_reading(payload or {})
        logger.debug(
            f"Header {header_id}: value={reading.value} state={reading.telemetry_state} "
            f"timestamp={reading.timestamp}"
        )
        return reading

    def get_active_stages(self) -> list[ActiveStage]:
        """Stages the provider reports as active, one per project."""
        stages = []
        for item in _list_items(self.get("stages/active/stages"), "stages"):
            if not item.get("projectId") or not item.get("stageId"):
                continue
            stages.append(ActiveStage(
                project_id=str(item["projectId"]),
                stage_id=str(item["stageId"]),
                company_id=str(item["companyId"]) if item.get("companyId") else None,
                company_name=item.get("companyName"),
                project_name=item.get("projectName"),
            ))
        return stages

    def get_stage_headers(self, stage_id: str) -> list[StageHeader]:
        """Headers defined for a stage."""
        return [
            StageHeader(id=str(h["id"]), name=h.get("name") or "")
            for h in _list_items(self.get(f"stages/{stage_id}/headers"), "headers")
            if h.get("id") is not None
        ]


class HTTPTelemetryClient(TelemetryClient):
    """Client for the telemetry REST API (bearer token auth)."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or config.TELEMETRY_API_BASE).rstrip("/")
        self.timeout = timeout or config.FETCH_TIMEOUT
        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        token = token or config.TELEMETRY_API_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def get(self, path: str, params: dict | None = None) -> dict:
        """GET request to the provider."""
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.Timeout as e:
            raise FetchFailure(f"Timed out after {self.timeout}s: {url}") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise FetchFailure(f"Provider returned {status} for {url}") from e
        except requests.RequestException as e:
            raise FetchFailure(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise FetchFailure(f"Invalid JSON from {url}") from e


def get_telemetry_client() -> TelemetryClient:
    """Factory function - returns the configured client."""
    if not config.is_telemetry_configured():
        logger.warning("TELEMETRY_API_TOKEN not set; provider requests will be unauthenticated")
    return HTTPTelemetryClient()
