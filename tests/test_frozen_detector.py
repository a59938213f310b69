"""Unit tests for the frozen value detector."""

from datetime import timedelta

import pytest

from header_monitor.models import AlertType, MonitoredHeader
from header_monitor.rules import FrozenDetector

from conftest import BASE_TIME


def make_header(**overrides) -> MonitoredHeader:
    fields = dict(
        project_id="p1",
        header_id="h7",
        header_name="Tubing Pressure",
        threshold=100.0,
        alert_duration=120,
        frozen_threshold=60,
    )
    fields.update(overrides)
    return MonitoredHeader(**fields)


def apply(header, result):
    for key, value in result.state_update.items():
        setattr(header, key, value)


def at(seconds: float):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def detector():
    return FrozenDetector(default_frozen_threshold=120)


class TestFrozenSequence:
    """Test alerting on unchanged values."""

    def test_first_value_only_records_anchor(self, detector):
        header = make_header()
        result = detector.evaluate(header, 5, at(0))

        assert result.alert is None
        assert result.state_update == {"last_value": 5, "last_value_time": at(0)}

    def test_sequence_alerts_once_then_resets_on_change(self, detector):
        """[5, 5, 5, 6] every 30s with a 60s threshold."""
        header = make_header(frozen_threshold=60)
        outcomes = []
        for seconds, value in ((0, 5), (30, 5), (60, 5), (90, 6)):
            result = detector.evaluate(header, value, at(seconds))
            apply(header, result)
            outcomes.append(result)

        assert [r.alert is not None for r in outcomes] == [False, False, True, False]

        alert = outcomes[2].alert
        assert alert.id == "frozen_p1_h7"
        assert alert.alert_type == AlertType.FROZEN
        assert alert.duration_seconds == 60

        reset = outcomes[3]
        assert reset.delete_alert_id == "frozen_p1_h7"
        assert header.last_frozen_alert_time is None
        assert header.last_value == 6
        assert header.last_value_time == at(90)

    def test_zero_is_a_valid_value(self, detector):
        header = make_header(frozen_threshold=60)
        apply(header, detector.evaluate(header, 0, at(0)))

        assert header.last_value == 0
        assert detector.evaluate(header, 0, at(60)).alert is not None

    def test_change_without_prior_alert_has_no_delete(self, detector):
        header = make_header(last_value=5, last_value_time=at(0))
        result = detector.evaluate(header, 6, at(30))
        assert result.delete_alert_id is None

    def test_duration_is_at_least_one_second(self, detector):
        header = make_header(frozen_threshold=0, last_value=5, last_value_time=at(0))
        result = detector.evaluate(header, 5, at(0.2))

        assert result.alert is not None
        assert result.alert.duration_seconds == 1

    def test_default_threshold_used_when_unset(self, detector):
        header = make_header(frozen_threshold=None, last_value=5, last_value_time=at(0))
        assert detector.evaluate(header, 5, at(119)).alert is None
        assert detector.evaluate(header, 5, at(120)).alert is not None


class TestFrozenCooldown:
    """Test re-alerting while the value stays frozen."""

    def test_suppressed_within_cooldown(self, detector):
        header = make_header(last_value=5, last_value_time=at(0), last_frozen_alert_time=at(60))
        result = detector.evaluate(header, 5, at(1800))

        assert result.alert is None
        assert result.state_update == {}

    def test_recurring_after_cooldown(self, detector):
        header = make_header(last_value=5, last_value_time=at(0), last_frozen_alert_time=at(60))
        result = detector.evaluate(header, 5, at(3660))

        assert result.alert is not None
        assert result.alert.duration_seconds == 3660
        assert result.state_update == {"last_frozen_alert_time": at(3660)}
