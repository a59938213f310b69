"""Tests for the polling cycle and administrative operations."""

from datetime import timedelta

import pytest

from header_monitor.errors import FetchFailure, PersistenceFailure
from header_monitor.models import ActiveStage, StageHeader
from header_monitor.monitor import HeaderMonitor
from header_monitor.runtime import UNHEALTHY_AFTER_ERRORS
from header_monitor.telemetry_client import TelemetryClient

from conftest import BASE_TIME, FakeTelemetryClient, loading


def at(seconds: float):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def monitor(db, telemetry):
    return HeaderMonitor(telemetry_client=telemetry, db=db, max_workers=4)


@pytest.fixture
def project(monitor):
    monitor.register_active_stages([ActiveStage("p1", "s1", company_id="c1")])
    monitor.header_store.upsert_settings("p1", "101", "Casing Pressure", threshold=100.0, alert_duration=0, frozen_threshold=7200)
    monitor.header_store.upsert_settings("p1", "102", "Battery", threshold=20.0, alert_duration=0, frozen_threshold=7200)


class TestRunOnce:
    """Test a single polling cycle."""

    def test_cycle_collects_values_and_alerts(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(50), "102": loading(80)}

        monitor.run_once(now=at(0))
        result = monitor.run_once(now=at(10))

        assert result.processed_headers == 2
        assert result.errors == []
        assert {h.header_id for h in result.header_values} == {"101", "102"}
        assert [a.id for a in result.alerts] == ["threshold_p1_101"]
        assert result.alerts[0].company_id == "c1"
        assert result.alerts[0].stage_id == "s1"
        assert monitor.alerts_generated == 1

    def test_header_values_serialize(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(50, ts="2024-06-01T12:00:05Z"), "102": loading(80)}

        values = monitor.run_once(now=at(0)).to_dict()["headerValues"]
        first = next(v for v in values if v["id"] == "101")
        assert first == {
            "id": "101",
            "name": "Casing Pressure",
            "value": 50,
            "timestamp": "2024-06-01T12:00:05Z",
            "state": "LOADING",
            "projectId": "p1",
            "stageId": "s1",
            "companyId": "c1",
            "alert": None,
        }

    def test_fetch_failure_isolated(self, monitor, telemetry, project):
        telemetry.readings = {"101": FetchFailure("timeout"), "102": loading(80)}

        result = monitor.run_once(now=at(0))

        assert result.processed_headers == 1
        assert result.errors == [{
            "project_id": "p1",
            "header_id": "101",
            "header_name": "Casing Pressure",
            "error": "timeout",
        }]
        assert monitor.header_store.get_header("p1", "101").last_value is None
        assert monitor.header_store.get_header("p1", "102").last_value == 80

    def test_restricted_cycle(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(150), "102": loading(80)}

        result = monitor.run_once(header_ids=["102"], now=at(0))

        assert telemetry.fetched == ["102"]
        assert [h.header_id for h in result.header_values] == ["102"]

    def test_unmonitored_headers_not_fetched(self, monitor, telemetry, project):
        monitor.unmonitor_header("p1", "101")
        telemetry.readings = {"102": loading(80)}

        monitor.run_once(now=at(0))
        assert telemetry.fetched == ["102"]

    def test_overlapping_cycle_skipped(self, monitor, project):
        monitor._cycle_lock.acquire()
        try:
            result = monitor.run_once()
        finally:
            monitor._cycle_lock.release()

        assert result.skipped == "cycle_in_progress"
        assert result.processed_headers == 0

    def test_no_cycle_after_stop(self, monitor, project):
        monitor.stop()
        assert monitor.run_once().skipped == "shutting_down"

    def test_stop_between_headers(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(150), "102": loading(80)}
        evaluate = monitor.engine.evaluate

        def evaluate_then_stop(*args, **kwargs):
            result = evaluate(*args, **kwargs)
            monitor.stop()
            return result

        monitor.engine.evaluate = evaluate_then_stop
        result = monitor.run_once(now=at(0))

        assert result.cancelled is True
        assert result.processed_headers == 1


class TestHealth:
    """Test consecutive failure tracking."""

    def test_unhealthy_after_repeated_total_failure(self, monitor, telemetry, project):
        telemetry.readings = {"101": FetchFailure("down"), "102": FetchFailure("down")}

        for _ in range(UNHEALTHY_AFTER_ERRORS):
            monitor.run_once(now=at(0))

        assert monitor.health.is_healthy is False
        assert monitor.get_status()["consecutive_errors"] == UNHEALTHY_AFTER_ERRORS

    def test_success_resets_errors(self, monitor, telemetry, project):
        telemetry.readings = {"101": FetchFailure("down"), "102": FetchFailure("down")}
        monitor.run_once(now=at(0))

        telemetry.readings = {"101": loading(150), "102": loading(80)}
        monitor.run_once(now=at(30))

        assert monitor.health.consecutive_errors == 0
        assert monitor.health.is_healthy is True


class TestStageTransitions:
    """Test detection of stage changes from the provider."""

    def test_transition_migrates_and_advances_stage(self, monitor, telemetry, project):
        telemetry.active_stages = [ActiveStage("p1", "s2", company_id="c1")]
        telemetry.stage_headers["s2"] = [StageHeader("201", "Casing Pressure"), StageHeader("202", "BATTERY")]

        transitions = monitor.detect_stage_transitions()

        assert transitions == [{
            "project_id": "p1",
            "old_stage_id": "s1",
            "new_stage_id": "s2",
            "migrated": True,
        }]
        assert monitor.project_store.get_current_stage("p1") == "s2"
        assert [h.header_id for h in monitor.list_monitored_headers("p1")] == ["201", "202"]

    def test_failed_migration_retried_next_cycle(self, monitor, telemetry, project):
        telemetry.active_stages = [ActiveStage("p1", "s2")]
        telemetry.stage_headers["s2"] = FetchFailure("down")

        assert monitor.detect_stage_transitions()[0]["migrated"] is False
        assert monitor.project_store.get_current_stage("p1") == "s1"

        telemetry.stage_headers["s2"] = [StageHeader("201", "Casing Pressure")]
        assert monitor.detect_stage_transitions()[0]["migrated"] is True

    def test_new_project_registered(self, monitor, telemetry):
        telemetry.active_stages = [ActiveStage("p5", "s50")]

        assert monitor.detect_stage_transitions() == []
        assert monitor.project_store.get_current_stage("p5") == "s50"

    def test_full_cycle_reconciles_duplicates(self, monitor, telemetry, project):
        monitor.header_store.upsert_settings("p1", "150", "battery", threshold=20.0)
        telemetry.readings = {"101": loading(150), "102": loading(80), "150": loading(80)}

        monitor.run_once(now=at(0))

        assert monitor.header_store.get_header("p1", "102").is_monitored is False
        assert monitor.header_store.get_header("p1", "150").is_monitored is True


class TestAdministration:
    """Test administrative entry points."""

    def test_monitor_header_applies_category_defaults(self, monitor):
        header = monitor.monitor_header("p1", "301", "Casing Pressure (psi)")

        assert (header.threshold, header.alert_duration, header.frozen_threshold) == (100.0, 120, 60)

    def test_explicit_settings_kept(self, monitor):
        header = monitor.monitor_header("p1", "302", "Battery Volts", threshold=0, frozen_threshold=30)

        assert header.threshold == 0
        assert header.alert_duration == 300
        assert header.frozen_threshold == 30

    def test_unknown_category_left_unset(self, monitor):
        header = monitor.monitor_header("p1", "303", "Flow Rate")
        assert header.threshold is None

    def test_snooze_and_dismiss(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(50), "102": loading(80)}
        monitor.run_once(now=at(0))
        monitor.run_once(now=at(10))

        snooze = monitor.snooze_alert("threshold_p1_101", 900)
        assert snooze is not None
        assert monitor.list_active_alerts()[0].snoozed is True

        assert monitor.dismiss_alert("threshold_p1_101") is True
        assert monitor.list_active_alerts() == []

    def test_snooze_unknown_alert(self, monitor):
        assert monitor.snooze_alert("threshold_p1_nope", 900) is None
        assert monitor.dismiss_alert("threshold_p1_nope") is False

    def test_manual_migration_advances_stage(self, monitor, project):
        monitor.project_store.register_stage(ActiveStage("p1", "s2"))

        assert monitor.migrate_stage("s1", "s2", [StageHeader("201", "casing pressure")]) is True
        assert monitor.project_store.get_current_stage("p1") == "s2"


class MalformedStagesClient(FakeTelemetryClient):
    """Provider whose active-stage listing has a null stage list."""

    def get(self, path, params=None):
        return {"stages": None}

    def get_active_stages(self):
        return TelemetryClient.get_active_stages(self)


class TestErrorIsolation:
    """Test that unexpected failures stay inside one header or step."""

    def test_malformed_stage_listing_does_not_abort_cycle(self, db):
        client = MalformedStagesClient()
        client.readings = {"101": loading(150)}
        monitor = HeaderMonitor(telemetry_client=client, db=db)
        monitor.header_store.upsert_settings("p1", "101", "Casing Pressure", threshold=100.0)

        result = monitor.run_once(now=at(0))

        assert result.processed_headers == 1
        assert result.errors[0]["step"] == "stage transitions"
        assert monitor.health.is_healthy is True

    def test_unexpected_evaluation_error_isolated(self, monitor, telemetry, project, monkeypatch):
        telemetry.readings = {"101": loading(150), "102": loading(80)}
        evaluate = monitor.engine.evaluate

        def broken_evaluate(project_id, header_id, reading, now=None):
            if header_id == "101":
                raise TypeError("unsupported operand")
            return evaluate(project_id, header_id, reading, now=now)

        monkeypatch.setattr(monitor.engine, "evaluate", broken_evaluate)

        result = monitor.run_once(now=at(0))

        assert result.processed_headers == 1
        assert result.errors[0]["header_id"] == "101"
        assert "unsupported operand" in result.errors[0]["error"]
        assert monitor.header_store.get_header("p1", "102").last_value == 80

    def test_unexpected_step_error_recorded(self, monitor, telemetry, project, monkeypatch):
        telemetry.readings = {"101": loading(150), "102": loading(80)}

        def broken_reconcile():
            raise KeyError("header_name")

        monkeypatch.setattr(monitor.reconciler, "reconcile_all", broken_reconcile)

        result = monitor.run_once(now=at(0))

        assert result.processed_headers == 2
        assert [e["step"] for e in result.errors] == ["duplicate reconciliation"]

    def test_rolled_back_migration_not_advanced(self, monitor, telemetry, project, monkeypatch):
        telemetry.active_stages = [ActiveStage("p1", "s2")]
        telemetry.stage_headers["s2"] = [StageHeader("201", "Casing Pressure")]

        def failing_migration(old_stage_id, new_stage_id, new_headers=None):
            raise PersistenceFailure("database is locked")

        monkeypatch.setattr(monitor.resolver, "migrate_stage", failing_migration)

        assert monitor.detect_stage_transitions()[0]["migrated"] is False
        assert monitor.project_store.get_current_stage("p1") == "s1"

    def test_continuous_loop_survives_failed_cycle(self, monitor, monkeypatch):
        cycles = []

        def run_once():
            cycles.append(1)
            if len(cycles) == 1:
                raise RuntimeError("unexpected")
            monitor.stop()

        monkeypatch.setattr(monitor, "run_once", run_once)

        monitor.run_continuous(interval_seconds=0.01)

        assert len(cycles) == 2
        assert monitor.health.consecutive_errors == 1

    def test_header_alert_serialized(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(50), "102": loading(80)}

        monitor.run_once(now=at(0))
        values = monitor.run_once(now=at(10)).to_dict()["headerValues"]

        entry = next(v for v in values if v["id"] == "101")
        assert entry["alert"]["id"] == "threshold_p1_101"
        assert next(v for v in values if v["id"] == "102")["alert"] is None


class TestStatus:
    def test_status_lists_unchanged_headers(self, monitor, telemetry, project):
        telemetry.readings = {"101": loading(150), "102": loading(80)}

        monitor.run_once(now=at(0))
        assert monitor.get_status()["unchanged_headers"] == []

        monitor.run_once(now=at(30))
        status = monitor.get_status()

        assert status["frozen_headers_tracked"] == 2
        assert {h["header_id"] for h in status["unchanged_headers"]} == {"101", "102"}
        assert status["unchanged_headers"][0]["unchanged_since"] == at(0).isoformat()
