"""Tests for duplicate monitored header reconciliation."""

import pytest

from header_monitor.duplicates import DuplicateReconciler, header_id_sort_key


@pytest.fixture
def reconciler(header_store):
    return DuplicateReconciler(header_store)


class TestReconcileDuplicates:
    """Test collapsing same-name monitors within a project."""

    def test_newest_id_kept(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery", threshold=20.0)
        header_store.upsert_settings("p1", "55", "Battery", threshold=20.0)

        assert reconciler.reconcile_duplicates("p1") == 1
        assert header_store.get_header("p1", "55").is_monitored is True
        assert header_store.get_header("p1", "10").is_monitored is False

    def test_names_compared_case_and_space_insensitive(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery", threshold=20.0)
        header_store.upsert_settings("p1", "11", " battery ", threshold=20.0)
        header_store.upsert_settings("p1", "12", "BATTERY", threshold=20.0)

        assert reconciler.reconcile_duplicates("p1") == 2
        monitored = [h.header_id for h in header_store.list_headers(project_id="p1")]
        assert monitored == ["12"]

    def test_ids_compared_numerically(self, reconciler, header_store):
        header_store.upsert_settings("p1", "100", "Casing Pressure")
        header_store.upsert_settings("p1", "99", "Casing Pressure")

        reconciler.reconcile_duplicates("p1")

        assert header_store.get_header("p1", "100").is_monitored is True
        assert header_store.get_header("p1", "99").is_monitored is False

    def test_unique_names_untouched(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery")
        header_store.upsert_settings("p1", "11", "Casing Pressure")

        assert reconciler.reconcile_duplicates("p1") == 0
        assert len(header_store.list_headers(project_id="p1")) == 2

    def test_other_projects_untouched(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery")
        header_store.upsert_settings("p2", "11", "Battery")

        assert reconciler.reconcile_duplicates("p1") == 0
        assert header_store.get_header("p2", "11").is_monitored is True

    def test_disabled_rows_not_counted(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery", is_monitored=False)
        header_store.upsert_settings("p1", "55", "Battery")

        assert reconciler.reconcile_duplicates("p1") == 0

    def test_reconcile_all_projects(self, reconciler, header_store):
        header_store.upsert_settings("p1", "10", "Battery")
        header_store.upsert_settings("p1", "55", "Battery")
        header_store.upsert_settings("p2", "3", "Flow Rate")
        header_store.upsert_settings("p2", "4", "flow rate")

        assert reconciler.reconcile_all() == 2
        assert header_store.get_header("p2", "4").is_monitored is True


class TestHeaderIdOrdering:
    def test_numeric_ids_rank_above_text_ids(self):
        ids = ["abc", "10", "9", "zz"]
        assert sorted(ids, key=header_id_sort_key, reverse=True) == ["10", "9", "zz", "abc"]
