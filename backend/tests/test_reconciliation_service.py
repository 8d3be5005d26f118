"""Tests for the reconciliation service against the SQLite store."""

import pytest
from app.auth import SessionContext
from app.database import ESTIMATES_TABLE, MATERIAL_LOGS_TABLE
from app.stores.sqlite_store import SQLiteStore
from app.sync import EstimateNotFoundError, ReconciliationService, TenantResolutionError

COMPANY = "co_TEST_ONLY_A"
OTHER = "co_TEST_ONLY_B"


@pytest.fixture
def service(store):
    return ReconciliationService(store, "https://work-orders.test/")


def estimate(estimate_id, **fields):
    return {"id": estimate_id, "status": "Draft", "executionStatus": "Not Started", **fields}


class TestTenantResolution:
    def test_claim_wins(self, service):
        session = SessionContext(user_id="usr_TEST_ONLY_admin", company_id=OTHER)
        assert service.resolve_company(session) == OTHER

    def test_membership_fallback(self, service):
        session = SessionContext(user_id="usr_TEST_ONLY_crew", role="crew")
        assert service.resolve_company(session) == COMPANY

    def test_unknown_company_claim(self, service):
        session = SessionContext(user_id="usr_TEST_ONLY_admin", company_id="co_missing")
        with pytest.raises(TenantResolutionError, match="Company not found"):
            service.resolve_company(session)

    def test_user_without_membership(self, service):
        with pytest.raises(TenantResolutionError):
            service.resolve_company(SessionContext(user_id="usr_nobody"))


class TestSyncDown:
    def test_empty_company(self, service):
        snapshot = service.sync_down(COMPANY)
        assert snapshot["savedEstimates"] == []
        assert snapshot["customers"] == []
        assert snapshot["materialLogs"] == []
        assert snapshot["warehouse"] == {"items": []}
        assert "companyProfile" not in snapshot
        assert "session" not in snapshot

    def test_session_block(self, service):
        session = SessionContext(
            user_id="usr_TEST_ONLY_admin", company_id=COMPANY, email="owner@acme.test"
        )
        snapshot = service.sync_down(COMPANY, session)
        assert snapshot["session"] == {
            "companyId": COMPANY,
            "userId": "usr_TEST_ONLY_admin",
            "role": "admin",
            "email": "owner@acme.test",
        }

    def test_full_round_trip(self, service):
        state = {
            "companyProfile": {"companyName": "Acme", "crewAccessPin": "1234"},
            "costs": {"openCell": 1500},
            "yields": {"openCell": 16000},
            "expenses": {"manHours": 0},
            "warehouse": {
                "openCellSets": 10,
                "closedCellSets": 4,
                "items": [{"id": "i1", "name": "Tape", "quantity": 3}],
            },
            "lifetimeUsage": {"openCell": 12, "closedCell": 3},
            "customers": [{"id": "c1", "name": "Jane"}],
            "materialLogs": [{"id": "log_1", "jobId": "e1"}],
            "savedEstimates": [estimate("e1"), estimate("e2")],
        }
        service.sync_up(COMPANY, state)

        snapshot = service.sync_down(COMPANY)
        assert snapshot["companyProfile"] == state["companyProfile"]
        assert snapshot["costs"] == {"openCell": 1500}
        assert snapshot["warehouse"] == state["warehouse"]
        assert snapshot["lifetimeUsage"] == {"openCell": 12, "closedCell": 3}
        assert snapshot["customers"] == [{"id": "c1", "name": "Jane"}]
        assert [e["id"] for e in snapshot["savedEstimates"]] == ["e1", "e2"]

    def test_tenant_isolation(self, service):
        service.sync_up(COMPANY, {"customers": [{"id": "c1"}], "costs": {"a": 1}})
        snapshot = service.sync_down(OTHER)
        assert snapshot["customers"] == []
        assert "costs" not in snapshot


class TestSyncUpCollections:
    def test_replace_all_shrinks(self, service):
        service.sync_up(COMPANY, {"customers": [{"id": f"c{i}"} for i in range(5)]})
        service.sync_up(COMPANY, {"customers": [{"id": "c1"}, {"id": "c9"}]})
        assert service.sync_down(COMPANY)["customers"] == [{"id": "c1"}, {"id": "c9"}]

    def test_absent_collection_untouched(self, service):
        service.sync_up(COMPANY, {"customers": [{"id": "c1"}]})
        service.sync_up(COMPANY, {"costs": {"openCell": 1}})
        assert service.sync_down(COMPANY)["customers"] == [{"id": "c1"}]

    def test_empty_list_clears(self, service):
        service.sync_up(COMPANY, {"customers": [{"id": "c1"}]})
        service.sync_up(COMPANY, {"customers": []})
        assert service.sync_down(COMPANY)["customers"] == []

    def test_inventory_replaced_only_with_items(self, service):
        service.sync_up(COMPANY, {"warehouse": {"items": [{"id": "i1"}, {"id": "i2"}]}})
        service.sync_up(COMPANY, {"warehouse": {"openCellSets": 3}})
        warehouse = service.sync_down(COMPANY)["warehouse"]
        assert [i["id"] for i in warehouse["items"]] == ["i1", "i2"]
        assert warehouse["openCellSets"] == 3

    def test_rows_without_id_are_skipped(self, service):
        service.sync_up(COMPANY, {"customers": [{"id": "c1"}, {"name": "ghost"}, "junk"]})
        assert service.sync_down(COMPANY)["customers"] == [{"id": "c1"}]

    def test_material_logs_upsert_and_never_delete(self, service):
        service.sync_up(COMPANY, {"materialLogs": [{"id": "l1", "n": 1}, {"id": "l2"}]})
        service.sync_up(COMPANY, {"materialLogs": [{"id": "l1", "n": 2}]})
        logs = service.sync_down(COMPANY)["materialLogs"]
        assert {"id": "l1", "n": 2} in logs
        assert {"id": "l2"} in logs

    def test_settings_last_write_wins(self, service):
        service.sync_up(COMPANY, {"costs": {"openCell": 1, "closedCell": 2}, "yields": {"x": 1}})
        service.sync_up(COMPANY, {"costs": {"openCell": 5}})
        snapshot = service.sync_down(COMPANY)
        assert snapshot["costs"] == {"openCell": 5}
        assert snapshot["yields"] == {"x": 1}


class TestSyncUpEstimates:
    def test_estimate_rules_apply(self, service, store):
        store.upsert_row(
            ESTIMATES_TABLE,
            COMPANY,
            estimate(
                "e1",
                status="Paid",
                executionStatus="Completed",
                actuals={"completionDate": "2024-01-01"},
                pdfLink="https://pdf/1",
            ),
        )

        result = service.sync_up(COMPANY, {"savedEstimates": [estimate("e1", totalValue=9)]})

        assert result.estimates.upserted == 1
        stored = store.get_row(ESTIMATES_TABLE, COMPANY, "e1")
        assert stored["status"] == "Paid"
        assert stored["executionStatus"] == "Completed"
        assert stored["actuals"] == {"completionDate": "2024-01-01"}
        assert stored["pdfLink"] == "https://pdf/1"
        assert stored["totalValue"] == 9

    def test_estimates_missing_from_push_are_kept(self, service, store):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1"), estimate("e2")]})
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e2")]})
        assert store.get_row(ESTIMATES_TABLE, COMPANY, "e1") is not None

    def test_estimate_without_id_is_skipped(self, service):
        result = service.sync_up(COMPANY, {"savedEstimates": [{"status": "Draft"}, estimate("e1")]})
        assert result.estimates.skipped == 1
        assert result.estimates.upserted == 1

    def test_failed_estimate_rolls_back_alone(self):
        class FlakyStore(SQLiteStore):
            def upsert_row(self, table, company_id, row, position=None):
                if table == ESTIMATES_TABLE and row.get("id") == "e2":
                    raise RuntimeError("disk on fire")
                super().upsert_row(table, company_id, row, position)

        flaky = FlakyStore(":memory:")
        flaky.create_company(COMPANY)
        service = ReconciliationService(flaky)
        try:
            result = service.sync_up(
                COMPANY,
                {
                    "customers": [{"id": "c1"}],
                    "savedEstimates": [estimate("e1"), estimate("e2"), estimate("e3")],
                },
            )
            assert result.synced is True
            assert result.estimates.upserted == 2
            assert result.estimates.failed == [
                {"id": "e2", "error": "Database error: operation failed"}
            ]
            ids = [e["id"] for e in flaky.list_rows(ESTIMATES_TABLE, COMPANY)]
            assert ids == ["e1", "e3"]
            assert service.sync_down(COMPANY)["customers"] == [{"id": "c1"}]
        finally:
            flaky.close()

    def test_collection_failure_rolls_back_whole_push(self):
        class BrokenStore(SQLiteStore):
            def replace_rows(self, table, company_id, rows):
                if table == "customers":
                    raise RuntimeError("boom")
                super().replace_rows(table, company_id, rows)

        broken = BrokenStore(":memory:")
        broken.create_company(COMPANY)
        service = ReconciliationService(broken)
        try:
            with pytest.raises(RuntimeError):
                service.sync_up(COMPANY, {"costs": {"a": 1}, "customers": [{"id": "c1"}]})
            assert broken.get_settings(COMPANY) == {}
        finally:
            broken.close()


class TestSingleEstimateOperations:
    def test_delete(self, service, store):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1")]})
        service.delete_estimate(COMPANY, "e1")
        assert store.get_row(ESTIMATES_TABLE, COMPANY, "e1") is None

    def test_delete_missing(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.delete_estimate(COMPANY, "nope")

    def test_delete_is_tenant_scoped(self, service, store):
        service.sync_up(OTHER, {"savedEstimates": [estimate("e1")]})
        with pytest.raises(EstimateNotFoundError):
            service.delete_estimate(COMPANY, "e1")
        assert store.get_row(ESTIMATES_TABLE, OTHER, "e1") is not None

    def test_mark_paid_stamps_date_once(self, service):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1")]})
        first = service.mark_job_paid(COMPANY, "e1")
        assert first["status"] == "Paid"
        assert first["paidDate"]
        again = service.mark_job_paid(COMPANY, "e1")
        assert again["paidDate"] == first["paidDate"]

    def test_mark_paid_missing(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.mark_job_paid(COMPANY, "nope")

    def test_complete_job_records_usage_once(self, service, store):
        service.sync_up(
            COMPANY,
            {
                "warehouse": {"openCellSets": 10, "closedCellSets": 5, "items": []},
                "lifetimeUsage": {"openCell": 1, "closedCell": 0},
                "savedEstimates": [estimate("e1", customerId="c1")],
            },
        )
        actuals = {
            "openCellSets": 2,
            "closedCellSets": 1,
            "completedBy": "crew-1",
            "completionDate": "2024-01-01",
        }

        merged = service.complete_job(COMPANY, "e1", actuals)

        assert merged["executionStatus"] == "Completed"
        assert merged["actuals"]["completionDate"] == "2024-01-01"
        settings = store.get_settings(COMPANY)
        assert settings["warehouse_counts"]["openCellSets"] == 8
        assert settings["warehouse_counts"]["closedCellSets"] == 4
        assert settings["lifetime_usage"] == {"openCell": 3, "closedCell": 1}

        logs = store.list_rows(MATERIAL_LOGS_TABLE, COMPANY)
        assert len(logs) == 1
        assert logs[0]["id"].startswith("log_")
        assert len(logs[0]["id"]) == len("log_") + 12
        assert logs[0]["jobId"] == "e1"
        assert logs[0]["customerId"] == "c1"
        assert logs[0]["loggedBy"] == "crew-1"
        assert logs[0]["date"] == "2024-01-01"

        # Re-completing does not double count
        service.complete_job(COMPANY, "e1", {**actuals, "completionDate": "2024-02-01"})
        assert store.get_settings(COMPANY)["warehouse_counts"]["openCellSets"] == 8
        assert len(store.list_rows(MATERIAL_LOGS_TABLE, COMPANY)) == 1

    def test_complete_job_keeps_later_date(self, service, store):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1")]})
        service.complete_job(COMPANY, "e1", {"completionDate": "2024-03-01"})
        merged = service.complete_job(COMPANY, "e1", {"completionDate": "2024-01-01"})
        assert merged["actuals"]["completionDate"] == "2024-03-01"

    def test_complete_job_defaults_date(self, service):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1")]})
        merged = service.complete_job(COMPANY, "e1")
        assert merged["actuals"]["completionDate"]

    def test_complete_job_without_sets_logs_nothing(self, service, store):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e1")]})
        service.complete_job(COMPANY, "e1", {"completionDate": "2024-01-01"})
        assert store.list_rows(MATERIAL_LOGS_TABLE, COMPANY) == []
        assert "lifetime_usage" not in store.get_settings(COMPANY)

    @pytest.mark.parametrize("bad", ["nan", "NaN", "inf", "-Infinity", float("nan"), float("inf")])
    def test_complete_job_ignores_non_finite_sets(self, service, store, bad):
        service.sync_up(
            COMPANY,
            {
                "warehouse": {"openCellSets": 10, "closedCellSets": 5, "items": []},
                "savedEstimates": [estimate("e1")],
            },
        )
        service.complete_job(COMPANY, "e1", {"openCellSets": bad, "closedCellSets": bad})

        assert store.get_settings(COMPANY)["warehouse_counts"] == {"openCellSets": 10, "closedCellSets": 5}
        assert store.list_rows(MATERIAL_LOGS_TABLE, COMPANY) == []

    def test_complete_job_non_finite_counts_stay_finite(self, service, store):
        service.sync_up(
            COMPANY,
            {
                "warehouse": {"openCellSets": "nan", "closedCellSets": 5, "items": []},
                "savedEstimates": [estimate("e1")],
            },
        )
        service.complete_job(COMPANY, "e1", {"openCellSets": "nan", "closedCellSets": 2})

        counts = store.get_settings(COMPANY)["warehouse_counts"]
        assert counts == {"openCellSets": 0.0, "closedCellSets": 3.0}
        assert store.get_settings(COMPANY)["lifetime_usage"] == {"openCell": 0.0, "closedCell": 2.0}

    def test_complete_job_missing(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.complete_job(COMPANY, "nope", {})


class TestWorkOrders:
    def test_creates_and_reuses_link(self, service, store):
        service.sync_up(COMPANY, {"savedEstimates": [estimate("e 1")]})
        url = service.create_work_order(COMPANY, "e 1")
        assert url == f"https://work-orders.test/{COMPANY}/e%201"
        assert store.get_row(ESTIMATES_TABLE, COMPANY, "e 1")["workOrderSheetUrl"] == url
        assert service.create_work_order(COMPANY, "e 1") == url

    def test_saves_supplied_estimate(self, service, store):
        url = service.create_work_order(COMPANY, "e9", {"status": "Draft", "totalValue": 3})
        stored = store.get_row(ESTIMATES_TABLE, COMPANY, "e9")
        assert stored["totalValue"] == 3
        assert stored["workOrderSheetUrl"] == url

    def test_missing_estimate(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.create_work_order(COMPANY, "nope")


def test_log_crew_time(service, store):
    service.log_crew_time(
        COMPANY,
        {"workOrderUrl": "https://wo/1", "startTime": "08:00", "endTime": None, "user": "Sam"},
    )
    logs = store.list_time_logs(COMPANY)
    assert len(logs) == 1
    assert logs[0]["user_name"] == "Sam"
    assert logs[0]["work_order_url"] == "https://wo/1"
    assert store.list_time_logs(OTHER) == []
