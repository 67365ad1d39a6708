"""Tests for the local run-history DB."""

import db


class TestRunHistory:

    def test_mark_and_close_run(self):
        db.mark_run("r1", 28, "anna", "2026-01-05T10:00:00Z", strategy="kolory")
        run = db.get_run("r1")
        assert run["final_state"] == "RUNNING"
        assert run["strategy"] == "kolory"
        assert run["end_ts"] is None

        db.close_run("r1", "2026-01-05T10:00:04Z", "DONE", pallets_count=7, reconciliation_status="CONSISTENT")
        run = db.get_run("r1")
        assert run["final_state"] == "DONE"
        assert run["pallets_count"] == 7
        assert run["error_summary"] is None

    def test_update_run_state(self):
        db.mark_run("r1", 28, "anna", "2026-01-05T10:00:00Z")
        db.update_run_state("r1", "AWAITING_CONFIRMATION")
        assert db.get_run("r1")["final_state"] == "AWAITING_CONFIRMATION"

    def test_recent_runs_newest_first_and_filtered(self):
        db.mark_run("a", 28, "anna", "2026-01-05T10:00:00Z")
        db.mark_run("b", 29, "jan", "2026-01-05T11:00:00Z")
        db.mark_run("c", 28, "anna", "2026-01-05T12:00:00Z")

        assert [r["run_id"] for r in db.recent_runs()] == ["c", "b", "a"]
        assert [r["run_id"] for r in db.recent_runs(zko_id=28)] == ["c", "a"]
        assert [r["run_id"] for r in db.recent_runs(limit=1)] == ["c"]

    def test_init_is_repeatable(self):
        db.init_state_db()
        db.init_state_db()
        assert db.recent_runs() == []

    def test_missing_run(self):
        assert db.get_run("nope") is None
