"""Tests for the planning workflow (check -> plan -> verify)."""

import sqlite3
import time
from unittest.mock import patch

import pytest
import requests

import db
from models import PlanningParams
from services import planning
from services.planning import (
    PlanningWorkflow,
    PendingConfirmations,
    ALREADY_OK,
    AWAITING_CONFIRMATION,
    CANCELLED,
    DONE,
    FAILED,
)
from exceptions import RemoteFault, NetworkError, WorkflowStateError, PlanningInProgress, ValidationError
from conftest import make_response, quantities, pallet, details

CHECK = "/pallets/zko/28/check-quantities"
PLAN = "/pallets/zko/28/plan-modular"
DETAILS = "/pallets/zko/28/details"

SEVEN_PALLETS = details(*[pallet(i, 80) for i in range(1, 7)], pallet(7, 20))
SIX_OLD_PALLETS = details(*[pallet(i, 80) for i in range(1, 7)])


def planned_ok(n=7):
    return make_response(200, {
        "sukces": True,
        "komunikat": f"Utworzono {n} palet",
        "palety_utworzone": list(range(1, n + 1)),
        "strategia": "kolory",
        "wersja": "modular-2",
    })


class TestFreshOrder:
    """An order with no pallets yet gets planned and verified."""

    def test_order_28_gets_seven_pallets(self, server):
        server.on("GET", CHECK,
                  make_response(200, quantities(500, 0, 0, wpisy=0)),
                  make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("POST", PLAN, planned_ok())
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        wf = PlanningWorkflow(28)
        outcome = wf.start()

        assert outcome.state == DONE
        assert len(outcome.pallets) == 7
        assert sum(p.sztuk_total for p in outcome.pallets) == 500
        assert outcome.reconciliation.is_consistent
        assert outcome.warnings == []
        assert outcome.history == ["CHECKING_INITIAL", "PLANNING", "PLANNING_DONE", "VERIFYING", "DONE"]
        assert server.count("POST", PLAN) == 1
        assert server.bodies("POST", PLAN)[0]["nadpisz_istniejace"] is False

    def test_still_inconsistent_after_planning_is_a_warning(self, server):
        server.on("GET", CHECK,
                  make_response(200, quantities(500, 0, 0, wpisy=0)),
                  make_response(200, quantities(500, 500, 480, wpisy=7, liczba_palet=7)))
        server.on("POST", PLAN, planned_ok())
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        outcome = PlanningWorkflow(28).start()

        assert outcome.state == DONE
        assert not outcome.reconciliation.is_consistent
        assert len(outcome.warnings) == 1
        assert "480" in outcome.warnings[0]

    def test_run_recorded(self, server):
        server.on("GET", CHECK,
                  make_response(200, quantities(500, 0, 0, wpisy=0)),
                  make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("POST", PLAN, planned_ok())
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        wf = PlanningWorkflow(28, PlanningParams(operator="anna"))
        wf.start()

        run = db.get_run(wf.run_id)
        assert run["final_state"] == DONE
        assert run["pallets_count"] == 7
        assert run["reconciliation_status"] == "CONSISTENT"
        assert run["operator"] == "anna"
        assert run["end_ts"] is not None


class TestAlreadyConsistent:

    def test_no_planning_request(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        outcome = PlanningWorkflow(28).start()

        assert outcome.state == ALREADY_OK
        assert len(outcome.pallets) == 7
        assert server.count("POST") == 0

    def test_overwrite_flag_does_not_replan_consistent_order(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        outcome = PlanningWorkflow(28, PlanningParams(nadpisz_istniejace=True)).start()

        assert outcome.state == ALREADY_OK
        assert server.count("POST") == 0

    def test_running_twice_is_idempotent(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        first = PlanningWorkflow(28).start()
        second = PlanningWorkflow(28).start()

        assert [p.fingerprint() for p in first.pallets] == [p.fingerprint() for p in second.pallets]
        assert server.count("POST") == 0


class TestExistingPallets:
    """Pallets exist but quantities do not reconcile: never overwrite silently."""

    def _existing(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 480, 480, wpisy=6, liczba_palet=6)))
        server.on("GET", DETAILS, make_response(200, SIX_OLD_PALLETS))

    def test_awaits_confirmation_without_mutation(self, server):
        self._existing(server)
        wf = PlanningWorkflow(28)
        outcome = wf.start()

        assert outcome.state == AWAITING_CONFIRMATION
        assert outcome.confirmation.liczba_palet == 6
        assert outcome.confirmation.total_sztuk == 480
        assert outcome.confirmation.status == "NEEDS_FIX"
        assert outcome.confirmation.zalecane_nadpisanie is True
        assert outcome.confirmation.strategia == "kolory"
        assert server.count("POST") == 0
        assert planning.GUARD.is_active(28)

    def test_cancel_leaves_pallets_untouched(self, server):
        self._existing(server)
        wf = PlanningWorkflow(28)
        before = wf.start()
        outcome = wf.cancel()

        assert outcome.state == CANCELLED
        assert [p.fingerprint() for p in outcome.pallets] == [p.fingerprint() for p in before.pallets]
        assert outcome.reconciliation.status == "NEEDS_FIX"
        assert server.count("POST") == 0
        assert not planning.GUARD.is_active(28)

    def test_confirm_replans_with_overwrite(self, server):
        self._existing(server)
        wf = PlanningWorkflow(28)
        wf.start()

        server.routes[("GET", CHECK)] = [make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7))]
        server.routes[("GET", DETAILS)] = [make_response(200, SEVEN_PALLETS)]
        server.on("POST", PLAN, planned_ok())
        outcome = wf.confirm()

        assert outcome.state == DONE
        assert len(outcome.pallets) == 7
        assert outcome.confirmation is None
        assert server.bodies("POST", PLAN) == [{
            "max_wysokosc_mm": 1440,
            "max_formatek_na_palete": 80,
            "nadpisz_istniejace": True,
            "operator": "user",
            "strategia": "kolory",
        }]
        assert outcome.history[-3:] == ["REPLANNING_WITH_OVERWRITE", "VERIFYING_AFTER_OVERWRITE", "DONE"]

    def test_overwrite_requested_up_front(self, server):
        server.on("GET", CHECK,
                  make_response(200, quantities(500, 480, 480, wpisy=6, liczba_palet=6)),
                  make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("POST", PLAN, planned_ok())
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))

        outcome = PlanningWorkflow(28, PlanningParams(nadpisz_istniejace=True)).start()

        assert outcome.state == DONE
        assert server.bodies("POST", PLAN)[0]["nadpisz_istniejace"] is True

    def test_server_asks_for_confirmation(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 0, 480, wpisy=6, liczba_palet=0)))
        server.on("POST", PLAN, make_response(200, {
            "sukces": False,
            "wymaga_potwierdzenia": True,
            "komunikat": "Istnieją palety w innym statusie",
        }))
        server.on("GET", DETAILS, make_response(200, details()))

        outcome = PlanningWorkflow(28).start()

        assert outcome.state == AWAITING_CONFIRMATION
        assert outcome.confirmation.komunikat == "Istnieją palety w innym statusie"

    def test_second_confirmation_request_fails(self, server):
        self._existing(server)
        wf = PlanningWorkflow(28)
        wf.start()
        server.on("POST", PLAN, make_response(200, {"potrzeba_potwierdzenia": True}))

        with pytest.raises(RemoteFault):
            wf.confirm()
        assert wf.state == FAILED
        assert not planning.GUARD.is_active(28)


class TestStateRules:

    def test_confirm_outside_awaiting(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 500, 500, wpisy=7, liczba_palet=7)))
        server.on("GET", DETAILS, make_response(200, SEVEN_PALLETS))
        wf = PlanningWorkflow(28)

        with pytest.raises(WorkflowStateError):
            wf.confirm()
        wf.start()
        with pytest.raises(WorkflowStateError):
            wf.cancel()
        with pytest.raises(WorkflowStateError):
            wf.start()

    def test_invalid_params_fail_before_any_request(self, server):
        with pytest.raises(ValidationError):
            PlanningWorkflow(28, PlanningParams(max_wysokosc_mm=5000)).start()
        assert server.calls == []
        assert not planning.GUARD.is_active(28)


class TestFailures:

    def test_planning_error_marks_failed_and_raises(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 0, 0, wpisy=0)))
        server.on("POST", PLAN, make_response(500, {"error": "function plan_modular does not exist"}))

        wf = PlanningWorkflow(28)
        with pytest.raises(RemoteFault) as exc:
            wf.start()

        assert "plan_modular" in exc.value.user_message
        assert wf.state == FAILED
        assert wf.history[-2:] == ["PLANNING", "FAILED"]
        assert not planning.GUARD.is_active(28)
        run = db.get_run(wf.run_id)
        assert run["final_state"] == FAILED
        assert run["error_summary"].startswith("PLANNING:")

    def test_planning_network_error_not_retried(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 0, 0, wpisy=0)))
        server.on("POST", PLAN, requests.Timeout("slow"))

        with pytest.raises(NetworkError):
            PlanningWorkflow(28).start()
        assert server.count("POST", PLAN) == 1

    def test_check_failure(self, server):
        server.on("GET", CHECK, requests.ConnectionError("down"))
        wf = PlanningWorkflow(28)
        with pytest.raises(NetworkError):
            wf.start()
        assert server.count("GET", CHECK) == 3
        assert wf.state == FAILED


class TestInFlightGuard:

    def test_second_start_rejected_while_awaiting(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 480, 480, wpisy=6, liczba_palet=6)))
        server.on("GET", DETAILS, make_response(200, SIX_OLD_PALLETS))

        first = PlanningWorkflow(28)
        first.start()
        calls_before = len(server.calls)

        with pytest.raises(PlanningInProgress):
            PlanningWorkflow(28).start()
        assert len(server.calls) == calls_before

        first.cancel()
        assert PlanningWorkflow(28).start().state == AWAITING_CONFIRMATION

    def test_other_orders_not_blocked(self, server):
        server.on("GET", CHECK, make_response(200, quantities(500, 480, 480, wpisy=6, liczba_palet=6)))
        server.on("GET", DETAILS, make_response(200, SIX_OLD_PALLETS))
        server.on("GET", "/pallets/zko/29/check-quantities", make_response(200, quantities(10, 10, 10)))
        server.on("GET", "/pallets/zko/29/details", make_response(200, details(pallet(1, 10))))

        PlanningWorkflow(28).start()
        assert PlanningWorkflow(29).start().state == ALREADY_OK


class TestPendingConfirmations:

    def _awaiting(self, server, zko_id=28):
        server.on("GET", f"/pallets/zko/{zko_id}/check-quantities",
                  make_response(200, quantities(500, 480, 480, wpisy=6, liczba_palet=6)))
        server.on("GET", f"/pallets/zko/{zko_id}/details", make_response(200, SIX_OLD_PALLETS))
        wf = PlanningWorkflow(zko_id)
        wf.start()
        return wf

    def test_pop_returns_waiting_workflow(self, server):
        pending = PendingConfirmations(ttl_seconds=300)
        wf = self._awaiting(server)
        pending.put(wf)

        assert pending.pop(28) is wf
        assert pending.pop(28) is None

    def test_expired_confirmation_cancels_and_releases(self, server):
        pending = PendingConfirmations(ttl_seconds=300)
        wf = self._awaiting(server)
        wf.awaiting_since = time.monotonic() - 301
        pending.put(wf)

        assert pending.sweep() == [28]
        assert wf.state == CANCELLED
        assert wf.warnings
        assert not planning.GUARD.is_active(28)
        assert pending.pop(28) is None

    def test_failing_expiry_does_not_block_the_rest(self, server):
        pending = PendingConfirmations(ttl_seconds=300)
        first = self._awaiting(server, 28)
        second = self._awaiting(server, 29)
        for wf in (first, second):
            wf.awaiting_since = time.monotonic() - 301
            pending.put(wf)

        with patch.object(first, "expire", side_effect=sqlite3.OperationalError("database is locked")):
            assert pending.sweep() == [28, 29]

        assert not planning.GUARD.is_active(28)
        assert not planning.GUARD.is_active(29)
        assert second.state == CANCELLED
        assert len(pending) == 0
