# zko_planning/services/planning.py
import threading
import time
import uuid
from typing import Dict, List, Optional

from api import describe_error
from config import CONFIRMATION_TTL_SECONDS, utc_now_iso
from db import init_state_db, mark_run, update_run_state, close_run
from exceptions import RemoteFault, WorkflowStateError, PlanningInProgress
from models import (
    ConfirmationRequest,
    PalletDetail,
    PlanningParams,
    PlanningResult,
    ReconciliationResult,
    WorkflowOutcome,
)
from services.reconciliation import validate_zko_id, check_quantities
from services.pallets import plan_pallets, fetch_pallet_details
from logger import get_logger

log = get_logger("planning")

# ---------------- Workflow states ----------------
CHECKING_INITIAL = "CHECKING_INITIAL"
ALREADY_OK = "ALREADY_OK"
PLANNING = "PLANNING"
PLANNING_DONE = "PLANNING_DONE"
VERIFYING = "VERIFYING"
AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
CANCELLED = "CANCELLED"
REPLANNING_WITH_OVERWRITE = "REPLANNING_WITH_OVERWRITE"
VERIFYING_AFTER_OVERWRITE = "VERIFYING_AFTER_OVERWRITE"
DONE = "DONE"
FAILED = "FAILED"


class OrderGuard:
    """One planning workflow per order at a time, within this process."""
    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[int] = set()

    def acquire(self, zko_id: int) -> None:
        with self._lock:
            if zko_id in self._active:
                raise PlanningInProgress(zko_id)
            self._active.add(zko_id)

    def release(self, zko_id: int) -> None:
        with self._lock:
            self._active.discard(zko_id)

    def is_active(self, zko_id: int) -> bool:
        with self._lock:
            return zko_id in self._active


GUARD = OrderGuard()


class PlanningWorkflow:
    """
    Check -> plan -> verify for one ZKO order.

    An order whose quantities already reconcile is never re-planned. Existing
    pallets are never overwritten without confirm(). Only the planning POST
    mutates server state, and it is sent at most once per start()/confirm().
    """

    def __init__(self, zko_id: int, params: Optional[PlanningParams] = None, guard: Optional[OrderGuard] = None):
        self.zko_id = validate_zko_id(zko_id)
        self.params = params or PlanningParams()
        self.guard = guard or GUARD
        self.run_id = str(uuid.uuid4())

        self.state: Optional[str] = None
        self.history: List[str] = []
        self.warnings: List[str] = []
        self.reconciliation: Optional[ReconciliationResult] = None
        self.planning: Optional[PlanningResult] = None
        self.pallets: List[PalletDetail] = []
        self.confirmation: Optional[ConfirmationRequest] = None
        self.awaiting_since: Optional[float] = None

    # ---------------- public API ----------------
    def start(self) -> WorkflowOutcome:
        if self.state is not None:
            raise WorkflowStateError(f"Workflow for ZKO {self.zko_id} already started (state={self.state})")

        self.params.validate()
        self.guard.acquire(self.zko_id)

        try:
            init_state_db()
            mark_run(self.run_id, self.zko_id, self.params.operator, utc_now_iso(), self.params.strategia)

            self._transition(CHECKING_INITIAL)
            self.reconciliation = check_quantities(self.zko_id)

            if self.reconciliation.is_consistent:
                self.pallets = fetch_pallet_details(self.zko_id)
                return self._finish(ALREADY_OK)

            self._transition(PLANNING)
            overwrite = self.params.nadpisz_istniejace
            if self.reconciliation.pallets_count > 0 and not overwrite:
                self.pallets = fetch_pallet_details(self.zko_id)
                return self._await_confirmation(None)

            self.planning = plan_pallets(self.zko_id, self.params, overwrite=overwrite)
            if self.planning.wymaga_potwierdzenia:
                self.pallets = fetch_pallet_details(self.zko_id)
                return self._await_confirmation(self.planning.komunikat)

            self._transition(PLANNING_DONE)
            return self._verify(VERIFYING)

        except Exception as e:
            self._fail(e)
            raise

    def confirm(self) -> WorkflowOutcome:
        self._require_awaiting("confirm")
        try:
            self._transition(REPLANNING_WITH_OVERWRITE)
            self.confirmation = None
            self.planning = plan_pallets(self.zko_id, self.params, overwrite=True)
            if self.planning.wymaga_potwierdzenia:
                raise RemoteFault(
                    self.planning.komunikat or "Serwer ponownie zażądał potwierdzenia nadpisania",
                    server_message=self.planning.komunikat or None,
                )
            return self._verify(VERIFYING_AFTER_OVERWRITE)

        except Exception as e:
            self._fail(e)
            raise

    def cancel(self) -> WorkflowOutcome:
        """Leave the existing pallets untouched and report them as they were."""
        self._require_awaiting("cancel")
        log.info(f"ZKO {self.zko_id}: overwrite declined by {self.params.operator}")
        return self._finish(CANCELLED)

    def expire(self) -> WorkflowOutcome:
        self._require_awaiting("expire")
        self.warnings.append("Czas na potwierdzenie nadpisania palet upłynął")
        log.warning(f"ZKO {self.zko_id}: confirmation expired after {CONFIRMATION_TTL_SECONDS}s")
        return self._finish(CANCELLED)

    def is_expired(self, ttl_seconds: float = CONFIRMATION_TTL_SECONDS) -> bool:
        if self.state != AWAITING_CONFIRMATION or self.awaiting_since is None:
            return False
        return time.monotonic() - self.awaiting_since > ttl_seconds

    def outcome(self) -> WorkflowOutcome:
        return WorkflowOutcome(
            zko_id=self.zko_id,
            state=self.state,
            reconciliation=self.reconciliation,
            planning=self.planning,
            pallets=list(self.pallets),
            confirmation=self.confirmation,
            warnings=list(self.warnings),
            history=list(self.history),
        )

    # ---------------- internals ----------------
    def _transition(self, new_state: str) -> None:
        log.info(f"ZKO {self.zko_id} [{self.run_id[:8]}]: {self.state or 'START'} -> {new_state}")
        self.state = new_state
        self.history.append(new_state)

    def _require_awaiting(self, action: str) -> None:
        if self.state != AWAITING_CONFIRMATION:
            raise WorkflowStateError(
                f"Cannot {action} ZKO {self.zko_id} planning in state {self.state or 'NOT_STARTED'}"
            )

    def _await_confirmation(self, server_text: Optional[str]) -> WorkflowOutcome:
        rec = self.reconciliation
        self.confirmation = ConfirmationRequest(
            liczba_palet=rec.pallets_count,
            total_sztuk=rec.totals.pallets_total,
            status=rec.status,
            zalecane_nadpisanie=not rec.is_consistent,
            komunikat=server_text or (
                "Palety istnieją, ale ilości się nie zgadzają. Zalecane ponowne planowanie z nadpisaniem."
            ),
            strategia=self.params.strategia,
        )
        self._transition(AWAITING_CONFIRMATION)
        self.awaiting_since = time.monotonic()
        update_run_state(self.run_id, AWAITING_CONFIRMATION)
        return self.outcome()

    def _verify(self, verify_state: str) -> WorkflowOutcome:
        self._transition(verify_state)
        self.reconciliation = check_quantities(self.zko_id)
        if not self.reconciliation.is_consistent:
            t = self.reconciliation.totals
            msg = (
                f"Ilości po planowaniu nadal się nie zgadzają: ZKO={t.zko_total}, "
                f"palety={t.pallets_total}, tabela ilości={t.ledger_total}"
            )
            log.warning(f"ZKO {self.zko_id}: {msg}")
            self.warnings.append(msg)
        self.pallets = fetch_pallet_details(self.zko_id)
        return self._finish(DONE)

    def _finish(self, final_state: str) -> WorkflowOutcome:
        self._transition(final_state)
        self.guard.release(self.zko_id)
        close_run(
            self.run_id,
            utc_now_iso(),
            final_state,
            pallets_count=len(self.pallets),
            reconciliation_status=self.reconciliation.status if self.reconciliation else None,
            error_summary="; ".join(self.warnings) or None,
        )
        log.info(f"ZKO {self.zko_id}: workflow finished {final_state} with {len(self.pallets)} pallet(s)")
        return self.outcome()

    def _fail(self, err: Exception) -> None:
        step = self.state or "START"
        self._transition(FAILED)
        self.guard.release(self.zko_id)
        log.error(f"ZKO {self.zko_id} FAILED at {step}: {err}")
        try:
            close_run(
                self.run_id,
                utc_now_iso(),
                FAILED,
                pallets_count=len(self.pallets),
                reconciliation_status=self.reconciliation.status if self.reconciliation else None,
                error_summary=f"{step}: {describe_error(err)}",
            )
        except Exception:
            log.exception(f"ZKO {self.zko_id}: could not record failed run {self.run_id}")


class PendingConfirmations:
    """Workflows parked in AWAITING_CONFIRMATION between web requests."""
    def __init__(self, ttl_seconds: float = CONFIRMATION_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._items: Dict[int, PlanningWorkflow] = {}

    def put(self, wf: PlanningWorkflow) -> None:
        with self._lock:
            self._items[wf.zko_id] = wf

    def pop(self, zko_id: int) -> Optional[PlanningWorkflow]:
        """The waiting workflow for this order, or None if there is none or it expired."""
        self.sweep()
        with self._lock:
            return self._items.pop(zko_id, None)

    def sweep(self) -> List[int]:
        with self._lock:
            expired = [wf for wf in self._items.values() if wf.is_expired(self.ttl_seconds)]
            for wf in expired:
                del self._items[wf.zko_id]
        for wf in expired:
            try:
                wf.expire()
            except Exception:
                log.exception(f"ZKO {wf.zko_id}: expiring confirmation failed, releasing order anyway")
                wf.guard.release(wf.zko_id)
        return [wf.zko_id for wf in expired]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

