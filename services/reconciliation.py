# zko_planning/services/reconciliation.py
from api import request_json, ensure_success
from exceptions import ValidationError
from models import QuantityTotals, ReconciliationResult, CONSISTENT, NEEDS_FIX
from retry import idempotent
from logger import get_logger

log = get_logger("reconciliation")


def validate_zko_id(zko_id) -> int:
    if isinstance(zko_id, bool) or not isinstance(zko_id, int) or zko_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID ZKO: {zko_id!r}")
    return zko_id


def evaluate(zko_id: int, totals: QuantityTotals) -> ReconciliationResult:
    """
    Strict AND of the three checks: order total == pallet total,
    pallet total == ledger total, and the ledger actually has entries.
    """
    zko_vs_palety = totals.zko_total == totals.pallets_total
    palety_vs_ilosc = totals.pallets_total == totals.ledger_total
    ledger_filled = totals.ledger_entries > 0

    ok = zko_vs_palety and palety_vs_ilosc and ledger_filled
    status = CONSISTENT if ok else NEEDS_FIX

    server_ok = {"OK": True, "NEEDS_FIX": False}.get(str(totals.server_status or "").upper())
    if server_ok is not None and server_ok != ok:
        log.warning(
            f"ZKO {zko_id}: server status {totals.server_status} disagrees with computed {status} "
            f"(zko={totals.zko_total}, palety={totals.pallets_total}, ilosc={totals.ledger_total}, "
            f"wpisy={totals.ledger_entries})"
        )

    return ReconciliationResult(
        zko_id=zko_id,
        totals=totals,
        zko_vs_palety=zko_vs_palety,
        palety_vs_ilosc=palety_vs_ilosc,
        tabela_ilosc_wypelniona=ledger_filled,
        status=status,
    )


@idempotent("check_quantities")
def check_quantities(zko_id: int) -> ReconciliationResult:
    validate_zko_id(zko_id)
    body = request_json("GET", f"/pallets/zko/{zko_id}/check-quantities")
    body = ensure_success(body, "Sprawdzenie ilości")
    result = evaluate(zko_id, QuantityTotals.from_payload(body))

    t = result.totals
    log.info(
        f"ZKO {zko_id} quantities: status={result.status} zko={t.zko_total} "
        f"palety={t.pallets_total} ({t.pallets_count} palet) ilosc={t.ledger_total} ({t.ledger_entries} wpisow)"
    )
    return result
