# zko_planning/services/formatki.py
from typing import List, Tuple

from api import request_json, ensure_success
from exceptions import ValidationError
from models import FormatkaAvailability, as_dict, as_list
from retry import idempotent
from logger import get_logger

log = get_logger("formatki")


@idempotent("fetch_available_formatki")
def fetch_available_formatki(pozycja_id: int) -> List[FormatkaAvailability]:
    if isinstance(pozycja_id, bool) or not isinstance(pozycja_id, int) or pozycja_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID pozycji: {pozycja_id!r}")

    body = ensure_success(
        request_json("GET", f"/pallets/position/{pozycja_id}/available-formatki"),
        "Pobieranie formatek",
    )
    rows = as_list(as_dict(body, "response").get("formatki"), "formatki")
    formatki = [FormatkaAvailability.from_payload(r, pozycja_id) for r in rows]

    for f in formatki:
        if f.is_overassigned:
            log.warning(
                f"Formatka {f.id} ({f.nazwa}) over-assigned: planned={f.ilosc_planowana} "
                f"on pallets={f.ilosc_w_paletach} available={f.ilosc_dostepna}"
            )
    return formatki


def split_by_availability(
    formatki: List[FormatkaAvailability],
) -> Tuple[List[FormatkaAvailability], List[FormatkaAvailability]]:
    """
    (selectable, overassigned). Fully assigned formatki are in neither list;
    over-assigned ones are reported so the UI can show the problem.
    """
    selectable = [f for f in formatki if f.ilosc_dostepna > 0]
    overassigned = [f for f in formatki if f.is_overassigned]
    return selectable, overassigned


def availability_summary(formatki: List[FormatkaAvailability]) -> dict:
    return {
        "formatki_total": len(formatki),
        "sztuk_planowanych": sum(f.ilosc_planowana for f in formatki),
        "sztuk_w_paletach": sum(f.ilosc_w_paletach for f in formatki),
        "sztuk_dostepnych": sum(max(f.ilosc_dostepna, 0) for f in formatki),
        "nadmiarowo_przypisane": [f.id for f in formatki if f.is_overassigned],
    }
