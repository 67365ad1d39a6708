# zko_planning/services/zko_status.py
from typing import Optional

from api import request_json, ensure_success
from config import DEFAULT_OPERATOR
from exceptions import ValidationError
from models import StatusChangeResult, as_list
from services.reconciliation import validate_zko_id
from logger import get_logger

log = get_logger("zko_status")

# Production stages in order
ZKO_STATUSES = (
    "NOWE",
    "CIECIE_START",
    "OTWARCIE_PALETY",
    "PAKOWANIE_PALETY",
    "ZAMKNIECIE_PALETY",
    "CIECIE_STOP",
    "BUFOR_PILA",
    "TRANSPORT_1",
    "BUFOR_OKLEINIARKA",
    "OKLEJANIE_START",
    "OKLEJANIE_STOP",
    "TRANSPORT_2",
    "BUFOR_WIERTARKA",
    "WIERCENIE_START",
    "WIERCENIE_STOP",
    "TRANSPORT_3",
    "BUFOR_KOMPLETOWANIE",
    "KOMPLETOWANIE_START",
    "KOMPLETOWANIE_STOP",
    "BUFOR_PAKOWANIE",
    "PAKOWANIE_START",
    "PAKOWANIE_STOP",
    "BUFOR_WYSYLKA",
    "WYSYLKA",
    "ZAKONCZONE",
    "ANULOWANE",
)

CANCELLED_STATUS = "ANULOWANE"

# Suggested next step on the worker station dashboards
NEXT_STATUS = {
    "NOWE": "CIECIE_START",
    "CIECIE_START": "OTWARCIE_PALETY",
    "CIECIE_STOP": "BUFOR_PILA",
    "TRANSPORT_1": "BUFOR_OKLEINIARKA",
    "BUFOR_OKLEINIARKA": "OKLEJANIE_START",
    "OKLEJANIE_START": "OKLEJANIE_STOP",
    "OKLEJANIE_STOP": "TRANSPORT_2",
    "TRANSPORT_2": "BUFOR_WIERTARKA",
    "BUFOR_WIERTARKA": "WIERCENIE_START",
    "WIERCENIE_START": "WIERCENIE_STOP",
    "WIERCENIE_STOP": "TRANSPORT_3",
}


def normalize_status_code(code) -> str:
    # old orders were created with lowercase 'nowe'
    value = str(code or "").strip()
    if value == "nowe":
        return "NOWE"
    if value not in ZKO_STATUSES:
        raise ValidationError(f"Nieznany status ZKO: {code!r}")
    return value


def next_status(code) -> Optional[str]:
    return NEXT_STATUS.get(normalize_status_code(code))


def is_forward(current, target) -> bool:
    cur = normalize_status_code(current)
    tgt = normalize_status_code(target)
    if tgt == CANCELLED_STATUS:
        return True
    return ZKO_STATUSES.index(tgt) > ZKO_STATUSES.index(cur)


def _is_step_back(old, new) -> bool:
    # the server may report a status this client does not know; that is not a step back
    try:
        return not is_forward(old, new) and normalize_status_code(old) != normalize_status_code(new)
    except ValidationError:
        return False


def change_status(
    zko_id: int,
    nowy_etap_kod: str,
    operator: str = DEFAULT_OPERATOR,
    uzytkownik: Optional[str] = None,
    lokalizacja: Optional[str] = None,
    komentarz: Optional[str] = None,
    wymus: bool = False,
) -> StatusChangeResult:
    """
    Move an order to another production stage.

    A server answer with warnings comes back with `wymaga_potwierdzenia` set;
    the caller repeats the call with wymus=True to accept them. Hard rule
    violations arrive as HTTP 400 and surface as ValidationError with `bledy`.
    """
    validate_zko_id(zko_id)
    code = normalize_status_code(nowy_etap_kod)

    payload = {
        "zko_id": zko_id,
        "nowy_etap_kod": code,
        "operator": operator,
        "uzytkownik": uzytkownik or operator,
        "lokalizacja": lokalizacja,
        "komentarz": komentarz,
    }
    if wymus:
        payload["wymus"] = True

    log.info(f"ZKO {zko_id}: status change -> {code} by {operator} (wymus={wymus})")
    body = request_json("POST", "/zko/status/change", json_body=payload)

    if isinstance(body, dict) and body.get("wymaga_potwierdzenia"):
        warnings = [str(w) for w in as_list(body.get("ostrzezenia"), "ostrzezenia")]
        log.warning(f"ZKO {zko_id}: status change to {code} needs confirmation: {warnings}")
        return StatusChangeResult(
            sukces=False,
            komunikat=str(body.get("komunikat") or "Zmiana statusu wymaga potwierdzenia"),
            stary_status=body.get("stary_status"),
            nowy_status=code,
            wymaga_potwierdzenia=True,
            bledy=[str(b) for b in as_list(body.get("bledy"), "bledy")],
            ostrzezenia=warnings,
        )

    body = ensure_success(body, "Zmiana statusu")
    result = StatusChangeResult(
        sukces=True,
        komunikat=str(body.get("komunikat") or ""),
        stary_status=body.get("stary_status"),
        nowy_status=body.get("nowy_status") or code,
        ostrzezenia=[str(w) for w in as_list(body.get("ostrzezenia"), "ostrzezenia")],
    )
    log.info(f"ZKO {zko_id}: status {result.stary_status} -> {result.nowy_status}")
    if _is_step_back(result.stary_status, result.nowy_status):
        result.cofniecie = True
        log.warning(f"ZKO {zko_id}: moved back from {result.stary_status} to {result.nowy_status} by {operator}")
    return result
