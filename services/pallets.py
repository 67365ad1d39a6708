# zko_planning/services/pallets.py
from typing import Dict, Iterable, List, Optional

from api import request_json, ensure_success
from config import MAX_STACK_HEIGHT_MM, MAX_PALLET_WEIGHT_KG, DEFAULT_OPERATOR
from exceptions import ValidationError
from models import (
    PalletDetail,
    PalletMutationResult,
    PlanningParams,
    PlanningResult,
    DESTINATIONS,
    as_int,
    parse_pallets,
)
from retry import idempotent
from services.reconciliation import validate_zko_id
from logger import get_logger

log = get_logger("pallets")


def plan_pallets(zko_id: int, params: PlanningParams, overwrite: bool) -> PlanningResult:
    """
    POST plan-modular. Sent exactly once: a retry could create a second set of pallets.
    A confirmation request from the server is returned, not raised.
    """
    validate_zko_id(zko_id)
    params.validate()
    payload = params.to_payload(overwrite)

    log.info(f"Planning pallets for ZKO {zko_id}: {payload}")
    body = request_json("POST", f"/pallets/zko/{zko_id}/plan-modular", json_body=payload)
    result = PlanningResult.from_payload(body)

    if result.wymaga_potwierdzenia:
        log.info(f"ZKO {zko_id}: planning needs confirmation ({result.komunikat})")
        return result

    ensure_success(body, "Planowanie palet")
    log.info(
        f"ZKO {zko_id}: planned {len(result.palety_utworzone)} pallet(s), "
        f"strategia={result.strategia}, wersja={result.wersja}"
    )
    return result


@idempotent("fetch_pallet_details")
def fetch_pallet_details(zko_id: int) -> List[PalletDetail]:
    validate_zko_id(zko_id)
    body = request_json("GET", f"/pallets/zko/{zko_id}/details")
    body = ensure_success(body, "Pobieranie szczegółów palet")
    pallets = parse_pallets(body, "palety")
    log.info(f"ZKO {zko_id}: fetched {len(pallets)} pallet(s)")
    return pallets


def limit_violations(
    pallet: PalletDetail,
    max_height_mm: float = MAX_STACK_HEIGHT_MM,
    max_weight_kg: float = MAX_PALLET_WEIGHT_KG,
) -> List[str]:
    out = []
    if pallet.over_height(max_height_mm):
        out.append(f"Wysokość {pallet.wysokosc_stosu:.0f} mm > {max_height_mm:.0f} mm")
    if pallet.over_weight(max_weight_kg):
        out.append(f"Waga {pallet.waga_kg:.1f} kg > {max_weight_kg:.0f} kg")
    return out


def _assignment_payload(formatki: Iterable[Dict], allow_empty: bool) -> List[Dict[str, int]]:
    items = []
    for f in formatki:
        fid = f.get("formatka_id")
        qty = f.get("ilosc")
        if isinstance(fid, bool) or not isinstance(fid, int) or fid <= 0:
            raise ValidationError(f"Nieprawidłowe ID formatki: {fid!r}")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError(f"Ilość formatki {fid} musi być dodatnią liczbą całkowitą")
        items.append({"formatka_id": fid, "ilosc": qty})
    if not items and not allow_empty:
        raise ValidationError("Paleta musi zawierać co najmniej jedną formatkę")
    return items


def _validate_destination(przeznaczenie: str) -> str:
    code = (przeznaczenie or "").strip().upper()
    if code not in DESTINATIONS:
        raise ValidationError(f"Nieznane przeznaczenie palety: {przeznaczenie!r}")
    return code


def _mutation_result(body) -> PalletMutationResult:
    return PalletMutationResult(
        sukces=True,
        komunikat=str(body.get("komunikat") or ""),
        paleta_id=as_int(body.get("paleta_id"), "paleta_id") if body.get("paleta_id") is not None else None,
        numer_palety=body.get("numer_palety"),
        statystyki=body.get("statystyki") or {},
    )


def create_pallet(
    pozycja_id: int,
    formatki: Iterable[Dict],
    przeznaczenie: str = "MAGAZYN",
    max_waga: float = MAX_PALLET_WEIGHT_KG,
    max_wysokosc: int = MAX_STACK_HEIGHT_MM,
    uwagi: Optional[str] = None,
    operator: str = DEFAULT_OPERATOR,
) -> PalletMutationResult:
    if isinstance(pozycja_id, bool) or not isinstance(pozycja_id, int) or pozycja_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID pozycji: {pozycja_id!r}")
    payload = {
        "pozycja_id": pozycja_id,
        "formatki": _assignment_payload(formatki, allow_empty=False),
        "przeznaczenie": _validate_destination(przeznaczenie),
        "max_waga": max_waga,
        "max_wysokosc": max_wysokosc,
        "uwagi": uwagi,
        "operator": operator,
    }
    body = ensure_success(request_json("POST", "/pallets/manual/create", json_body=payload), "Tworzenie palety")
    result = _mutation_result(body)
    log.info(f"Pallet {result.numer_palety} (id={result.paleta_id}) created for pozycja {pozycja_id}")
    return result


def update_pallet_formatki(
    paleta_id: int,
    formatki: Iterable[Dict],
    przeznaczenie: Optional[str] = None,
    uwagi: Optional[str] = None,
    operator: str = DEFAULT_OPERATOR,
) -> PalletMutationResult:
    """Replaces the whole assignment; an empty list leaves an empty pallet."""
    if isinstance(paleta_id, bool) or not isinstance(paleta_id, int) or paleta_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID palety: {paleta_id!r}")
    payload = {
        "formatki": _assignment_payload(formatki, allow_empty=True),
        "przeznaczenie": _validate_destination(przeznaczenie) if przeznaczenie else None,
        "uwagi": uwagi,
        "operator": operator,
    }
    body = ensure_success(
        request_json("POST", f"/pallets/{paleta_id}/update-formatki", json_body=payload),
        "Aktualizacja palety",
    )
    result = _mutation_result(body)
    result.paleta_id = result.paleta_id or paleta_id
    log.info(f"Pallet {paleta_id} updated with {len(payload['formatki'])} formatka type(s)")
    return result


def delete_pallet(paleta_id: int) -> PalletMutationResult:
    if isinstance(paleta_id, bool) or not isinstance(paleta_id, int) or paleta_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID palety: {paleta_id!r}")
    body = ensure_success(request_json("DELETE", f"/pallets/{paleta_id}"), "Usuwanie palety")
    log.info(f"Pallet {paleta_id} deleted: {body.get('komunikat')}")
    return PalletMutationResult(sukces=True, komunikat=str(body.get("komunikat") or ""), paleta_id=paleta_id)
