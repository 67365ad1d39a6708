# zko_planning/services/positions.py
from typing import Any, Dict, Optional

from api import request_json, ensure_success
from config import DEFAULT_OPERATOR
from exceptions import ValidationError
from models import PositionEditResult, PositionDeleteResult, as_int
from logger import get_logger

log = get_logger("positions")

# Fields zko.edytuj_pozycje_zko accepts
EDITABLE_FIELDS = ("rozkroj_id", "ilosc_plyt", "kolor_plyty", "nazwa_plyty", "kolejnosc", "uwagi")


def _validate_position_id(pozycja_id) -> int:
    if isinstance(pozycja_id, bool) or not isinstance(pozycja_id, int) or pozycja_id <= 0:
        raise ValidationError(f"Nieprawidłowe ID pozycji: {pozycja_id!r}")
    return pozycja_id


def changed_fields(changes: Dict[str, Any], original: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Nieznane pola pozycji: {', '.join(unknown)}")

    original = original or {}
    return {
        k: v for k, v in changes.items()
        if k not in original or original.get(k) != v
    }


def edit_position(
    pozycja_id: int,
    changes: Dict[str, Any],
    original: Optional[Dict[str, Any]] = None,
) -> PositionEditResult:
    """Partial update: only fields that differ from `original` go on the wire."""
    _validate_position_id(pozycja_id)
    diff = changed_fields(changes, original)

    if "ilosc_plyt" in diff:
        qty = diff["ilosc_plyt"]
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError("Ilość płyt musi być dodatnią liczbą całkowitą")

    if not diff:
        log.info(f"Pozycja {pozycja_id}: nothing changed, no request sent")
        return PositionEditResult(sukces=True, komunikat="Brak zmian", zmienione_pola=[], pozycja=original)

    body = ensure_success(request_json("PUT", f"/zko/pozycje/{pozycja_id}", json_body=diff), "Edycja pozycji")
    log.info(f"Pozycja {pozycja_id} updated: {sorted(diff)}")
    return PositionEditResult(
        sukces=True,
        komunikat=str(body.get("komunikat") or "Pozycja została zaktualizowana"),
        zmienione_pola=sorted(diff),
        pozycja=body.get("pozycja"),
    )


def delete_position(pozycja_id: int, uzytkownik: str = DEFAULT_OPERATOR, powod: Optional[str] = None) -> PositionDeleteResult:
    _validate_position_id(pozycja_id)
    body = ensure_success(
        request_json("DELETE", f"/zko/pozycje/{pozycja_id}", json_body={"uzytkownik": uzytkownik, "powod": powod}),
        "Usuwanie pozycji",
    )
    result = PositionDeleteResult(
        sukces=True,
        komunikat=str(body.get("komunikat") or "Pozycja została usunięta"),
        usuniete_formatki=as_int(body.get("usuniete_formatki"), "usuniete_formatki", default=0),
        usuniete_palety=as_int(body.get("usuniete_palety"), "usuniete_palety", default=0),
    )
    log.info(
        f"Pozycja {pozycja_id} deleted by {uzytkownik}: "
        f"formatki={result.usuniete_formatki} palety={result.usuniete_palety}"
    )
    return result
