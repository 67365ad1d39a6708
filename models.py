#models.py
import json
import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from config import (
    MAX_STACK_HEIGHT_MM,
    MAX_PALLET_WEIGHT_KG,
    DEFAULT_PIECES_PER_PALLET,
    DEFAULT_OPERATOR,
    DEFAULT_STRATEGY,
    MIN_STACK_HEIGHT_MM,
    MAX_ALLOWED_STACK_HEIGHT_MM,
    MIN_PIECES_PER_PALLET,
    MAX_PIECES_PER_PALLET,
)
from exceptions import DecodeError, ValidationError

CONSISTENT = "CONSISTENT"
NEEDS_FIX = "NEEDS_FIX"

STRATEGIES = ("modular", "kolory")

# Pallet destinations accepted by the manual pallet endpoints
DESTINATIONS = ("MAGAZYN", "OKLEINIARKA", "WIERCENIE", "CIECIE", "WYSYLKA")

# Every flag name the planning endpoint has used for "existing pallets, ask first"
CONFIRMATION_FLAGS = ("potrzeba_potwierdzenia", "wymaga_potwierdzenia", "potrzebaTPotwierdzenia")


# ---------- Payload helpers ----------
# node-pg returns SUM()/NUMERIC columns as strings, so numbers may arrive quoted.
def as_int(value: Any, name: str, default: Optional[int] = None) -> int:
    if value is None or value == "":
        if default is None:
            raise DecodeError(f"Missing integer field '{name}'")
        return default
    if isinstance(value, bool):
        raise DecodeError(f"Field '{name}' is boolean, expected integer")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise DecodeError(f"Field '{name}' is not an integer: {value!r}")
    if not math.isfinite(number):
        raise DecodeError(f"Field '{name}' is not a finite number: {value!r}")
    return int(number)

def as_float(value: Any, name: str, default: Optional[float] = None) -> float:
    if value is None or value == "":
        if default is None:
            raise DecodeError(f"Missing numeric field '{name}'")
        return default
    if isinstance(value, bool):
        raise DecodeError(f"Field '{name}' is boolean, expected number")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise DecodeError(f"Field '{name}' is not a number: {value!r}")
    if not math.isfinite(number):
        raise DecodeError(f"Field '{name}' is not a finite number: {value!r}")
    return number

def as_dict(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeError(f"Field '{name}' is not an object")
    return value

def as_list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    # jsonb columns sometimes come back serialized
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise DecodeError(f"Field '{name}' holds invalid JSON text")
    if not isinstance(value, list):
        raise DecodeError(f"Field '{name}' is not a list")
    return value

def split_colors(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        parts = value
    else:
        parts = str(value).split(",")
    out = []
    for p in parts:
        c = str(p).strip()
        if c and c not in out:
            out.append(c)
    return out


# ---------- Pallets ----------
@dataclass
class FormatkaAssignment:
    formatka_id: int
    ilosc: int
    nazwa: str = ""
    dlugosc: Optional[float] = None
    szerokosc: Optional[float] = None
    kolor: Optional[str] = None

    @classmethod
    def from_payload(cls, row: Any) -> "FormatkaAssignment":
        if not isinstance(row, dict):
            raise DecodeError("Formatka entry is not an object")
        dl = row.get("dlugosc", row.get("wymiar_x"))
        sz = row.get("szerokosc", row.get("wymiar_y"))
        kolor = row.get("kolor") or row.get("kolor_plyty")
        return cls(
            formatka_id=as_int(row.get("formatka_id", row.get("id")), "formatka_id"),
            ilosc=as_int(row.get("ilosc", row.get("ilosc_na_palecie")), "ilosc"),
            nazwa=str(row.get("nazwa") or row.get("nazwa_formatki") or ""),
            dlugosc=as_float(dl, "dlugosc") if dl is not None else None,
            szerokosc=as_float(sz, "szerokosc") if sz is not None else None,
            kolor=str(kolor).strip() if kolor else None,
        )


@dataclass
class PalletDetail:
    id: int
    numer_palety: str
    sztuk_total: int
    wysokosc_stosu: float = 0.0
    waga_kg: float = 0.0
    status: Optional[str] = None
    przeznaczenie: Optional[str] = None
    kolory: List[str] = field(default_factory=list)
    formatki: List[FormatkaAssignment] = field(default_factory=list)

    @classmethod
    def from_payload(cls, row: Any) -> "PalletDetail":
        """
        One canonical shape for every pallet the server describes.
        Planning answers use `formatki_szczegoly`, older endpoints `formatki`;
        downstream code only ever sees `formatki`.
        """
        if not isinstance(row, dict):
            raise DecodeError("Pallet entry is not an object")

        raw_items = row.get("formatki_szczegoly")
        if raw_items is None:
            raw_items = row.get("formatki")
        formatki = [FormatkaAssignment.from_payload(f) for f in as_list(raw_items, "formatki")]

        kolory = split_colors(row.get("kolory_na_palecie"))
        if not kolory:
            kolory = split_colors([f.kolor for f in formatki if f.kolor])

        pallet_id = as_int(row.get("id", row.get("paleta_id")), "id")
        return cls(
            id=pallet_id,
            numer_palety=str(row.get("numer_palety") or f"PAL-{pallet_id}"),
            sztuk_total=as_int(
                row.get("sztuk_total", row.get("ilosc_formatek")),
                "sztuk_total",
                default=sum(f.ilosc for f in formatki),
            ),
            wysokosc_stosu=as_float(row.get("wysokosc_stosu"), "wysokosc_stosu", default=0.0),
            waga_kg=as_float(row.get("waga_kg"), "waga_kg", default=0.0),
            status=row.get("status"),
            przeznaczenie=row.get("przeznaczenie") or row.get("kierunek"),
            kolory=kolory,
            formatki=formatki,
        )

    def over_height(self, limit_mm: float = MAX_STACK_HEIGHT_MM) -> bool:
        return self.wysokosc_stosu > limit_mm

    def over_weight(self, limit_kg: float = MAX_PALLET_WEIGHT_KG) -> bool:
        return self.waga_kg > limit_kg

    def fingerprint(self) -> tuple:
        return (self.id, self.sztuk_total, tuple(sorted((f.formatka_id, f.ilosc) for f in self.formatki)))


def parse_pallets(data: Any, key: str = "palety") -> List[PalletDetail]:
    body = as_dict(data, "response")
    return [PalletDetail.from_payload(p) for p in as_list(body.get(key), key)]


# ---------- Reconciliation ----------
@dataclass
class QuantityTotals:
    zko_types: int
    zko_total: int
    pallets_count: int
    pallets_total: int
    ledger_entries: int
    ledger_total: int
    server_status: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> "QuantityTotals":
        body = as_dict(data, "response")
        if "podsumowanie" not in body:
            raise DecodeError("check-quantities response has no 'podsumowanie'")
        summary = as_dict(body.get("podsumowanie"), "podsumowanie")
        zko = as_dict(summary.get("zko"), "podsumowanie.zko")
        palety = as_dict(summary.get("palety"), "podsumowanie.palety")
        ledger = as_dict(summary.get("tabela_ilosc"), "podsumowanie.tabela_ilosc")
        return cls(
            zko_types=as_int(zko.get("typy_formatek"), "zko.typy_formatek", default=0),
            zko_total=as_int(zko.get("total_sztuk"), "zko.total_sztuk", default=0),
            pallets_count=as_int(palety.get("liczba_palet"), "palety.liczba_palet", default=0),
            pallets_total=as_int(palety.get("total_sztuk"), "palety.total_sztuk", default=0),
            ledger_entries=as_int(ledger.get("wpisy"), "tabela_ilosc.wpisy", default=0),
            ledger_total=as_int(ledger.get("total_sztuk"), "tabela_ilosc.total_sztuk", default=0),
            server_status=body.get("status"),
        )


@dataclass
class ReconciliationResult:
    zko_id: int
    totals: QuantityTotals
    zko_vs_palety: bool
    palety_vs_ilosc: bool
    tabela_ilosc_wypelniona: bool
    status: str

    @property
    def is_consistent(self) -> bool:
        return self.status == CONSISTENT

    @property
    def pallets_count(self) -> int:
        return self.totals.pallets_count

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["is_consistent"] = self.is_consistent
        return d


# ---------- Planning ----------
@dataclass
class PlanningParams:
    max_wysokosc_mm: int = MAX_STACK_HEIGHT_MM
    max_formatek_na_palete: int = DEFAULT_PIECES_PER_PALLET
    nadpisz_istniejace: bool = False
    operator: str = DEFAULT_OPERATOR
    strategia: str = DEFAULT_STRATEGY

    def validate(self) -> None:
        errors = []
        if not MIN_STACK_HEIGHT_MM <= self.max_wysokosc_mm <= MAX_ALLOWED_STACK_HEIGHT_MM:
            errors.append(
                f"max_wysokosc_mm musi być w zakresie {MIN_STACK_HEIGHT_MM}-{MAX_ALLOWED_STACK_HEIGHT_MM}"
            )
        if not MIN_PIECES_PER_PALLET <= self.max_formatek_na_palete <= MAX_PIECES_PER_PALLET:
            errors.append(
                f"max_formatek_na_palete musi być w zakresie {MIN_PIECES_PER_PALLET}-{MAX_PIECES_PER_PALLET}"
            )
        if self.strategia not in STRATEGIES:
            errors.append(f"Nieznana strategia: {self.strategia}")
        if not (self.operator or "").strip():
            errors.append("Operator jest wymagany")
        if errors:
            raise ValidationError("; ".join(errors), messages=errors)

    def to_payload(self, overwrite: bool) -> Dict[str, Any]:
        return {
            "max_wysokosc_mm": self.max_wysokosc_mm,
            "max_formatek_na_palete": self.max_formatek_na_palete,
            "nadpisz_istniejace": bool(overwrite),
            "operator": self.operator,
            "strategia": self.strategia,
        }


@dataclass
class PlanningResult:
    sukces: bool
    komunikat: str
    palety_utworzone: List[int] = field(default_factory=list)
    palety: List[PalletDetail] = field(default_factory=list)
    statystyki: Dict[str, Any] = field(default_factory=dict)
    strategia: Optional[str] = None
    wersja: Optional[str] = None
    wymaga_potwierdzenia: bool = False

    @classmethod
    def from_payload(cls, data: Any) -> "PlanningResult":
        body = as_dict(data, "response")
        needs_confirmation = any(bool(body.get(k)) for k in CONFIRMATION_FLAGS)
        if "sukces" not in body and not needs_confirmation:
            raise DecodeError("plan-modular response has no 'sukces'")
        return cls(
            sukces=bool(body.get("sukces")),
            komunikat=str(body.get("komunikat") or ""),
            palety_utworzone=[as_int(i, "palety_utworzone[]") for i in as_list(body.get("palety_utworzone"), "palety_utworzone")],
            palety=[PalletDetail.from_payload(p) for p in as_list(body.get("palety_szczegoly"), "palety_szczegoly")],
            statystyki=as_dict(body.get("statystyki"), "statystyki"),
            strategia=body.get("strategia"),
            wersja=body.get("wersja"),
            wymaga_potwierdzenia=needs_confirmation,
        )


@dataclass
class ConfirmationRequest:
    liczba_palet: int
    total_sztuk: int
    status: str
    zalecane_nadpisanie: bool
    komunikat: str
    strategia: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WorkflowOutcome:
    zko_id: int
    state: str
    reconciliation: Optional[ReconciliationResult] = None
    planning: Optional[PlanningResult] = None
    pallets: List[PalletDetail] = field(default_factory=list)
    confirmation: Optional[ConfirmationRequest] = None
    warnings: List[str] = field(default_factory=list)
    history: List[str] = field(default_factory=list)


# ---------- Formatki / positions / status ----------
@dataclass
class FormatkaAvailability:
    id: int
    pozycja_id: int
    nazwa: str
    ilosc_planowana: int
    ilosc_w_paletach: int
    dlugosc: Optional[float] = None
    szerokosc: Optional[float] = None
    grubosc: Optional[float] = None
    kolor: Optional[str] = None

    @property
    def ilosc_dostepna(self) -> int:
        # Not clamped: a negative value means the formatka is over-assigned.
        return self.ilosc_planowana - self.ilosc_w_paletach

    @property
    def is_overassigned(self) -> bool:
        return self.ilosc_dostepna < 0

    @classmethod
    def from_payload(cls, row: Any, pozycja_id: int) -> "FormatkaAvailability":
        if not isinstance(row, dict):
            raise DecodeError("Formatka entry is not an object")
        dl = row.get("dlugosc")
        sz = row.get("szerokosc")
        gr = row.get("grubosc")
        return cls(
            id=as_int(row.get("id"), "id"),
            pozycja_id=as_int(row.get("pozycja_id"), "pozycja_id", default=pozycja_id),
            nazwa=str(row.get("nazwa") or row.get("nazwa_formatki") or ""),
            ilosc_planowana=as_int(row.get("ilosc_planowana"), "ilosc_planowana"),
            ilosc_w_paletach=as_int(row.get("ilosc_w_paletach"), "ilosc_w_paletach", default=0),
            dlugosc=as_float(dl, "dlugosc") if dl is not None else None,
            szerokosc=as_float(sz, "szerokosc") if sz is not None else None,
            grubosc=as_float(gr, "grubosc") if gr is not None else None,
            kolor=row.get("kolor") or row.get("kolor_plyty"),
        )


@dataclass
class StatusChangeResult:
    sukces: bool
    komunikat: str
    stary_status: Optional[str] = None
    nowy_status: Optional[str] = None
    wymaga_potwierdzenia: bool = False
    bledy: List[str] = field(default_factory=list)
    ostrzezenia: List[str] = field(default_factory=list)
    cofniecie: bool = False


@dataclass
class PositionEditResult:
    sukces: bool
    komunikat: str
    zmienione_pola: List[str] = field(default_factory=list)
    pozycja: Optional[Dict[str, Any]] = None


@dataclass
class PositionDeleteResult:
    sukces: bool
    komunikat: str
    usuniete_formatki: int = 0
    usuniete_palety: int = 0


@dataclass
class PalletMutationResult:
    sukces: bool
    komunikat: str
    paleta_id: Optional[int] = None
    numer_palety: Optional[str] = None
    statystyki: Dict[str, Any] = field(default_factory=dict)
