# zko_planning/services/presentation.py
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from config import PREVIEW_LIMIT, MAX_STACK_HEIGHT_MM, MAX_PALLET_WEIGHT_KG
from models import WorkflowOutcome, PalletDetail, split_colors
from services.pallets import limit_violations

TITLES = {
    "ALREADY_OK": "Palety są już poprawnie zaplanowane",
    "DONE": "Planowanie palet zakończone",
    "AWAITING_CONFIRMATION": "Palety już istnieją - wymagane potwierdzenie",
    "CANCELLED": "Planowanie anulowane - istniejące palety bez zmian",
    "FAILED": "Planowanie palet nie powiodło się",
}

FORMATKA_LINES = 2


@dataclass
class PalletPreview:
    numer_palety: str
    sztuk: int
    typy_formatek: int
    kolory: List[str]
    formatki: List[str]
    wiecej_formatek: int = 0
    za_wysoka: bool = False
    za_ciezka: bool = False
    przekroczenia: List[str] = field(default_factory=list)


@dataclass
class PlanningSummary:
    zko_id: int
    state: str
    title: str
    liczba_palet: int
    total_sztuk: int
    palety: List[PalletPreview] = field(default_factory=list)
    wiecej_palet: int = 0
    kolory: List[str] = field(default_factory=list)
    ostrzezenie: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    potwierdzenie: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _preview(p: PalletDetail) -> PalletPreview:
    lines = []
    for f in p.formatki[:FORMATKA_LINES]:
        name = f.nazwa or f"#{f.formatka_id}"
        lines.append(f"{name}: {f.ilosc} szt.")
    return PalletPreview(
        numer_palety=p.numer_palety,
        sztuk=p.sztuk_total,
        typy_formatek=len(p.formatki),
        kolory=list(p.kolory),
        formatki=lines,
        wiecej_formatek=max(0, len(p.formatki) - FORMATKA_LINES),
        za_wysoka=p.over_height(MAX_STACK_HEIGHT_MM),
        za_ciezka=p.over_weight(MAX_PALLET_WEIGHT_KG),
        przekroczenia=limit_violations(p, MAX_STACK_HEIGHT_MM, MAX_PALLET_WEIGHT_KG),
    )


def build_summary(outcome: WorkflowOutcome, preview_limit: int = PREVIEW_LIMIT) -> PlanningSummary:
    """Pure view of a workflow outcome; no I/O."""
    pallets = outcome.pallets
    rec = outcome.reconciliation

    banner = None
    if rec is not None and not rec.is_consistent and outcome.state in ("DONE", "CANCELLED"):
        t = rec.totals
        banner = (
            f"Uwaga: ilości się nie zgadzają (ZKO: {t.zko_total}, palety: {t.pallets_total}, "
            f"tabela ilości: {t.ledger_total})"
        )

    return PlanningSummary(
        zko_id=outcome.zko_id,
        state=outcome.state,
        title=TITLES.get(outcome.state, outcome.state),
        liczba_palet=len(pallets),
        total_sztuk=sum(p.sztuk_total for p in pallets),
        palety=[_preview(p) for p in pallets[:preview_limit]],
        wiecej_palet=max(0, len(pallets) - preview_limit),
        kolory=split_colors([c for p in pallets for c in p.kolory]),
        ostrzezenie=banner,
        warnings=list(outcome.warnings),
        potwierdzenie=outcome.confirmation.to_dict() if outcome.confirmation else None,
    )


def render_text(summary: PlanningSummary) -> str:
    out = [f"ZKO {summary.zko_id}: {summary.title}"]

    if summary.ostrzezenie:
        out.append(f"!! {summary.ostrzezenie}")

    out.append(f"Palet: {summary.liczba_palet}, sztuk razem: {summary.total_sztuk}")
    if summary.kolory:
        out.append(f"Kolory: {', '.join(summary.kolory)}")

    for p in summary.palety:
        flags = []
        if p.za_wysoka:
            flags.append("ZA WYSOKA")
        if p.za_ciezka:
            flags.append("ZA CIĘŻKA")
        head = f"  {p.numer_palety}: {p.sztuk} szt., {p.typy_formatek} typ(y) formatek"
        if p.kolory:
            head += f" [{', '.join(p.kolory)}]"
        if flags:
            head += f" ({', '.join(flags)})"
        out.append(head)
        for line in p.formatki:
            out.append(f"    - {line}")
        if p.wiecej_formatek:
            out.append(f"    ... i {p.wiecej_formatek} więcej")
        for v in p.przekroczenia:
            out.append(f"    ! {v}")

    if summary.wiecej_palet:
        out.append(f"  + {summary.wiecej_palet} więcej palet")

    for w in summary.warnings:
        if w != summary.ostrzezenie:
            out.append(f"Ostrzeżenie: {w}")

    if summary.potwierdzenie:
        c = summary.potwierdzenie
        out.append(
            f"Istniejące palety: {c['liczba_palet']} ({c['total_sztuk']} szt.), status: {c['status']}"
        )
        out.append(c["komunikat"])
        if c["zalecane_nadpisanie"]:
            out.append("Zalecane: nadpisz istniejące palety.")

    return "\n".join(out)
