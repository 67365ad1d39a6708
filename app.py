# zko_planning/app.py

import argparse
import json
import sys

from config import (
    DEFAULT_OPERATOR,
    DEFAULT_PIECES_PER_PALLET,
    DEFAULT_STRATEGY,
    MAX_STACK_HEIGHT_MM,
)
from api import describe_error
from exceptions import ZkoError, PlanningInProgress
from models import PlanningParams, STRATEGIES
from logger import get_logger

# ---------------- WORKFLOW ----------------
from services.planning import PlanningWorkflow, AWAITING_CONFIRMATION
from services.presentation import build_summary, render_text


log = get_logger("app")


def ask_yes_no(question: str) -> bool:
    try:
        answer = input(f"{question} [t/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("t", "tak", "y", "yes")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan pallets for a ZKO order.")
    parser.add_argument("zko_id", type=int, help="ZKO order id")
    parser.add_argument("--height", type=int, default=MAX_STACK_HEIGHT_MM, help="max stack height in mm")
    parser.add_argument("--per-pallet", type=int, default=DEFAULT_PIECES_PER_PALLET, help="max pieces per pallet")
    parser.add_argument("--strategy", choices=STRATEGIES, default=DEFAULT_STRATEGY)
    parser.add_argument("--operator", default=DEFAULT_OPERATOR)
    parser.add_argument("--yes", action="store_true", help="overwrite existing pallets without asking")
    parser.add_argument("--json", action="store_true", help="print the summary as JSON")
    return parser.parse_args(argv)


def run_once(argv=None, confirm=ask_yes_no) -> int:
    args = parse_args(argv)
    params = PlanningParams(
        max_wysokosc_mm=args.height,
        max_formatek_na_palete=args.per_pallet,
        nadpisz_istniejace=args.yes,
        operator=args.operator,
        strategia=args.strategy,
    )

    log.info(f"CLI run for ZKO {args.zko_id} by {args.operator} (yes={args.yes})")
    try:
        wf = PlanningWorkflow(args.zko_id, params)
        outcome = wf.start()
        if wf.state == AWAITING_CONFIRMATION:
            summary = build_summary(outcome)
            print(render_text(summary))
            if confirm("Nadpisać istniejące palety?"):
                outcome = wf.confirm()
            else:
                outcome = wf.cancel()

    except PlanningInProgress as e:
        print(str(e), file=sys.stderr)
        return 3

    except ZkoError as e:
        # workflow already marked FAILED and logged
        print(f"Błąd: {describe_error(e)}", file=sys.stderr)
        return 2

    summary = build_summary(outcome)
    if args.json:
        print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(render_text(summary))

    log.info(f"CLI run for ZKO {args.zko_id} finished: {outcome.state}")
    return 0


if __name__ == "__main__":
    sys.exit(run_once())
