from dataclasses import asdict

from flask import Flask, jsonify, request

from config import STATE_DB_PATH, DEFAULT_OPERATOR
from api import describe_error
from db import init_state_db, recent_runs, get_run
from exceptions import (
    ZkoError,
    ApiError,
    ValidationError,
    NotFoundError,
    NetworkError,
    WorkflowStateError,
    PlanningInProgress,
)
from models import PlanningParams
from services.planning import PlanningWorkflow, PendingConfirmations, AWAITING_CONFIRMATION
from services.presentation import build_summary
from services.reconciliation import check_quantities
from services.zko_status import change_status
from logger import get_logger

log = get_logger("admin")

app = Flask(__name__)
app.json.ensure_ascii = False

# IMPORTANT: waitress imports the module; it does NOT run __main__
# So we initialize schema + indexes at import time.
init_state_db()

PENDING = PendingConfirmations()


def _status_for(err: ZkoError) -> int:
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, ValidationError):
        return 400
    if isinstance(err, (PlanningInProgress, WorkflowStateError)):
        return 409
    if isinstance(err, NetworkError):
        return 503
    return 502


@app.errorhandler(ZkoError)
def handle_zko_error(err):
    status = _status_for(err)
    log.warning(f"{request.method} {request.path} -> {status}: {err}")
    payload = {"sukces": False, "komunikat": describe_error(err)}
    if isinstance(err, ApiError) and err.messages:
        payload["bledy"] = err.messages
    return jsonify(payload), status


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Oczekiwano obiektu JSON")
    return body


def _flag(body: dict, key: str) -> bool:
    # only real JSON booleans; "false" must never turn into True
    value = body.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(f"Pole '{key}' musi być wartością logiczną (true/false)")
    return value


def _int_field(body: dict, key: str, default: int) -> int:
    value = body.get(key, default)
    if isinstance(value, bool):
        raise ValidationError(f"Pole '{key}' musi być liczbą całkowitą")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Pole '{key}' musi być liczbą całkowitą")


def _params_from_json(body: dict) -> PlanningParams:
    defaults = PlanningParams()
    return PlanningParams(
        max_wysokosc_mm=_int_field(body, "max_wysokosc_mm", defaults.max_wysokosc_mm),
        max_formatek_na_palete=_int_field(body, "max_formatek_na_palete", defaults.max_formatek_na_palete),
        nadpisz_istniejace=_flag(body, "nadpisz_istniejace"),
        operator=str(body.get("operator") or DEFAULT_OPERATOR),
        strategia=str(body.get("strategia") or defaults.strategia),
    )


def _outcome_response(wf: PlanningWorkflow, outcome):
    return jsonify({
        "sukces": True,
        "run_id": wf.run_id,
        "state": outcome.state,
        "history": outcome.history,
        "reconciliation": outcome.reconciliation.to_dict() if outcome.reconciliation else None,
        "summary": build_summary(outcome).to_dict(),
    })


@app.route("/")
def dashboard():
    zko_id = request.args.get("zko_id", type=int)
    limit = request.args.get("limit", default=50, type=int)
    PENDING.sweep()
    return jsonify({
        "runs": recent_runs(limit=limit, zko_id=zko_id),
        "pending_confirmations": len(PENDING),
        "db_path": STATE_DB_PATH,
    })


@app.route("/run/<run_id>")
def run_detail(run_id):
    run = get_run(run_id)
    if run is None:
        return jsonify({"sukces": False, "komunikat": "Nie znaleziono zasobu"}), 404
    return jsonify(run)


@app.route("/zko/<int:zko_id>/check")
def zko_check(zko_id):
    result = check_quantities(zko_id)
    return jsonify({"sukces": True, **result.to_dict()})


@app.route("/zko/<int:zko_id>/plan", methods=["POST"])
def zko_plan(zko_id):
    PENDING.sweep()
    wf = PlanningWorkflow(zko_id, _params_from_json(_json_body()))
    outcome = wf.start()
    if wf.state == AWAITING_CONFIRMATION:
        PENDING.put(wf)
    return _outcome_response(wf, outcome)


def _pending_or_409(zko_id: int) -> PlanningWorkflow:
    wf = PENDING.pop(zko_id)
    if wf is None:
        raise WorkflowStateError(f"Brak oczekującego potwierdzenia dla ZKO {zko_id} (mogło wygasnąć)")
    return wf


@app.route("/zko/<int:zko_id>/plan/confirm", methods=["POST"])
def zko_plan_confirm(zko_id):
    wf = _pending_or_409(zko_id)
    return _outcome_response(wf, wf.confirm())


@app.route("/zko/<int:zko_id>/plan/cancel", methods=["POST"])
def zko_plan_cancel(zko_id):
    wf = _pending_or_409(zko_id)
    return _outcome_response(wf, wf.cancel())


@app.route("/zko/<int:zko_id>/status", methods=["POST"])
def zko_status_change(zko_id):
    body = _json_body()
    operator = str(body.get("operator") or DEFAULT_OPERATOR)
    result = change_status(
        zko_id,
        body.get("nowy_etap_kod"),
        operator=operator,
        uzytkownik=body.get("uzytkownik"),
        lokalizacja=body.get("lokalizacja"),
        komentarz=body.get("komentarz"),
        wymus=_flag(body, "wymus"),
    )
    return jsonify(asdict(result))


if __name__ == "__main__":
    # For local dev only. Waitress uses admin:app
    init_state_db()
    app.run(host="0.0.0.0", port=5050, debug=True)
