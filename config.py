import os
from datetime import datetime, timezone
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

ENV = os.getenv("ENV", "TEST").upper()

DEFAULTS = {
    "TEST": {
        "API_URL": "http://localhost:5001/api",
        "OPERATOR": "user",
    },
    "LIVE": {
        "API_URL": "http://zko-service:5001/api",
        "OPERATOR": "system",
    }
}

cfg = DEFAULTS["LIVE"] if ENV == "LIVE" else DEFAULTS["TEST"]

API_URL = os.getenv("ZKO_API_URL", cfg["API_URL"]).rstrip("/")
DEFAULT_OPERATOR = os.getenv("ZKO_OPERATOR", cfg["OPERATOR"])

# HTTP behavior
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
RETRY_FACTOR = float(os.getenv("RETRY_FACTOR", "2.0"))

# Pallet limits (flagged, never enforced client-side)
MAX_STACK_HEIGHT_MM = int(os.getenv("MAX_STACK_HEIGHT_MM", "1440"))
MAX_PALLET_WEIGHT_KG = float(os.getenv("MAX_PALLET_WEIGHT_KG", "700"))
DEFAULT_PIECES_PER_PALLET = int(os.getenv("DEFAULT_PIECES_PER_PALLET", "80"))
DEFAULT_STRATEGY = os.getenv("DEFAULT_STRATEGY", "kolory")

# Bounds accepted by the plan-modular endpoint
MIN_STACK_HEIGHT_MM = 400
MAX_ALLOWED_STACK_HEIGHT_MM = 2000
MIN_PIECES_PER_PALLET = 50
MAX_PIECES_PER_PALLET = 500

# Workflow behavior
CONFIRMATION_TTL_SECONDS = int(os.getenv("CONFIRMATION_TTL_SECONDS", "300"))
PREVIEW_LIMIT = int(os.getenv("PREVIEW_LIMIT", "4"))

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "zko_planning.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "0") == "1"

# Local run history DB (SQLite)
STATE_DB_PATH = os.getenv("STATE_DB_PATH", os.path.join(BASE_DIR, "state.db"))

# Fallback messages when the server sends none
ERROR_MESSAGES = {
    400: "Nieprawidłowe dane wejściowe",
    401: "Brak autoryzacji",
    403: "Brak uprawnień",
    404: "Nie znaleziono zasobu",
    409: "Konflikt danych - sprawdź powiązania",
    500: "Błąd serwera - sprawdź logi",
    502: "Serwer niedostępny",
    503: "Usługa tymczasowo niedostępna",
}
NO_RESPONSE_MESSAGE = "Brak odpowiedzi z serwera"
UNKNOWN_ERROR_MESSAGE = "Nieznany błąd"

# -------------- HTTP Session --------------
# Gateway errors are retried for GET only; mutations go out exactly once.
SESSION = requests.Session()
retries = Retry(
    total=2,
    connect=0,
    read=0,
    status=2,
    backoff_factor=1.0,
    status_forcelist=[502, 503, 504],
    allowed_methods=["GET"],
    raise_on_status=False,
)
SESSION.mount("http://", HTTPAdapter(max_retries=retries))
SESSION.mount("https://", HTTPAdapter(max_retries=retries))
SESSION.headers.update({"Content-Type": "application/json", "Accept": "application/json"})

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
