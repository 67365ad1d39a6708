"""Pytest configuration and fixtures for test suite."""

import json
import os
import sys
import tempfile

# Logs and the run-history DB go to a scratch dir, set before config is imported
_TMP = tempfile.mkdtemp(prefix="zko_tests_")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("STATE_DB_PATH", os.path.join(_TMP, "state.db"))

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from unittest.mock import MagicMock, patch

import config
import db
from services import planning


def make_response(status_code=200, body=None, text=None):
    """A requests.Response stand-in; body=None means the body is not JSON."""
    resp = MagicMock()
    resp.status_code = status_code
    if body is not None:
        resp.json.return_value = body
        resp.text = json.dumps(body)
    else:
        resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        resp.text = text or ""
    return resp


class FakeServer:
    """
    Routes SESSION.request calls by (method, path). Each route holds a queue of
    responses; the last one repeats. An Exception in the queue is raised.
    """
    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, method, path, *responses):
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def __call__(self, method, url, params=None, json=None, timeout=None):
        path = url[len(config.API_URL):]
        self.calls.append((method, path, json))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected request {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def count(self, method, path=None):
        return sum(1 for m, p, _ in self.calls if m == method and (path is None or p == path))

    def bodies(self, method, path):
        return [b for m, p, b in self.calls if m == method and p == path]


def quantities(zko, palety, ilosc, wpisy=1, liczba_palet=0, status=None):
    """check-quantities body; numbers as strings the way node-pg returns SUM()."""
    if status is None:
        status = "OK" if (zko == palety == ilosc and wpisy > 0) else "NEEDS_FIX"
    return {
        "sukces": True,
        "podsumowanie": {
            "zko": {"typy_formatek": 3, "total_sztuk": str(zko)},
            "palety": {"liczba_palet": str(liczba_palet), "total_sztuk": str(palety)},
            "tabela_ilosc": {"wpisy": str(wpisy), "total_sztuk": str(ilosc)},
        },
        "status": status,
    }


def pallet(pid, sztuk, kolor="BIALY", height=720, weight=300, items=None, key="formatki_szczegoly"):
    items = items if items is not None else [
        {"formatka_id": 100 + pid, "nazwa": f"F{pid}", "ilosc": sztuk, "kolor": kolor}
    ]
    return {
        "id": pid,
        "numer_palety": f"PAL-ZKO-{pid:03d}",
        "sztuk_total": sztuk,
        "wysokosc_stosu": height,
        "waga_kg": weight,
        "kolory_na_palecie": kolor,
        key: items,
    }


def details(*pallets):
    return {"sukces": True, "palety": list(pallets), "wersja": "2.0"}


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Fresh run-history DB, no real sleeping, and a clean in-flight guard per test."""
    monkeypatch.setattr(config, "STATE_DB_PATH", str(tmp_path / "state.db"))
    db.init_state_db()
    monkeypatch.setattr(planning, "GUARD", planning.OrderGuard())
    with patch("retry.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def server():
    fake = FakeServer()
    with patch.object(config.SESSION, "request", side_effect=fake) as mock_request:
        fake.mock = mock_request
        yield fake
