#api.py
import json
from typing import Any, Dict, List, Optional

import requests

from config import API_URL, SESSION, REQUEST_TIMEOUT_SECONDS, ERROR_MESSAGES, NO_RESPONSE_MESSAGE, UNKNOWN_ERROR_MESSAGE
from exceptions import ApiError, ValidationError, NotFoundError, RemoteFault, NetworkError, DecodeError
from logger import get_logger

log = get_logger("api")

RAW_TEXT_LIMIT = 2000


def build_url(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"{API_URL}{path}"


def server_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in ("komunikat", "error", "message"):
        val = body.get(key)
        if val:
            return str(val).strip()
    return None


def fallback_message(status_code: Optional[int]) -> str:
    if status_code is None:
        return NO_RESPONSE_MESSAGE
    if status_code in ERROR_MESSAGES:
        return ERROR_MESSAGES[status_code]
    if status_code >= 500:
        return ERROR_MESSAGES[500]
    return f"Błąd HTTP {status_code}" if status_code else UNKNOWN_ERROR_MESSAGE


def _body_messages(body: Any) -> List[str]:
    if not isinstance(body, dict):
        return []
    msgs: List[str] = []
    for key in ("bledy", "details"):
        val = body.get(key)
        if isinstance(val, list):
            msgs.extend(str(v) for v in val if v)
        elif val:
            msgs.append(str(val))
    return msgs


def send_request(
    method: str,
    path: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> requests.Response:
    url = build_url(path)
    if json_body is not None:
        log.debug(f"Sending {method} {url} payload: {json.dumps(json_body, ensure_ascii=False, default=str)}")
    else:
        log.debug(f"Sending {method} {url} params={params}")

    try:
        resp = SESSION.request(method, url, params=params, json=json_body, timeout=timeout)
    except requests.Timeout as e:
        log.warning(f"{method} {url} timed out after {timeout}s: {e}")
        raise NetworkError(NO_RESPONSE_MESSAGE, raw_response_text=str(e))
    except requests.RequestException as e:
        log.warning(f"{method} {url} failed without response: {e}")
        raise NetworkError(NO_RESPONSE_MESSAGE, raw_response_text=str(e))

    log.debug(f"API Response: {resp.status_code} {resp.text[:RAW_TEXT_LIMIT]}")
    return resp


def decode_response(resp: requests.Response) -> Any:
    """
    Turn a response into JSON or a normalized ApiError.
    HTTP status decides the error class; an unreadable body on a 2xx is a DecodeError.
    """
    status = resp.status_code
    raw_text = (resp.text or "")[:RAW_TEXT_LIMIT]

    body: Any = None
    decode_problem: Optional[str] = None
    try:
        body = resp.json()
    except ValueError as e:
        decode_problem = f"Exception parsing API response JSON: {e}"

    if status >= 400:
        msg = server_message(body)
        kwargs = dict(
            status_code=status,
            server_message=msg,
            messages=_body_messages(body),
            raw_response_text=raw_text,
        )
        text = msg or fallback_message(status)
        if status == 404:
            raise NotFoundError(text, **kwargs)
        if status < 500:
            raise ValidationError(text, **kwargs)
        raise RemoteFault(text, **kwargs)

    if decode_problem:
        log.error(f"Undecodable body (HTTP {status}): {decode_problem}")
        raise DecodeError(
            "Nieprawidłowa odpowiedź serwera",
            status_code=status,
            messages=[decode_problem],
            raw_response_text=raw_text,
        )
    return body


def request_json(method: str, path: str, **kwargs) -> Any:
    return decode_response(send_request(method, path, **kwargs))


def ensure_success(body: Any, what: str) -> Dict[str, Any]:
    """Business failures come back as HTTP 200 with `sukces: false`."""
    if not isinstance(body, dict):
        raise DecodeError(f"{what}: expected a JSON object, got {type(body).__name__}")
    if body.get("sukces") is False:
        msg = server_message(body) or f"{what} nie powiodło się"
        log.warning(f"{what} rejected by server: {msg}")
        raise RemoteFault(
            msg,
            server_message=server_message(body),
            messages=_body_messages(body),
            raw_response_text=json.dumps(body, ensure_ascii=False, default=str)[:RAW_TEXT_LIMIT],
        )
    return body


def describe_error(err: Exception) -> str:
    """Message shown to the operator for any failure."""
    if isinstance(err, ApiError):
        return err.user_message
    return str(err) or UNKNOWN_ERROR_MESSAGE
