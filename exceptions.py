# zko_planning/exceptions.py


class ZkoError(Exception):
    """Base for everything this client raises on purpose."""


class ApiError(ZkoError):
    """
    Raised when a call to the ZKO service fails. Carries the structured
    details so the UI can show the server message and logs keep the raw body.
    """
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        server_message: str | None = None,
        messages: list | None = None,
        raw_response_text: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.server_message = server_message
        self.messages = messages or []
        self.raw_response_text = raw_response_text

    @property
    def user_message(self) -> str:
        return self.server_message or str(self)


class ValidationError(ApiError):
    """Bad input: rejected client-side or by the server with a 4xx. Never retried."""


class NotFoundError(ValidationError):
    """The order, position or pallet does not exist remotely (HTTP 404)."""


class RemoteFault(ApiError):
    """5xx from the server, or a business failure flagged `sukces: false`."""


class TransientError(ApiError):
    """The call did not produce a usable answer (no response or unreadable body)."""


class NetworkError(TransientError):
    """No response: timeout or connection failure. Read-only calls may retry."""


class DecodeError(TransientError):
    """Malformed or wrong-shaped JSON body. Fatal for that call, never retried."""


class WorkflowStateError(ZkoError):
    """confirm()/cancel() called outside AWAITING_CONFIRMATION, or a finished workflow restarted."""


class PlanningInProgress(ZkoError):
    """Another planning workflow for the same order is running or awaiting confirmation."""
    def __init__(self, zko_id: int):
        super().__init__(f"Planowanie palet dla ZKO {zko_id} jest już w toku.")
        self.zko_id = zko_id
