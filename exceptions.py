# exceptions.py

class MissingColumnError(Exception):
    """Required spreadsheet column(s) could not be located in the header row."""
    def __init__(self, missing: list[str], headers: list[str] | None = None):
        super().__init__(f"필수 컬럼을 찾을 수 없습니다: {', '.join(missing)}")
        self.missing = list(missing)
        self.headers = headers or []


class ValidationError(Exception):
    """Caller-supplied batch violates a precondition. Raised before any network call."""


class TokenUnavailableError(Exception):
    """No stored OAuth token, or refreshing it failed."""


class RemoteCallError(Exception):
    """
    Raised when a Cafe24 call fails (non-2xx or transport error). Carries the
    provider's error body verbatim so operators can reconcile by hand.
    """
    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        status: int | None = None,
        error_message: str | None = None,
        details=None,
        raw_response_text: str | None = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status
        self.error_message = error_message
        self.details = details
        self.raw_response_text = raw_response_text


class ShipmentFormatError(RemoteCallError):
    """422 from bulk shipment registration: per-item tracking number validation failed."""
