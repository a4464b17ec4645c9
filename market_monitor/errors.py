"""Transport error taxonomy. Raised by MonitorApiClient, caught by the controllers."""

from enum import Enum


class TransportErrorKind(str, Enum):
    NETWORK = "network"
    HTTP = "http"
    # Collector status 404: reported through CollectorStatusResponse.available, never raised.
    NOT_FOUND_DEGRADED = "not_found_degraded"
    VALIDATION = "validation"


class TransportError(Exception):
    """Base class for every failure of a backend call."""

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.http_status = http_status

    def __str__(self) -> str:
        if self.http_status is not None:
            return f"{self.message} (HTTP {self.http_status})"
        return self.message


class NetworkError(TransportError):
    """Timeout, refused connection or any other failure before a response arrived."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        super().__init__(TransportErrorKind.NETWORK, message)
        self.timed_out = timed_out


class HttpError(TransportError):
    """Backend answered with a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(TransportErrorKind.HTTP, message, http_status=status)
        self.status = status

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500


class ValidationError(TransportError):
    """Response body is not JSON or does not have the expected shape."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(TransportErrorKind.VALIDATION, message, http_status=http_status)
