"""Relay error taxonomy. Each error knows the status and body it maps to."""
from __future__ import annotations

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for errors answered with a JSON body."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class ClientValidationError(RelayError):
    """Malformed request body. The message is shown to the caller verbatim."""

    status_code = 400


class ConfigurationError(RelayError):
    """The relay is missing operator-supplied settings (e.g. the API key)."""

    status_code = 500


class UpstreamUnreachable(RelayError):
    """The provider could not be reached at the transport level."""

    status_code = 502


class UpstreamRejected(RelayError):
    """The provider answered with an error status or without a body."""

    def __init__(self, message: str, *, status: int, detail: str) -> None:
        # A 2xx without a body is still a failure; never answer it with 2xx.
        super().__init__(message, status_code=status if status and status >= 400 else 502)
        self.status = status
        self.detail = detail

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message, "status": self.status, "detail": self.detail}


class StreamCorruption(Exception):
    """Failure after the SSE response started; the status can no longer change."""
