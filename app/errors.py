"""Relay error taxonomy.

Every error carries the HTTP status it maps to at the boundary; the handler
in ``app.main`` renders them as ``{"error": message, "type": error_type}``.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code: int = 500
    error_type: str = "relay_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "type": self.error_type}


class InvalidRequest(RelayError):
    """Missing or malformed field in the caller's request."""

    status_code = 400
    error_type = "invalid_request"


class UpstreamUnavailable(RelayError):
    """The daemon could not be reached or refused before streaming began."""

    status_code = 502
    error_type = "upstream_unavailable"


class UpstreamStreamError(RelayError):
    """The upstream stream broke after output was already delivered."""

    status_code = 502
    error_type = "upstream_stream_error"


class AlreadyInProgress(RelayError):
    status_code = 409
    error_type = "already_in_progress"

    def __init__(self, model_id: str):
        super().__init__(f"A download for '{model_id}' is already in progress")
        self.model_id = model_id


class ModelNotFound(RelayError):
    status_code = 404
    error_type = "model_not_found"

    def __init__(self, model_id: str):
        super().__init__(f"Model '{model_id}' not found")
        self.model_id = model_id


class UpstreamCommandError(RelayError):
    """A daemon CLI command ran but exited non-zero."""

    status_code = 500
    error_type = "upstream_command_error"


class PayloadTooLarge(RelayError):
    status_code = 413
    error_type = "payload_too_large"

    def __init__(self, limit: int):
        super().__init__(f"Request body exceeds limit of {limit} bytes")
        self.limit = limit


class RelayCancelled(Exception):
    """Raised inside a relay when its cancellation token fires.

    Not part of the error taxonomy: relays catch it and finish with
    ``RelayOutcome.CANCELLED``.
    """
