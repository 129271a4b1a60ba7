"""Error taxonomy shared by the node's services and API layer.

Every failure that reaches a caller is a `KarmaError` subclass carrying an
HTTP-style status code, a stable machine-readable `code`, and optional
structured `details` that front ends render for the end user.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_SERVICE_UNAVAILABLE = 503


class KarmaError(RuntimeError):
    """Base exception for node failures surfaced to callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(KarmaError):
    """Malformed input at a boundary; user-correctable."""

    status_code = HTTP_BAD_REQUEST
    code = "VALIDATION_ERROR"


class ProofOfPresenceError(KarmaError):
    """Vote rejected because the players did not share enough play time."""

    status_code = HTTP_FORBIDDEN
    code = "PROOF_OF_PRESENCE_FAILED"


class DuplicateVoteError(KarmaError):
    """A vote already exists for the winning session pair."""

    status_code = HTTP_CONFLICT
    code = "DUPLICATE_VOTE"

    def __init__(self, message: str, *, existing_vote: Mapping[str, Any]) -> None:
        super().__init__(message, details={"existingVote": dict(existing_vote)})
        self.existing_vote = dict(existing_vote)


class NotFoundError(KarmaError):
    """Missing player, session or node."""

    status_code = HTTP_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(f"{resource} not found", details=details)
        self.resource = resource


class UntrustedSourceError(KarmaError):
    """Replication attempted by an unknown or inactive node."""

    status_code = HTTP_FORBIDDEN
    code = "UNTRUSTED_SOURCE"


class TransientIOError(KarmaError):
    """File-system or network hiccup; retried on the next natural cycle."""

    status_code = HTTP_SERVICE_UNAVAILABLE
    code = "TRANSIENT_IO"
