# Overview: Error kinds raised by the booking-to-settlement pipeline.

"""
Pipeline errors.

Every error carries a human-readable message plus a ``details`` dict that is
returned verbatim to API callers. ``code`` and ``status_code`` drive the JSON
error envelope built by the routes.

- ValidationError: missing/invalid input, detected before any write.
- NotFound: referenced client/staff/catalog item/tab missing or inactive.
- InvalidState: entity is not in the lifecycle state the operation needs.
- ConflictError: business rule conflict (double booking, ambiguous client,
  ledger entry already posted).
- DependencyFailure: a write in a multi-step sequence failed. ``details``
  names the failed ``stage`` and any entity ids already persisted; nothing
  is compensated automatically.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors."""

    code = "pipeline_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(PipelineError):
    """400-level input problem."""

    code = "validation_error"
    status_code = 400


class NotFound(PipelineError):
    code = "not_found"
    status_code = 404


class InvalidState(PipelineError):
    code = "invalid_state"
    status_code = 409


class ConflictError(PipelineError):
    """409-level business rule conflict (e.g., overlapping appointment)."""

    code = "conflict"
    status_code = 409


class DependencyFailure(PipelineError):
    code = "dependency_failure"
    status_code = 502

    def __init__(self, message: str, *, stage: str, **partial_ids):
        details = {"stage": stage}
        details.update({k: v for k, v in partial_ids.items() if v is not None})
        super().__init__(message, details)
        self.stage = stage
