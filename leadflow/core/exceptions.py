"""Custom exceptions for the leadflow engine."""

from __future__ import annotations

from typing import Any


class LeadFlowError(Exception):
    """Base exception for the leadflow engine."""

    retryable = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.__class__.__name__, "message": str(self)}


class ConfigurationError(LeadFlowError):
    """Raised when configuration is invalid."""

    pass


class ValidationFailure(LeadFlowError):
    """Raised when input is malformed and rejected before entering the engine."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.field:
            payload["field"] = self.field
        return payload


class DuplicateEntry(LeadFlowError):
    """Signals an idempotent dedup hit. Callers treat it as a successful no-op."""

    def __init__(self, message: str, existing_id: int) -> None:
        super().__init__(message)
        self.existing_id = existing_id


class ExternalServiceFailure(LeadFlowError):
    """Raised when a transport or external collaborator fails."""

    retryable = True

    def __init__(self, message: str, service: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.original = original

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["service"] = self.service
        return payload


class LeadProcessingFailure(LeadFlowError):
    """Raised when an engine invariant is violated during a lifecycle stage."""

    retryable = True

    def __init__(self, message: str, stage: str, lead_id: int | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.lead_id = lead_id

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["stage"] = self.stage
        payload["lead_id"] = self.lead_id
        return payload


class ReferenceFailure(LeadFlowError):
    """Raised when an operation targets a lead, sequence, job or event that does not exist."""

    def __init__(self, kind: str, ref: Any) -> None:
        super().__init__(f"{kind} not found: {ref}")
        self.kind = kind
        self.ref = ref


class AuthenticationFailure(LeadFlowError):
    """Raised when an inbound webhook fails signature or timestamp checks."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


def is_retryable(exc: BaseException) -> bool:
    """Unknown exceptions are treated as transient."""
    if isinstance(exc, LeadFlowError):
        return exc.retryable
    return True
