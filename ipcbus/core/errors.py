"""Error taxonomy for the bus.

Validation failures are exceptions: the synchronous ``emit`` path raises
them, while ``request`` and ``ack`` convert them into failure results
carrying the ``code`` string.  Capacity, timeout, handler and audit
failures never raise out of the bus; they only exist as codes.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Wire-level error strings returned in ``AckResult`` / ``BusResponse``."""

    MALFORMED_ENVELOPE = "malformed_envelope"
    UNKNOWN_DOMAIN = "unknown_domain"
    DOMAIN_TYPE_MISMATCH = "domain_type_mismatch"
    UNAUTHORIZED_SOURCE = "unauthorized_source"
    UNAUTHORIZED_TARGET = "unauthorized_target"
    OVER_CAPACITY = "over_capacity"
    TIMEOUT = "timeout"
    DUPLICATE_REQUEST = "duplicate_request"
    HANDLER_FAILURE = "handler_failure"
    AUDIT_FAILURE = "audit_failure"


class BusError(RuntimeError):
    """Base class for every error raised by ipcbus."""


class EnvelopeValidationError(BusError, ValueError):
    """Raised when an envelope is rejected by the routing policy."""

    code: ErrorCode = ErrorCode.MALFORMED_ENVELOPE

    def __init__(self, message: str, *, envelope_id: str = "") -> None:
        super().__init__(message)
        self.envelope_id = envelope_id


class MalformedEnvelope(EnvelopeValidationError):
    """A required envelope field is missing or empty."""

    code = ErrorCode.MALFORMED_ENVELOPE


class UnknownDomain(EnvelopeValidationError):
    """The envelope's domain is not declared by the policy."""

    code = ErrorCode.UNKNOWN_DOMAIN


class DomainTypeMismatch(EnvelopeValidationError):
    """The envelope's type is not listed under its domain."""

    code = ErrorCode.DOMAIN_TYPE_MISMATCH


class UnauthorizedSource(EnvelopeValidationError):
    """The sending identity may not emit this type."""

    code = ErrorCode.UNAUTHORIZED_SOURCE


class UnauthorizedTarget(EnvelopeValidationError):
    """The target identity may not receive this type."""

    code = ErrorCode.UNAUTHORIZED_TARGET


class PolicyLoadError(BusError):
    """Raised when a routing policy document cannot be parsed."""
