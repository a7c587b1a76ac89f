"""ipcbus data models — all Pydantic v2, all frozen (immutable)."""

from ipcbus.models.envelopes import (
    BROADCAST,
    AckResult,
    BusResponse,
    Envelope,
    Frame,
    FrameKind,
)
from ipcbus.models.events import (
    EVENT_PAYLOADS,
    REQUEST_PAYLOADS,
    RESPONSE_PAYLOADS,
    payload_model,
)
from ipcbus.models.policy import DEFAULT_POLICY, DomainRule, RoutingPolicy, TypeRule

__all__ = [
    # envelopes
    "BROADCAST",
    "Envelope",
    "Frame",
    "FrameKind",
    "AckResult",
    "BusResponse",
    # typed payload maps
    "EVENT_PAYLOADS",
    "REQUEST_PAYLOADS",
    "RESPONSE_PAYLOADS",
    "payload_model",
    # policy
    "DomainRule",
    "TypeRule",
    "RoutingPolicy",
    "DEFAULT_POLICY",
]
