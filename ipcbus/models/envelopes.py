"""Bus envelope, framing and result models.

Every message that crosses the transport is an ``Envelope`` wrapped in a
``Frame``.  The frame's ``kind`` tells the receiving side which channel the
message arrived on, so dispatch never depends on which optional fields
happen to be populated.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

BROADCAST = "*"

_PayloadT = TypeVar("_PayloadT", bound=BaseModel)


def new_envelope_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Envelope(BaseModel):
    """The unit of communication on the bus.

    ``target`` is an identity, the broadcast marker ``"*"``, or ``None`` for
    broker-only delivery.  ``reply_to`` (wire name ``replyTo``) marks the
    envelope as a response to the request whose ``id`` it carries.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_envelope_id)
    type: str
    domain: str
    source: str
    target: str | None = None
    payload: Any = None
    ts: int = Field(default_factory=now_ms)
    reply_to: str | None = Field(default=None, alias="replyTo")

    @property
    def is_response(self) -> bool:
        return bool(self.reply_to)

    @property
    def is_broadcast(self) -> bool:
        return self.target == BROADCAST

    def payload_as(self, model: type[_PayloadT]) -> _PayloadT:
        """Parse ``payload`` into a typed payload model."""
        return model.model_validate(self.payload or {})

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using wire aliases, without unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FrameKind(str, Enum):
    """The four message channels a transport carries."""

    ONE_WAY = "one_way"
    ACK = "ack"
    REQUEST = "request"
    RESPONSE = "response"


class Frame(BaseModel):
    """Transport framing around a raw envelope dict.

    The envelope stays a plain dict so the receiving side can report a
    malformed envelope through the normal validation taxonomy instead of
    failing at frame decode time.
    """

    model_config = ConfigDict(frozen=True)

    kind: FrameKind
    envelope: dict[str, Any]
    timeout_ms: int | None = None


class AckResult(BaseModel):
    """Outcome of an acknowledged send: accepted into the pipeline or not."""

    model_config = ConfigDict(frozen=True)

    id: str
    error: str | None = None

    @classmethod
    def rejected(cls, envelope_id: str, error: str | Enum) -> AckResult:
        if isinstance(error, Enum):
            error = error.value
        return cls(id=envelope_id, error=error)

    @property
    def accepted(self) -> bool:
        return self.error is None


class BusResponse(BaseModel):
    """Settled outcome of a correlated request."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def success(cls, data: Any) -> BusResponse:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str | Enum) -> BusResponse:
        if isinstance(error, Enum):
            error = error.value
        return cls(ok=False, error=error)
