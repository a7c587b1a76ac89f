"""BusClient — the bus as seen from one isolated client context.

A client owns exactly one subscription to its transport, taken lazily on the
first ``on``/``once``.  Every pushed envelope is re-dispatched locally by
``type`` through a ``TopicRegistry``, so any number of topic handlers share
that single low-level listener.

Outgoing envelopes are built from drafts: a mapping (or an ``Envelope``)
without ``source``/``ts``, which the client stamps with its own identity and
the current time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ipcbus.bridge.transport import ClientTransport
from ipcbus.core.codec import parse_envelope
from ipcbus.core.registry import Handler, TopicRegistry, Unsubscribe
from ipcbus.models.envelopes import (
    AckResult,
    BusResponse,
    Envelope,
    FrameKind,
    new_envelope_id,
    now_ms,
)

logger = logging.getLogger(__name__)

Draft = Envelope | Mapping[str, Any]


class BusClient:
    """Typed-topic facade over one ``ClientTransport``.

    Parameters
    ----------
    identity:
        This context's identity, stamped as ``source`` on everything it sends.
    transport:
        The duplex channel to the broker.

    Usage
    -----
    >>> client = BusClient("workbench", open_channel(broker, "workbench"))
    >>> off = client.on("TICKET_DONE", lambda e: print(e.payload))
    >>> res = await client.request(
    ...     {"type": "RISK_CHECK", "domain": "risk", "target": "main",
    ...      "payload": {"customerId": "C-001", "amount": 5000}},
    ...     timeout_ms=8000,
    ... )
    """

    def __init__(self, identity: str, transport: ClientTransport) -> None:
        self._identity = identity
        self._transport = transport
        self._registry = TopicRegistry(name=identity)
        self._subscribed = False

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def transport(self) -> ClientTransport:
        return self._transport

    @property
    def registry(self) -> TopicRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on(self, event_type: str, handler: Handler) -> Unsubscribe:
        """Subscribe *handler* to *event_type*; return an unsubscribe callable."""
        self._ensure_subscribed()
        return self._registry.on(event_type, handler)

    def once(self, event_type: str, handler: Handler) -> Unsubscribe:
        """Subscribe *handler* for at most one delivery."""
        self._ensure_subscribed()
        return self._registry.once(event_type, handler)

    def off(self, event_type: str, handler: Handler | None = None) -> None:
        """Remove *handler*, or every handler for *event_type* if omitted."""
        self._registry.off(event_type, handler)

    def _ensure_subscribed(self) -> None:
        if self._subscribed:
            return
        self._subscribed = True
        self._transport.subscribe(self._on_transport_event)
        logger.debug("Client %s subscribed to transport", self._identity)

    def _on_transport_event(self, envelope: Envelope) -> None:
        # Handler failures are contained by the registry and never reach
        # the transport.
        self._registry.dispatch(envelope)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def emit(self, draft: Draft) -> Envelope:
        """Stamp and send one-way.  Returns the envelope that was sent."""
        envelope = self._stamp(draft)
        self._transport.send(envelope)
        return envelope

    async def ack(self, draft: Draft) -> AckResult:
        """Stamp and send; resolve once the broker accepted it into its pipeline."""
        return await self._transport.ack(self._stamp(draft))

    async def request(self, draft: Draft, timeout_ms: int | None = None) -> BusResponse:
        """Stamp and send as a correlated request; resolve with the broker's outcome."""
        return await self._transport.request(self._stamp(draft), timeout_ms)

    def respond(self, original: Envelope, payload: Any) -> Envelope:
        """Reply to *original* in a response frame, correlated through ``replyTo``."""
        reply = Envelope(
            id=new_envelope_id(),
            type=original.type,
            domain=original.domain,
            source=self._identity,
            payload=payload,
            ts=now_ms(),
            reply_to=original.id,
        )
        self._transport.send(reply, kind=FrameKind.RESPONSE)
        return reply

    def _stamp(self, draft: Draft) -> Envelope:
        if isinstance(draft, Envelope):
            data = draft.to_wire()
        else:
            data = dict(draft)
        data["source"] = self._identity
        data["ts"] = now_ms()
        return parse_envelope(data, assign_id=True)

    def close(self) -> None:
        """Drop every local handler."""
        self._registry.clear()
        self._registry.cancel_pending()

    def __repr__(self) -> str:
        return f"BusClient(identity={self._identity!r}, topics={len(self._registry.types)})"
