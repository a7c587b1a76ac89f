"""Transport bridge — the duplex channel between a client context and the broker.

Bridge boundary
---------------
The bus core never talks to a concrete isolation mechanism.  It depends on
two small protocols:

``ClientTransport``
    What a client context sees: one-way ``send`` (event or response
    frame), acknowledged ``ack``, correlated ``request``, and a single push
    ``subscribe``.
``TargetHandle``
    What the broker sees: ``deliver`` (push one envelope) and ``on_closed``
    (lifecycle signal used to drop the target from the registry).

``LocalChannel`` implements both over an in-process asyncio loop.  Every
message is encoded to canonical JSON bytes on one side and decoded on the
other, so the two contexts never share objects, exactly as they would over
a real process boundary.  The channel is bound to one identity and stamps
it as ``source`` on everything it carries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol, runtime_checkable

from ipcbus.bridge.gateway import FrameGateway
from ipcbus.core.broker import Broker
from ipcbus.core.codec import decode_envelope, encode_envelope, encode_frame
from ipcbus.core.errors import ErrorCode
from ipcbus.models.envelopes import AckResult, BusResponse, Envelope, FrameKind

logger = logging.getLogger(__name__)

EnvelopeCallback = Callable[[Envelope], None]

# Frame kinds that are posted without waiting for a reply.
_POSTED_KINDS = (FrameKind.ONE_WAY, FrameKind.RESPONSE)


class TransportError(RuntimeError):
    """Raised when a transport-level operation fails."""


@runtime_checkable
class ClientTransport(Protocol):
    """Client-side view of the duplex channel."""

    def send(self, envelope: Envelope, *, kind: FrameKind = FrameKind.ONE_WAY) -> None:
        """Fire-and-forget delivery to the broker.

        *kind* is ``FrameKind.ONE_WAY`` for events or ``FrameKind.RESPONSE``
        for a reply meant to settle a pending request.
        """
        ...

    async def ack(self, envelope: Envelope) -> AckResult:
        """Deliver and wait for the broker to accept it into its pipeline."""
        ...

    async def request(self, envelope: Envelope, timeout_ms: int | None = None) -> BusResponse:
        """Deliver and wait for the correlated response."""
        ...

    def subscribe(self, callback: EnvelopeCallback) -> None:
        """Receive every envelope the broker pushes to this context."""
        ...


@runtime_checkable
class TargetHandle(Protocol):
    """Broker-side view of a dispatchable target."""

    def deliver(self, envelope: Envelope) -> None:
        ...

    def on_closed(self, callback: Callable[[], None]) -> None:
        ...


class LocalChannel:
    """In-process duplex channel bound to one client identity.

    Parameters
    ----------
    identity:
        The client context's identity.  Stamped as ``source`` on every
        outgoing envelope regardless of what the caller supplied.
    gateway:
        Broker-side frame endpoint.
    """

    def __init__(self, identity: str, gateway: FrameGateway) -> None:
        self._identity = identity
        self._gateway = gateway
        self._subscribers: list[EnvelopeCallback] = []
        self._closed_callbacks: list[Callable[[], None]] = []
        self._inflight: set[asyncio.Task[Any]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def inflight(self) -> int:
        """One-way frames posted to the broker but not yet processed."""
        return len(self._inflight)

    # ------------------------------------------------------------------
    # ClientTransport
    # ------------------------------------------------------------------

    def send(self, envelope: Envelope, *, kind: FrameKind = FrameKind.ONE_WAY) -> None:
        if kind not in _POSTED_KINDS:
            raise ValueError(f"send() posts one_way or response frames, not {kind.value}")
        raw = encode_frame(kind, self._bind(envelope))
        loop = self._running_loop()
        task = loop.create_task(self._gateway.handle(raw))
        self._inflight.add(task)
        task.add_done_callback(self._on_post_done)

    async def ack(self, envelope: Envelope) -> AckResult:
        bound = self._bind(envelope)
        reply = await self._gateway.handle(encode_frame(FrameKind.ACK, bound))
        if reply is None:
            return AckResult.rejected(bound.id, ErrorCode.MALFORMED_ENVELOPE)
        return AckResult.model_validate_json(reply)

    async def request(self, envelope: Envelope, timeout_ms: int | None = None) -> BusResponse:
        raw = encode_frame(FrameKind.REQUEST, self._bind(envelope), timeout_ms=timeout_ms)
        reply = await self._gateway.handle(raw)
        if reply is None:
            return BusResponse.failure(ErrorCode.MALFORMED_ENVELOPE)
        return BusResponse.model_validate_json(reply)

    def subscribe(self, callback: EnvelopeCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    async def flush(self) -> None:
        """Wait until every one-way frame sent so far has been processed."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------
    # TargetHandle
    # ------------------------------------------------------------------

    def deliver(self, envelope: Envelope) -> None:
        """Push *envelope* to this context on the next loop iteration."""
        if self._closed:
            logger.debug("Channel %s closed; dropping push %s", self._identity, envelope.id)
            return
        raw = encode_envelope(envelope)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver_raw(raw)
            return
        loop.call_soon(self._deliver_raw, raw)

    def on_closed(self, callback: Callable[[], None]) -> None:
        self._closed_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the channel and signal closure to the broker."""
        if self._closed:
            return
        self._closed = True
        self._subscribers.clear()
        callbacks, self._closed_callbacks = self._closed_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("Channel %s: close callback failed", self._identity)
        logger.info("Channel closed (identity=%s).", self._identity)

    def __enter__(self) -> LocalChannel:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"LocalChannel(identity={self._identity!r}, {state})"

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _bind(self, envelope: Envelope) -> Envelope:
        if self._closed:
            raise TransportError(f"Channel {self._identity!r} is closed")
        if envelope.source != self._identity:
            if envelope.source:
                logger.debug(
                    "Channel %s: overriding claimed source %r on %s",
                    self._identity,
                    envelope.source,
                    envelope.id,
                )
            envelope = envelope.model_copy(update={"source": self._identity})
        return envelope

    def _running_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError as exc:
            raise TransportError("LocalChannel.send requires a running event loop") from exc

    def _on_post_done(self, task: asyncio.Task[Any]) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Channel %s: broker failed to process frame",
                self._identity,
                exc_info=task.exception(),
            )

    def _deliver_raw(self, raw: bytes) -> None:
        if self._closed:
            return
        envelope = decode_envelope(raw)
        for callback in list(self._subscribers):
            try:
                callback(envelope)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Channel %s: subscriber failed for %s", self._identity, envelope.id
                )


def open_channel(broker: Broker, identity: str) -> LocalChannel:
    """Create a channel for *identity* and register it as a broker target."""
    channel = LocalChannel(identity, FrameGateway(broker))
    broker.register_target(identity, channel)
    return channel
