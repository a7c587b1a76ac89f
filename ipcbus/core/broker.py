"""Broker — the privileged side of the bus.

Every envelope goes through one pipeline::

    correlate -> validate -> audit -> local handlers -> dispatch

A response whose ``replyTo`` matches a pending request short-circuits at
the first step and settles that request; it is never validated, audited,
handled locally or forwarded.  An unmatched response continues through the
remaining steps like any other envelope.  Response frames enter through
``correlate`` and one-way frames through ``publish``, so only a response
frame can settle a request.  Validation failures stop the pipeline before
any side effect.  Audit, handler and forwarding failures are logged and
contained.

The broker runs on a single asyncio loop and keeps all state on the
instance: one ``Broker`` per process, passed explicitly to whatever needs it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ipcbus.config import BusConfig, config as default_config
from ipcbus.core.codec import parse_envelope
from ipcbus.core.errors import EnvelopeValidationError, ErrorCode, MalformedEnvelope
from ipcbus.core.pending import PendingTable
from ipcbus.core.registry import Handler, TopicRegistry, Unsubscribe
from ipcbus.models.envelopes import (
    BROADCAST,
    AckResult,
    BusResponse,
    Envelope,
)
from ipcbus.routing.policy_router import PolicyRouter

if TYPE_CHECKING:
    from ipcbus.bridge.audit_bridge import AuditHook
    from ipcbus.bridge.transport import TargetHandle

logger = logging.getLogger(__name__)


class Broker:
    """Event registry, correlation table and dispatcher.

    Parameters
    ----------
    router:
        Routing policy validator.  Defaults to a ``PolicyRouter`` loaded from
        ``settings.policy_path`` or the built-in default policy.
    audit:
        Optional audit hook called for every validated envelope.
    settings:
        Configuration; defaults to the module-level ``config``.
    request_timeout_ms / max_pending / sweep_interval_ms:
        Per-instance overrides of the matching settings.
    """

    def __init__(
        self,
        router: PolicyRouter | None = None,
        audit: AuditHook | None = None,
        *,
        settings: BusConfig | None = None,
        identity: str | None = None,
        request_timeout_ms: int | None = None,
        max_pending: int | None = None,
        sweep_interval_ms: int | None = None,
    ) -> None:
        settings = settings or default_config
        self._identity = identity or settings.identity
        self._router = router or PolicyRouter(path=settings.policy_path)
        self._audit = audit
        self._request_timeout_ms = request_timeout_ms or settings.request_timeout_ms
        self._sweep_interval_ms = sweep_interval_ms or settings.sweep_interval_ms

        self._targets: dict[str, TargetHandle] = {}
        self._handlers = TopicRegistry(name=self._identity)
        self._pending = PendingTable(max_pending or settings.max_pending_requests)
        self._housekeeping: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def router(self) -> PolicyRouter:
        return self._router

    @property
    def targets(self) -> list[str]:
        """Names of the currently registered targets."""
        return list(self._targets)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> PendingTable:
        return self._pending

    @property
    def handlers(self) -> TopicRegistry:
        return self._handlers

    @property
    def is_running(self) -> bool:
        return self._housekeeping is not None and not self._housekeeping.done()

    # ------------------------------------------------------------------
    # Target registry
    # ------------------------------------------------------------------

    def register_target(self, name: str, handle: TargetHandle) -> None:
        """Associate *name* with a dispatchable target.

        The entry is removed automatically when the handle signals closure.
        Re-registering a name replaces the previous handle; a late closure
        signal from the replaced handle does not remove the new one.
        """
        self._targets[name] = handle
        handle.on_closed(lambda: self._on_target_closed(name, handle))
        logger.info("Registered target: %s", name)

    def unregister_target(self, name: str) -> None:
        if self._targets.pop(name, None) is not None:
            logger.info("Unregistered target: %s", name)

    def _on_target_closed(self, name: str, handle: TargetHandle) -> None:
        if self._targets.get(name) is handle:
            del self._targets[name]
            logger.info("Target %s closed; removed from registry", name)

    # ------------------------------------------------------------------
    # Broker-local handlers
    # ------------------------------------------------------------------

    def on(self, event_type: str, handler: Handler) -> Unsubscribe:
        return self._handlers.on(event_type, handler)

    def once(self, event_type: str, handler: Handler) -> Unsubscribe:
        return self._handlers.once(event_type, handler)

    def off(self, event_type: str, handler: Handler | None = None) -> None:
        self._handlers.off(event_type, handler)

    # ------------------------------------------------------------------
    # Emit pipeline
    # ------------------------------------------------------------------

    def emit(self, envelope: Envelope | Mapping[str, Any]) -> None:
        """Run *envelope* through the pipeline.

        A reply (``replyTo`` set) goes to ``correlate``; anything else to
        ``publish``.

        Raises
        ------
        EnvelopeValidationError
            If the routing policy rejects the envelope.  Nothing has been
            audited, handled or dispatched when this is raised.
        """
        env = parse_envelope(envelope)
        if env.reply_to:
            self.correlate(env)
        else:
            self._process(env)

    def publish(self, envelope: Envelope | Mapping[str, Any]) -> None:
        """Run an ordinary event through validate/audit/handlers/dispatch.

        No correlation is attempted, even if ``replyTo`` is set: only a
        response frame may settle a pending request.
        """
        self._process(parse_envelope(envelope))

    def correlate(self, envelope: Envelope | Mapping[str, Any]) -> bool:
        """Settle the pending request *envelope* replies to.

        Returns ``True`` if a pending request was resolved.  An unmatched
        reply (late, unknown or already settled) is not dropped: it continues
        through the rest of the pipeline like any other envelope and
        ``False`` is returned.

        Raises
        ------
        MalformedEnvelope
            If *envelope* carries no ``replyTo``.
        EnvelopeValidationError
            If an unmatched reply is rejected by the routing policy.
        """
        env = parse_envelope(envelope)
        if not env.reply_to:
            raise MalformedEnvelope(
                f"Response envelope {env.id} has no replyTo", envelope_id=env.id
            )

        # 1. Correlation short-circuit
        if self._pending.resolve(env.reply_to, env.payload):
            return True
        logger.info(
            "Reply %s to %s from %s matches no pending request; processing as event",
            env.id,
            env.reply_to,
            env.source,
        )
        self._process(env)
        return False

    def _process(self, env: Envelope) -> None:
        # 2. Validate
        self._router.validate(env)

        # 3. Audit
        self._record(env)

        # 4. Local handlers
        self._handlers.dispatch(env)

        # 5. Dispatch
        self._dispatch(env)

    def _record(self, envelope: Envelope) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(envelope)
        except Exception:  # noqa: BLE001
            logger.exception(
                "%s: audit hook failed for envelope %s",
                ErrorCode.AUDIT_FAILURE.value,
                envelope.id,
            )

    def _dispatch(self, envelope: Envelope) -> None:
        if envelope.target is None:
            return
        if envelope.target == BROADCAST:
            recipients = list(self._targets.items())
        else:
            handle = self._targets.get(envelope.target)
            if handle is None:
                logger.debug(
                    "No target %r registered; envelope %s stays broker-internal",
                    envelope.target,
                    envelope.id,
                )
                return
            recipients = [(envelope.target, handle)]

        for name, handle in recipients:
            try:
                handle.deliver(envelope)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Forwarding envelope %s to target %s failed", envelope.id, name
                )

    # ------------------------------------------------------------------
    # Request / response
    # ------------------------------------------------------------------

    async def request(
        self,
        envelope: Envelope | Mapping[str, Any],
        timeout_ms: int | None = None,
    ) -> BusResponse:
        """Emit *envelope* and wait for the correlated reply.

        Always returns a settled ``BusResponse``: the reply payload, or an
        ``over_capacity`` / ``duplicate_request`` / ``timeout`` /
        validation-code failure.
        """
        try:
            env = parse_envelope(envelope, assign_id=True)
        except EnvelopeValidationError as exc:
            return BusResponse.failure(exc.code)

        if self._pending.is_full:
            logger.warning(
                "Rejecting request %s (%s): %d pending requests at capacity",
                env.id,
                env.type,
                len(self._pending),
            )
            return BusResponse.failure(ErrorCode.OVER_CAPACITY)
        if env.id in self._pending:
            return BusResponse.failure(ErrorCode.DUPLICATE_REQUEST)

        timeout = timeout_ms if timeout_ms is not None else self._request_timeout_ms
        entry = self._pending.register(
            env.id, env.type, timeout, loop=asyncio.get_running_loop()
        )
        try:
            self.emit(env)
        except EnvelopeValidationError as exc:
            logger.warning("Request %s rejected: %s", env.id, exc)
            self._pending.discard(env.id, exc.code)
        return await entry.future

    def ack(self, envelope: Envelope | Mapping[str, Any]) -> AckResult:
        """Accept *envelope* into the pipeline and confirm without waiting.

        Never registers pending state.  A validation failure is returned as
        ``AckResult(id, error=<code>)``.
        """
        try:
            env = parse_envelope(envelope, assign_id=True)
        except EnvelopeValidationError as exc:
            return AckResult.rejected(exc.envelope_id, exc.code)
        try:
            self.emit(env)
        except EnvelopeValidationError as exc:
            logger.warning("Ack for %s rejected: %s", env.id, exc)
            return AckResult.rejected(env.id, exc.code)
        return AckResult(id=env.id)

    def respond(self, original: Envelope, payload: Any) -> Envelope:
        """Reply to *original* from the broker itself."""
        reply = Envelope(
            type=original.type,
            domain=original.domain,
            source=self._identity,
            payload=payload,
            reply_to=original.id,
        )
        self.emit(reply)
        return reply

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def sweep(self, now: float | None = None) -> int:
        """Evict expired pending requests whose timers did not fire."""
        return len(self._pending.sweep(now))

    async def start(self) -> None:
        """Start the periodic sweep / policy-refresh task."""
        if self.is_running:
            logger.warning("Broker %s already running", self._identity)
            return
        self._housekeeping = asyncio.get_running_loop().create_task(
            self._housekeeping_loop(), name=f"ipcbus-housekeeping-{self._identity}"
        )
        logger.info(
            "Broker %s started (sweep every %dms, capacity %d)",
            self._identity,
            self._sweep_interval_ms,
            self._pending.capacity,
        )

    async def stop(self) -> None:
        """Stop housekeeping and settle every outstanding request."""
        task, self._housekeeping = self._housekeeping, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._handlers.cancel_pending()
        settled = self._pending.close()
        logger.info("Broker %s stopped (%d pending request(s) settled)", self._identity, settled)

    async def _housekeeping_loop(self) -> None:
        interval = self._sweep_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                evicted = self.sweep()
                if evicted:
                    logger.warning("Sweep evicted %d zombie pending request(s)", evicted)
                self._router.refresh()
            except Exception:  # noqa: BLE001
                logger.exception("Broker housekeeping pass failed")

    async def __aenter__(self) -> Broker:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return (
            f"Broker(identity={self._identity!r}, targets={len(self._targets)}, "
            f"pending={len(self._pending)})"
        )

