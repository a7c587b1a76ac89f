"""Broker-side services answered by the main process itself.

Two request handlers run as broker-local handlers and reply through
``Broker.respond`` after a short processing delay:

* ``LOCK_CUSTOMER`` — records a customer lock for the requesting source and
  replies ``{locked, customerId, ts}``.
* ``RISK_CHECK``    — scores an amount and replies ``{passed, score, amount,
  ts}``.  Results are cached per ``customerId:amount``.

Replies that reach these handlers (an unmatched ``replyTo`` is processed like
any other event) are ignored.  State lives in a ``MainServiceState`` owned by
the caller, never at module level.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ipcbus.core.broker import Broker
from ipcbus.core.registry import Unsubscribe
from ipcbus.models.envelopes import Envelope, now_ms
from ipcbus.models.events import (
    LockCustomerRequest,
    LockCustomerResult,
    RiskCheckRequest,
    RiskCheckResult,
)

logger = logging.getLogger(__name__)

RISK_AMOUNT_LIMIT = 10_000


@dataclass
class MainServiceState:
    """Customer locks (customerId -> holder) and the risk-check cache."""

    customer_locks: dict[str, str] = field(default_factory=dict)
    risk_cache: dict[str, RiskCheckResult] = field(default_factory=dict)


def score_risk(amount: float) -> RiskCheckResult:
    """Pass amounts up to the limit; score falls by one point per 150 units."""
    score = max(0, min(100, round(100 - amount / 150)))
    return RiskCheckResult(
        passed=amount <= RISK_AMOUNT_LIMIT,
        score=score,
        amount=amount,
        ts=now_ms(),
    )


def handle_lock_customer(state: MainServiceState, envelope: Envelope) -> LockCustomerResult:
    request = envelope.payload_as(LockCustomerRequest)
    locked = bool(request.customer_id)
    if locked:
        state.customer_locks[request.customer_id] = envelope.source
    return LockCustomerResult(locked=locked, customer_id=request.customer_id, ts=now_ms())


def handle_risk_check(state: MainServiceState, envelope: Envelope) -> RiskCheckResult:
    request = envelope.payload_as(RiskCheckRequest)
    key = f"{request.customer_id or 'na'}:{request.amount}"
    cached = state.risk_cache.get(key)
    if cached is None:
        cached = score_risk(request.amount)
        state.risk_cache[key] = cached
    return cached


def register_main_services(
    broker: Broker,
    state: MainServiceState | None = None,
    *,
    reply_delay_ms: int = 300,
) -> list[Unsubscribe]:
    """Attach the LOCK_CUSTOMER and RISK_CHECK handlers to *broker*.

    Returns the unsubscribe callables, one per service.
    """
    state = state or MainServiceState()
    delay = max(reply_delay_ms, 0) / 1000

    async def _lock_customer(envelope: Envelope) -> None:
        if envelope.is_response:
            return
        logger.info("LOCK_CUSTOMER request %s from %s", envelope.id, envelope.source)
        await asyncio.sleep(delay)
        result = handle_lock_customer(state, envelope)
        broker.respond(envelope, result.model_dump(mode="json", by_alias=True))

    async def _risk_check(envelope: Envelope) -> None:
        if envelope.is_response:
            return
        logger.info("RISK_CHECK request %s from %s", envelope.id, envelope.source)
        await asyncio.sleep(delay)
        result = handle_risk_check(state, envelope)
        broker.respond(envelope, result.model_dump(mode="json", by_alias=True))

    return [
        broker.on("LOCK_CUSTOMER", _lock_customer),
        broker.on("RISK_CHECK", _risk_check),
    ]
