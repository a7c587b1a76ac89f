"""Pending-request table — the broker's correlation state.

Every entry ends through exactly one terminal transition:

* ``resolve``  — a response with a matching ``replyTo`` arrived;
* ``expire``   — the entry's own timer fired;
* ``sweep``    — the periodic pass found it past expiry (its timer never ran);

plus ``discard`` for a request rejected by validation before it was
dispatched.  Each transition pops the entry first, so a later transition
for the same id finds nothing and does nothing.  The caller's future is
settled at most once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from ipcbus.core.errors import ErrorCode
from ipcbus.models.envelopes import BusResponse

logger = logging.getLogger(__name__)


class PendingOutcome(str, Enum):
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    EVICTED = "evicted"
    DISCARDED = "discarded"


@dataclass(slots=True)
class PendingRequest:
    """Transient correlation record for one in-flight request."""

    request_id: str
    event_type: str
    future: asyncio.Future[BusResponse]
    created_at: float
    expires_at: float
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def settle(self, response: BusResponse) -> bool:
        """Resolve the caller's future unless it is already done."""
        if self.future.done():
            return False
        self.future.set_result(response)
        return True

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class PendingTable:
    """Capacity-bounded map of request id -> ``PendingRequest``."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._entries: dict[str, PendingRequest] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def get(self, request_id: str) -> PendingRequest | None:
        return self._entries.get(request_id)

    def ids(self) -> list[str]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def register(
        self,
        request_id: str,
        event_type: str,
        timeout_ms: int,
        *,
        loop: asyncio.AbstractEventLoop,
    ) -> PendingRequest:
        """Create an entry and arm its timeout timer.

        The caller must check ``is_full`` and for duplicate ids first.
        """
        now = time.monotonic()
        timeout_s = max(timeout_ms, 0) / 1000
        entry = PendingRequest(
            request_id=request_id,
            event_type=event_type,
            future=loop.create_future(),
            created_at=now,
            expires_at=now + timeout_s,
        )
        entry.timer = loop.call_later(timeout_s, self.expire, request_id)
        self._entries[request_id] = entry
        return entry

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def resolve(self, request_id: str, data: object) -> bool:
        """Settle with ``{ok: True, data}``; ``False`` if no such entry."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        entry.settle(BusResponse.success(data))
        logger.debug(
            "Request %s (%s) %s after %.1fms",
            request_id,
            entry.event_type,
            PendingOutcome.RESOLVED.value,
            (time.monotonic() - entry.created_at) * 1000,
        )
        return True

    def expire(self, request_id: str) -> bool:
        """Timer callback: settle with ``{ok: False, error: "timeout"}``."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        entry.settle(BusResponse.failure(ErrorCode.TIMEOUT))
        logger.info(
            "Request %s (%s) %s", request_id, entry.event_type, PendingOutcome.TIMED_OUT.value
        )
        return True

    def discard(self, request_id: str, error: str | ErrorCode) -> bool:
        """Remove an entry whose request never made it into dispatch."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        entry.settle(BusResponse.failure(error))
        return True

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict every entry whose expiry has passed.

        Entries reach this only if their timer did not fire (e.g. the
        process was suspended).  An unsettled future is settled with a
        timeout so the caller never hangs.
        """
        now = time.monotonic() if now is None else now
        expired = [rid for rid, e in self._entries.items() if e.expires_at <= now]
        for request_id in expired:
            entry = self._pop(request_id)
            if entry is None:
                continue
            settled = entry.settle(BusResponse.failure(ErrorCode.TIMEOUT))
            logger.warning(
                "Request %s (%s) %s by sweep (%.1fms past expiry, settled=%s)",
                request_id,
                entry.event_type,
                PendingOutcome.EVICTED.value,
                (now - entry.expires_at) * 1000,
                settled,
            )
        return expired

    def close(self) -> int:
        """Settle every outstanding entry with a timeout; return how many."""
        ids = list(self._entries)
        for request_id in ids:
            self.expire(request_id)
        return len(ids)

    def _pop(self, request_id: str) -> PendingRequest | None:
        entry = self._entries.pop(request_id, None)
        if entry is not None:
            entry.cancel_timer()
        return entry
