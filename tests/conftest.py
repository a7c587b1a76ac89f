"""Shared test fixtures for ipcbus."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ipcbus.bridge.audit_bridge import JsonlAuditLog
from ipcbus.core.broker import Broker
from ipcbus.models.envelopes import Envelope
from ipcbus.routing.policy_router import PolicyRouter


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def router() -> PolicyRouter:
    """Provide a PolicyRouter with the built-in default policy."""
    return PolicyRouter()


@pytest.fixture
def audit_log(tmp_dir: Path) -> JsonlAuditLog:
    """Provide a JsonlAuditLog writing into a temp directory."""
    return JsonlAuditLog(tmp_dir / "logs")


@pytest.fixture
def broker(router: PolicyRouter) -> Broker:
    """Provide a Broker with short timeouts; not started."""
    return Broker(router, request_timeout_ms=200, sweep_interval_ms=50)


# ---------------------------------------------------------------------------
# Envelope factories, shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_envelope() -> Callable[..., Envelope]:
    """Factory fixture: build an Envelope with sensible defaults."""

    def _factory(
        event_type: str = "RISK_CHECK",
        domain: str = "risk",
        source: str = "workbench",
        **overrides: Any,
    ) -> Envelope:
        defaults: dict[str, Any] = {
            "type": event_type,
            "domain": domain,
            "source": source,
        }
        defaults.update(overrides)
        return Envelope(**defaults)

    return _factory


@pytest.fixture
def make_wire_envelope() -> Callable[..., dict[str, Any]]:
    """Factory fixture: build a raw wire dict (camelCase aliases)."""

    def _factory(**overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": "env-001",
            "type": "PING",
            "domain": "demo",
            "source": "workbench",
            "ts": 1_700_000_000_000,
        }
        data.update(overrides)
        return data

    return _factory


@pytest.fixture
def envelope(make_envelope: Callable[..., Envelope]) -> Envelope:
    """Convenience: a ready-made RISK_CHECK envelope to the broker."""
    return make_envelope(target="main", payload={"customerId": "C-001", "amount": 5000})
