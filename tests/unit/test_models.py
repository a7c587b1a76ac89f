"""Tests for envelope, result and payload models."""

from __future__ import annotations

import pydantic
import pytest

from ipcbus.core.errors import ErrorCode
from ipcbus.models.envelopes import (
    BROADCAST,
    AckResult,
    BusResponse,
    Envelope,
    FrameKind,
)
from ipcbus.models.events import (
    LockCustomerResult,
    RiskCheckRequest,
    RiskCheckResult,
    TicketDone,
    payload_model,
)


class TestEnvelope:
    def test_defaults_fill_id_and_ts(self):
        env = Envelope(type="PING", domain="demo", source="workbench")
        assert env.id
        assert env.ts > 0
        assert env.target is None
        assert env.reply_to is None

    def test_ids_are_unique(self):
        a = Envelope(type="PING", domain="demo", source="workbench")
        b = Envelope(type="PING", domain="demo", source="workbench")
        assert a.id != b.id

    def test_frozen(self):
        env = Envelope(type="PING", domain="demo", source="workbench")
        with pytest.raises(pydantic.ValidationError):
            env.type = "LOG"  # type: ignore[misc]

    def test_reply_to_wire_alias(self):
        env = Envelope.model_validate(
            {"type": "RISK_CHECK", "domain": "risk", "source": "main", "replyTo": "req-1"}
        )
        assert env.reply_to == "req-1"
        assert env.is_response
        assert env.to_wire()["replyTo"] == "req-1"

    def test_to_wire_omits_unset_optionals(self):
        wire = Envelope(type="PING", domain="demo", source="workbench").to_wire()
        assert "target" not in wire
        assert "replyTo" not in wire
        assert set(wire) >= {"id", "type", "domain", "source", "ts"}

    def test_broadcast_marker(self):
        env = Envelope(type="PING", domain="demo", source="main", target=BROADCAST)
        assert env.is_broadcast
        assert not env.is_response

    def test_payload_as_parses_camel_case(self, envelope):
        request = envelope.payload_as(RiskCheckRequest)
        assert request.customer_id == "C-001"
        assert request.amount == 5000


class TestResults:
    def test_ack_accepted(self):
        ack = AckResult(id="e1")
        assert ack.accepted
        assert ack.error is None

    def test_ack_rejected_uses_wire_string(self):
        ack = AckResult.rejected("e1", ErrorCode.UNKNOWN_DOMAIN)
        assert not ack.accepted
        assert ack.error == "unknown_domain"

    def test_bus_response_success(self):
        res = BusResponse.success({"passed": True})
        assert res.ok
        assert res.data == {"passed": True}
        assert res.error is None

    def test_bus_response_failure(self):
        res = BusResponse.failure(ErrorCode.TIMEOUT)
        assert not res.ok
        assert res.error == "timeout"
        assert res.data is None

    def test_frame_kinds(self):
        assert {k.value for k in FrameKind} == {"one_way", "ack", "request", "response"}


class TestPayloadModels:
    def test_request_lookup(self):
        assert payload_model("RISK_CHECK") is RiskCheckRequest

    def test_response_lookup(self):
        assert payload_model("RISK_CHECK", response=True) is RiskCheckResult
        assert payload_model("LOCK_CUSTOMER", response=True) is LockCustomerResult

    def test_event_lookup(self):
        assert payload_model("TICKET_DONE") is TicketDone

    def test_unknown_type(self):
        assert payload_model("NOPE") is None
        assert payload_model("NOPE", response=True) is None

    def test_dump_uses_aliases(self):
        result = LockCustomerResult(locked=True, customer_id="C-9", ts=5)
        assert result.model_dump(by_alias=True) == {"locked": True, "customerId": "C-9", "ts": 5}
