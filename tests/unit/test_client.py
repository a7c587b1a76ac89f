"""Tests for BusClient — lazy subscription, stamping, local re-dispatch."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from ipcbus.bridge.transport import open_channel
from ipcbus.client.bus_client import BusClient
from ipcbus.models.envelopes import AckResult, BusResponse, Envelope, FrameKind


class RecordingTransport:
    """In-memory ClientTransport that records traffic."""

    def __init__(self) -> None:
        self.sent: list[Envelope] = []
        self.kinds: list[FrameKind] = []
        self.subscribers: list[Callable[[Envelope], None]] = []

    def send(self, envelope: Envelope, *, kind: FrameKind = FrameKind.ONE_WAY) -> None:
        self.sent.append(envelope)
        self.kinds.append(kind)

    async def ack(self, envelope: Envelope) -> AckResult:
        self.sent.append(envelope)
        return AckResult(id=envelope.id)

    async def request(self, envelope: Envelope, timeout_ms: int | None = None) -> BusResponse:
        self.sent.append(envelope)
        return BusResponse.success({"timeout_ms": timeout_ms})

    def subscribe(self, callback: Callable[[Envelope], None]) -> None:
        self.subscribers.append(callback)

    def push(self, envelope: Envelope) -> None:
        for callback in self.subscribers:
            callback(envelope)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def client(transport: RecordingTransport) -> BusClient:
    return BusClient("workbench", transport)


class TestSubscription:
    def test_no_subscription_until_first_on(self, client, transport):
        assert transport.subscribers == []
        client.on("PING", print)
        client.on("LOG", print)
        client.once("TICKET_DONE", print)
        assert len(transport.subscribers) == 1

    def test_push_dispatched_by_type(self, client, transport, make_envelope):
        pings, logs = [], []
        client.on("PING", pings.append)
        client.on("LOG", logs.append)
        env = make_envelope("PING", "demo", source="main")
        transport.push(env)
        assert pings == [env]
        assert logs == []

    def test_once_delivers_once(self, client, transport, make_envelope):
        received = []
        client.once("TICKET_DONE", received.append)
        env = make_envelope("TICKET_DONE", "ticket", source="partner:auto")
        transport.push(env)
        transport.push(env)
        assert received == [env]

    def test_off_removes_all(self, client, transport, make_envelope):
        received = []
        client.on("PING", received.append)
        client.on("PING", lambda e: received.append("second"))
        client.off("PING")
        transport.push(make_envelope("PING", "demo"))
        assert received == []

    def test_handler_failure_does_not_reach_transport(self, client, transport, make_envelope):
        received = []

        def _boom(env):
            raise RuntimeError("boom")

        client.on("PING", _boom)
        client.on("PING", received.append)
        transport.push(make_envelope("PING", "demo"))
        assert len(received) == 1

    def test_close_drops_handlers(self, client, transport, make_envelope):
        received = []
        client.on("PING", received.append)
        client.close()
        transport.push(make_envelope("PING", "demo"))
        assert received == []


class TestSending:
    def test_emit_stamps_source_and_ts(self, client, transport):
        sent = client.emit({"type": "PING", "domain": "demo", "source": "spoofed", "ts": 1})
        assert sent.source == "workbench"
        assert sent.ts > 1
        assert transport.sent == [sent]
        assert transport.kinds == [FrameKind.ONE_WAY]

    def test_emit_accepts_envelope_draft(self, client, transport, make_envelope):
        sent = client.emit(make_envelope("PING", "demo", source="other"))
        assert sent.source == "workbench"

    @pytest.mark.asyncio
    async def test_ack(self, client, transport):
        ack = await client.ack({"type": "PING", "domain": "demo"})
        assert ack.accepted
        assert transport.sent[0].source == "workbench"

    @pytest.mark.asyncio
    async def test_request_passes_timeout(self, client):
        res = await client.request({"type": "PING", "domain": "demo"}, timeout_ms=42)
        assert res.data == {"timeout_ms": 42}

    def test_respond_correlates(self, client, transport, envelope):
        reply = client.respond(envelope, {"passed": True})
        assert reply.reply_to == envelope.id
        assert reply.id != envelope.id
        assert reply.type == envelope.type
        assert reply.domain == envelope.domain
        assert reply.source == "workbench"
        assert reply.target is None
        assert transport.sent == [reply]
        assert transport.kinds == [FrameKind.RESPONSE]

    def test_emit_with_reply_to_stays_one_way(self, client, transport, envelope):
        sent = client.emit(envelope.model_copy(update={"reply_to": envelope.id}))
        assert sent.reply_to == envelope.id
        assert transport.kinds == [FrameKind.ONE_WAY]

    def test_emit_assigns_missing_id(self, client, transport):
        sent = client.emit({"type": "PING", "domain": "demo"})
        assert sent.id
        assert transport.sent[0].id == sent.id


class TestOverChannel:
    @pytest.mark.asyncio
    async def test_client_to_client_request(self, broker):
        workbench = BusClient("workbench", open_channel(broker, "workbench"))
        dialer = BusClient("dialer", open_channel(broker, "dialer"))
        dialer.on("OUTBOUND_DISPATCH", lambda e: dialer.respond(e, {"accepted": True}))

        res = await workbench.request(
            {"type": "OUTBOUND_DISPATCH", "domain": "cti", "target": "dialer",
             "payload": {"tel": "10086"}},
            timeout_ms=500,
        )
        assert res == BusResponse.success({"accepted": True})
        assert broker.pending_count == 0

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_client(self, broker):
        clients = [BusClient(name, open_channel(broker, name)) for name in ("a", "b", "c")]
        seen = []
        for c in clients:
            c.on("PING", lambda e, who=c.identity: seen.append(who))

        ack = await clients[0].ack({"type": "PING", "domain": "demo", "target": "*"})
        await asyncio.sleep(0)
        assert ack.accepted
        assert sorted(seen) == ["a", "b", "c"]
