"""``ipcbus demo`` — run the multi-window scenario in-process.

Wires a broker to three client contexts over local channels:

* ``workbench``    — the initiator; issues every request.
* ``dialer``       — answers ``OUTBOUND_DISPATCH``.
* ``partner:auto`` — answers ``TICKET_ACCEPT`` and then reports
  ``TICKET_DONE`` back to the workbench.

The broker itself answers ``LOCK_CUSTOMER`` and ``RISK_CHECK`` and approves
credit.  One-way steps cover an incoming call, a broadcast ping, a loan
application and the policy rejections.  Every payload is built from its
typed model in ``ipcbus.models.events``.  The outcome of each step is shown
in a table.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ipcbus.bridge.audit_bridge import audit_from_settings
from ipcbus.bridge.transport import open_channel
from ipcbus.client.bus_client import BusClient
from ipcbus.config import config
from ipcbus.contrib.main_services import register_main_services
from ipcbus.core.broker import Broker
from ipcbus.models.envelopes import BROADCAST, Envelope, now_ms
from ipcbus.models.events import (
    CallStart,
    CreditApply,
    CreditApprove,
    LoanApply,
    LockCustomerRequest,
    OutboundDispatch,
    OutboundDispatchResult,
    Ping,
    RiskCheckRequest,
    TicketAccept,
    TicketAcceptResult,
    TicketDone,
)

console = Console()


@dataclass(frozen=True)
class DemoStep:
    """One row of the demo report."""

    label: str
    event_type: str
    ok: bool
    detail: Any


async def run_demo(
    *,
    timeout_ms: int = 8000,
    reply_delay_ms: int = 300,
    audit_dir: Path | None = None,
) -> list[DemoStep]:
    """Run the scenario and return one ``DemoStep`` per interaction."""
    audit = audit_from_settings(config, audit_dir) if audit_dir else None
    broker = Broker(audit=audit, request_timeout_ms=timeout_ms)
    register_main_services(broker, reply_delay_ms=reply_delay_ms)
    steps: list[DemoStep] = []

    async with broker:
        workbench = BusClient("workbench", open_channel(broker, "workbench"))
        dialer = BusClient("dialer", open_channel(broker, "dialer"))
        partner = BusClient("partner:auto", open_channel(broker, "partner:auto"))

        def _on_dispatch(envelope: Envelope) -> None:
            if envelope.is_response:
                return
            order = envelope.payload_as(OutboundDispatch)
            dialer.respond(envelope, _wire(OutboundDispatchResult(accepted=True, tel=order.tel)))

        def _on_ticket(envelope: Envelope) -> None:
            if envelope.is_response:
                return
            ticket = envelope.payload_as(TicketAccept)
            partner.respond(
                envelope, _wire(TicketAcceptResult(accepted=True, ticket_id=ticket.ticket_id))
            )
            partner.emit({
                "type": "TICKET_DONE",
                "domain": "ticket",
                "target": "workbench",
                "payload": _wire(
                    TicketDone(ticket_id=ticket.ticket_id, by=partner.identity, ts=now_ms())
                ),
            })

        done: asyncio.Future[TicketDone] = asyncio.get_running_loop().create_future()
        pings: list[str] = []
        dialer.on("OUTBOUND_DISPATCH", _on_dispatch)
        partner.on("TICKET_ACCEPT", _on_ticket)
        workbench.once("TICKET_DONE", lambda e: done.set_result(e.payload_as(TicketDone)))
        for client in (workbench, dialer, partner):
            client.on(
                "PING",
                lambda e, who=client.identity: pings.append(f"{who}: {e.payload_as(Ping).note}"),
            )

        call = await workbench.ack({
            "type": "CALL_START",
            "domain": "call",
            "payload": _wire(CallStart(caller="13800000000", ticket_id="T-1")),
        })
        steps.append(DemoStep("Incoming call", "CALL_START", call.accepted,
                              call.error or call.id))

        requests = [
            ("Outbound call", "OUTBOUND_DISPATCH", "cti", "dialer",
             OutboundDispatch(tel="10086")),
            ("Lock customer", "LOCK_CUSTOMER", "crm", broker.identity,
             LockCustomerRequest(customer_id="C-001")),
            ("Accept ticket", "TICKET_ACCEPT", "ticket", "partner:auto",
             TicketAccept(ticket_id="T-1")),
            ("Risk check", "RISK_CHECK", "risk", broker.identity,
             RiskCheckRequest(customer_id="C-001", amount=5000)),
            ("Risk check (large)", "RISK_CHECK", "risk", broker.identity,
             RiskCheckRequest(customer_id="C-002", amount=20000)),
        ]
        for label, event_type, domain, target, payload in requests:
            res = await workbench.request(
                {"type": event_type, "domain": domain, "target": target,
                 "payload": _wire(payload)},
                timeout_ms=timeout_ms,
            )
            steps.append(DemoStep(label, event_type, res.ok, res.data if res.ok else res.error))

        try:
            notice = await asyncio.wait_for(done, timeout=timeout_ms / 1000)
            steps.append(DemoStep("Ticket done push", "TICKET_DONE", True,
                                  f"{notice.ticket_id} closed by {notice.by}"))
        except asyncio.TimeoutError:
            steps.append(DemoStep("Ticket done push", "TICKET_DONE", False, "not received"))

        ack = await workbench.ack({
            "type": "PING", "domain": "demo", "target": BROADCAST,
            "payload": _wire(Ping(note="hello")),
        })
        await asyncio.sleep(0)
        steps.append(DemoStep(
            "Broadcast ping", "PING", ack.accepted,
            ack.error or f"delivered to {len(pings)} context(s)",
        ))

        loan = await workbench.ack({
            "type": "LOAN_APPLY", "domain": "consumer", "target": broker.identity,
            "payload": _wire(LoanApply(amount=30000, term_months=24)),
        })
        steps.append(DemoStep("Loan apply", "LOAN_APPLY", loan.accepted, loan.error or loan.id))

        rejected = await workbench.ack({
            "type": "CREDIT_APPLY", "domain": "credit", "target": broker.identity,
            "payload": _wire(CreditApply(amount=8000)),
        })
        steps.append(DemoStep("Credit apply (workbench)", "CREDIT_APPLY", rejected.accepted,
                              rejected.error or rejected.id))

        approved = broker.ack(Envelope(
            type="CREDIT_APPROVE", domain="credit", source=broker.identity,
            target="workbench", payload=_wire(CreditApprove(approved=True, amount=8000)),
        ))
        steps.append(DemoStep("Credit approve (main)", "CREDIT_APPROVE", approved.accepted,
                              approved.error or approved.id))

        mismatched = await workbench.ack(
            {"type": "RISK_CHECK", "domain": "credit", "target": broker.identity}
        )
        steps.append(DemoStep("Wrong domain", "RISK_CHECK", mismatched.accepted,
                              mismatched.error or mismatched.id))

    return steps


def _wire(payload: BaseModel) -> dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True)


def demo_cmd(
    timeout_ms: int = typer.Option(
        config.request_timeout_ms, "--timeout", "-t", help="Request timeout in milliseconds."
    ),
    reply_delay_ms: int = typer.Option(
        config.reply_delay_ms, "--reply-delay", help="Processing delay of broker-side services (ms)."
    ),
    audit_dir: Path = typer.Option(
        None, "--audit-dir", help="Write the JSONL audit trail to this directory."
    ),
) -> None:
    """Run the broker + three client contexts and show each exchange."""
    console.print()
    console.print(
        Panel(
            "[bold]ipcbus demo[/bold]\n\n"
            "Broker [cyan]main[/cyan] with clients [cyan]workbench[/cyan], "
            "[cyan]dialer[/cyan] and [cyan]partner:auto[/cyan].",
            border_style="cyan",
            padding=(1, 2),
        )
    )

    steps = asyncio.run(
        run_demo(timeout_ms=timeout_ms, reply_delay_ms=reply_delay_ms, audit_dir=audit_dir)
    )

    table = Table(title="Exchanges")
    table.add_column("Step", style="cyan")
    table.add_column("Type")
    table.add_column("OK", justify="center")
    table.add_column("Result")
    for step in steps:
        ok = "[green]Yes[/green]" if step.ok else "[red]No[/red]"
        detail = step.detail if isinstance(step.detail, str) else json.dumps(step.detail)
        table.add_row(step.label, step.event_type, ok, detail)
    console.print(table)
