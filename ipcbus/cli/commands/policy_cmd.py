"""``ipcbus policy-show`` / ``ipcbus validate`` — inspect the routing policy."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ipcbus.core.errors import EnvelopeValidationError, PolicyLoadError
from ipcbus.models.envelopes import Envelope
from ipcbus.routing.policy_router import PolicyRouter

console = Console()


def _load_router(path: Path | None) -> PolicyRouter:
    try:
        return PolicyRouter(path=path)
    except PolicyLoadError as exc:
        console.print(f"[red]Cannot load policy:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def policy_show_cmd(
    path: Path = typer.Option(
        None, "--policy", "-p", help="JSON policy file (default: built-in policy)."
    ),
) -> None:
    """Show domains, their event types and identity restrictions."""
    router = _load_router(path)
    policy = router.policy

    table = Table(title=f"Routing policy ({path or 'built-in'})")
    table.add_column("Domain", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Sources")
    table.add_column("Targets")

    for domain, rule in policy.domains.items():
        for event_type in rule.types:
            type_rule = policy.rule_for(event_type)
            sources = ", ".join(type_rule.sources) if type_rule.sources is not None else "[dim]any[/dim]"
            targets = ", ".join(type_rule.targets) if type_rule.targets is not None else "[dim]any[/dim]"
            table.add_row(domain, event_type, sources, targets)

    console.print(table)


def validate_cmd(
    event_type: str = typer.Option(..., "--type", help="Event type, e.g. RISK_CHECK."),
    domain: str = typer.Option(..., "--domain", "-d", help="Domain the envelope is sent under."),
    source: str = typer.Option("workbench", "--source", "-s", help="Sending identity."),
    target: str = typer.Option(None, "--target", "-t", help="Target identity or '*'."),
    path: Path = typer.Option(
        None, "--policy", "-p", help="JSON policy file (default: built-in policy)."
    ),
) -> None:
    """Check whether an envelope would pass the routing policy."""
    router = _load_router(path)
    envelope = Envelope(type=event_type, domain=domain, source=source, target=target)
    try:
        router.validate(envelope)
    except EnvelopeValidationError as exc:
        console.print(f"[red]REJECTED[/red] {exc.code.value}: {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[green]OK[/green] {event_type} in {domain} from {source}")
