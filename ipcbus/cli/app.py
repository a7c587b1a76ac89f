"""Main Typer application — imports and registers all CLI commands.

Entry point: ``ipcbus`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from ipcbus.cli.commands.demo import demo_cmd
from ipcbus.cli.commands.policy_cmd import policy_show_cmd, validate_cmd
from ipcbus.config import config

app = typer.Typer(
    name="ipcbus",
    help="ipcbus: policy-routed message bus between isolated client contexts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="demo", help="Run the broker and three client contexts in-process.")(demo_cmd)
app.command(name="policy-show", help="Show the active routing policy.")(policy_show_cmd)
app.command(name="validate", help="Check an envelope against the routing policy.")(validate_cmd)


def configure_logging(level: str | None = None) -> None:
    """Route stdlib logging through Rich at *level* (default ``config.log_level``)."""
    logging.basicConfig(
        level=(level or config.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=config.debug)],
    )


def main() -> None:
    """CLI entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
