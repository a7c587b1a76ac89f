"""ipcbus CLI — Typer-based command-line interface.

Provides the ``ipcbus`` command with subcommands for running the in-process
demo, printing the routing policy and checking an envelope against it.

All output uses Rich for formatted terminal display.
"""
