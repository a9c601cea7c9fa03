"""Stackforge CLI — Typer-based command-line interface.

Provides the ``stackforge`` command with subcommands for planning,
publishing, deploying, previewing changesets, tearing down and inspecting
ledger history.

All output uses Rich for formatted terminal display.
"""
