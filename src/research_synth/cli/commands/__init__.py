"""CLI commands."""

from research_synth.cli.commands.providers import providers_cmd
from research_synth.cli.commands.run import run_cmd

__all__ = [
    "providers_cmd",
    "run_cmd",
]
