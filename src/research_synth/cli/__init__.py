"""Command line interface for research-synth."""

from research_synth.cli.main import cli, main

__all__ = ["cli", "main"]
