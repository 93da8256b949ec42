"""Entry point for the ``research-synth`` command."""

from typing import Optional

import click

from research_synth.cli.commands import providers_cmd, run_cmd
from research_synth.config import AppConfig


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="TOML config file (overrides the layered search).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str]) -> None:
    """Multi-stage research synthesis and validation."""
    config = AppConfig.from_env(config_file)
    if log_level:
        config.log_level = log_level.upper()
    config.setup_logging()
    for warning in config.startup_warnings:
        click.echo(f"warning: {warning}", err=True)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


cli.add_command(run_cmd)
cli.add_command(providers_cmd)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
