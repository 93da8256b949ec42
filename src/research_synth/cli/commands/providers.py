"""Providers command: show which providers have credentials."""

import shutil

import click

from research_synth.cli.output import emit_success, print_provider_table

_ROLES = {
    "gemini": "inference",
    "openai": "inference",
    "anthropic": "inference",
    "perplexity": "web search",
}


@click.command("providers")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON.")
@click.pass_context
def providers_cmd(ctx: click.Context, as_json: bool) -> None:
    """List providers and whether each one is usable."""
    research = ctx.obj["config"].research
    rows = [(name, role, bool(research.get_api_key(name))) for name, role in _ROLES.items()]
    rows.append(("arxiv", "papers", True))
    rows.append(
        (
            "context7",
            "library docs",
            research.context7_enabled
            and bool(research.context7_command)
            and shutil.which(research.context7_command[0]) is not None,
        )
    )

    if as_json:
        emit_success(
            {
                "providers": [
                    {"name": name, "role": role, "configured": configured}
                    for name, role, configured in rows
                ],
                "has_inference_provider": research.has_inference_provider(),
            }
        )
        return
    print_provider_table(rows)
    if not research.has_inference_provider():
        click.echo("No inference provider configured; runs will fail.", err=True)
