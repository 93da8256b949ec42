"""Run command: research one query end to end."""

import asyncio
import logging
from typing import Optional

import click

from research_synth.cli.output import emit_error, emit_success, print_markdown
from research_synth.config import AppConfig
from research_synth.core.errors import error_to_response
from research_synth.core.research.models.plan import PlanningOptions
from research_synth.core.research.workflows.pipeline import ResearchPipeline

logger = logging.getLogger(__name__)


def _report_progress(step: str, remaining: int) -> None:
    click.echo(f"[{step}] {remaining} steps remaining", err=True)


@click.command("run")
@click.argument("query")
@click.option("--context", "enriched_context", default=None, help="Free-text project background.")
@click.option(
    "--depth",
    type=click.IntRange(1, 4),
    default=None,
    help="Research depth (1-4). Defaults to the planner's choice.",
)
@click.option("--max-depth", type=click.IntRange(1, 4), default=None, help="Cap the planned depth.")
@click.option("--sub-question", "sub_questions", multiple=True, help="Sub-question to answer (repeatable).")
@click.option("--tech-stack", "tech_stack", multiple=True, help="Library in use (repeatable).")
@click.option("--constraint", "constraints", multiple=True, help="Constraint to respect (repeatable).")
@click.option(
    "--include-code/--no-include-code",
    "include_code",
    default=None,
    help="Force code examples on or off.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the structured result as JSON.")
@click.option("--quiet", is_flag=True, help="Do not print progress to stderr.")
@click.pass_context
def run_cmd(
    ctx: click.Context,
    query: str,
    enriched_context: Optional[str],
    depth: Optional[int],
    max_depth: Optional[int],
    sub_questions: tuple[str, ...],
    tech_stack: tuple[str, ...],
    constraints: tuple[str, ...],
    include_code: Optional[bool],
    as_json: bool,
    quiet: bool,
) -> None:
    """Research QUERY and print the report."""
    config: AppConfig = ctx.obj["config"]
    options = PlanningOptions(
        sub_questions=list(sub_questions),
        tech_stack=list(tech_stack),
        constraints=list(constraints),
        max_depth=max_depth,
        include_code_examples=include_code,
    )
    pipeline = ResearchPipeline.from_config(config.research)

    try:
        output = asyncio.run(
            pipeline.run(
                query,
                enriched_context,
                depth_level=depth,
                options=options,
                on_progress=None if quiet else _report_progress,
            )
        )
    except KeyboardInterrupt:
        emit_error("Interrupted", code="CANCELLED", error_type="internal")
    except Exception as exc:
        response = error_to_response(exc)
        if response is None:
            raise
        emit_error(
            response["error"],
            code=response["error_code"],
            error_type=response["error_type"],
            remediation="Run `research-synth providers` to check configured keys"
            if response["error_type"] == "configuration"
            else None,
        )

    if as_json:
        emit_success(
            {
                "markdown": output.markdown,
                "executive_summary": output.executive_summary.model_dump(mode="json"),
                "sections": {k: v.model_dump(mode="json") for k, v in output.sections.items()},
                "result": output.structured_result.model_dump(mode="json"),
            },
            meta={"duration_ms": round(output.structured_result.duration_ms)},
        )
        return
    print_markdown(output.markdown)
