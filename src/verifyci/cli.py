# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from . import settings
from .errors import CIError, DefinitionError, WorkflowError
from .git import current_ref, head_sha, repo_name
from .log import set_level
from .model import EventDescriptor, EventKind, PipelineDefinition
from .orchestrator import Orchestrator
from .report import report_to_dict
from .toolchain import HostToolchainSource, RustupSource, ToolchainProvisioner
from .ui.console import Console, get_console, set_console
from .workflow import DEFAULT_WORKFLOW, find_workflow_files, load_pipeline

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  verifyci run --workflow my_workflow.py",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  verifyci run --workflow my_workflow.py",
        )
        sys.exit(EXIT_CONFIG)

    if len(workflow_files) > 1 and workflow_files[0].name != DEFAULT_WORKFLOW:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  verifyci run --workflow {workflow_files[0]}",
        )
        sys.exit(EXIT_CONFIG)

    return workflow_files[0]


def _load(workflow: str | None) -> PipelineDefinition:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return load_pipeline(workflow_path)
    except (WorkflowError, DefinitionError) as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load pipeline from {workflow_path}",
            details=[str(e)],
        )
        sys.exit(EXIT_CONFIG)


def _trigger(event: str, ref: str | None, checkout: str, meta: tuple[str, ...]) -> EventDescriptor:
    metadata: dict[str, str] = {}
    if ref is None:
        try:
            ref = current_ref(cwd=checkout)
            metadata["sha"] = head_sha(cwd=checkout)
        except (subprocess.CalledProcessError, FileNotFoundError):
            get_console().print_debug("not a git checkout, using ref HEAD")
            ref = "HEAD"
    for item in meta:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--meta")
        metadata[key] = value
    return EventDescriptor(event_kind=EventKind(event), ref=ref, metadata=metadata)


_event_option = click.option(
    "--event",
    type=click.Choice([e.value for e in EventKind]),
    default=EventKind.PUSH.value,
    show_default=True,
    help="Repository event that triggers the run",
)
_ref_option = click.option("--ref", default=None, help="Git ref (defaults to the checkout's current ref)")
_workflow_option = click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces, full job logs and debug logging)",
)
@click.pass_context
def cli(ctx, debug):
    """verifyci — run independent verification jobs and gate on the result."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        set_level("DEBUG")
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@_workflow_option
@_event_option
@_ref_option
@click.option("--checkout", default=".", show_default=True, help="Project checkout to verify (read-only)")
@click.option(
    "--toolchain",
    "toolchain_source",
    type=click.Choice(["rustup", "host"]),
    default="rustup",
    show_default=True,
    help="Where toolchains come from",
)
@click.option("--host-tool", default="cargo", show_default=True, help="Tool whose version the host source reports")
@click.option("--isolate-home/--shared-home", default=False, help="Install rustup toolchains inside each job's scratch dir")
@click.option("--workers", default=None, type=int, help="Max concurrent jobs (default: all at once)")
@click.option("--timeout", default=settings.JOB_TIMEOUT, type=float, help="Default per-job timeout in seconds")
@click.option("--meta", multiple=True, help="Extra trigger metadata as KEY=VALUE")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the report as JSON")
@click.pass_context
def run(ctx, workflow, event, ref, checkout, toolchain_source, host_tool, isolate_home, workers, timeout, meta, as_json):
    """Run a pipeline against a checkout."""
    console = get_console()
    pipeline = _load(workflow)
    trigger = _trigger(event, ref, checkout, meta)

    if toolchain_source == "host":
        source = HostToolchainSource(host_tool)
    else:
        source = RustupSource(isolate_home=isolate_home)

    orchestrator = Orchestrator(
        ToolchainProvisioner(source),
        checkout=checkout,
        max_workers=workers,
        default_timeout=timeout,
        on_job_start=None if as_json else console.print_job_start,
        on_job_result=None if as_json else console.print_job_result,
    )

    if not as_json:
        console.print_run_started(
            repository=repo_name(cwd=checkout),
            pipeline=pipeline.name,
            trigger=trigger,
            job_count=len(pipeline),
        )

    try:
        report = orchestrator.run(pipeline, trigger)
    except CIError as e:
        console.print_error("Run failed to start", str(e))
        sys.exit(EXIT_CONFIG)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps(report_to_dict(report), indent=2))
    else:
        console.print_report(report, pipeline)

    if report.cancelled:
        if not as_json:
            console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    if not report.passed:
        sys.exit(EXIT_FAILED)


@cli.command()
@_workflow_option
@_event_option
@_ref_option
def plan(workflow, event, ref):
    """Show a pipeline's jobs and whether an event would trigger it."""
    pipeline = _load(workflow)
    trigger = _trigger(event, ref, ".", ())
    get_console().print_plan(pipeline, trigger)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
