from contextlib import contextmanager

import click

from citrace.carrier import (
    decode_child,
    decode_parent,
    decode_root,
    publish_lines,
)
from citrace.config import Config, load_config, load_env_file
from citrace.doctor import check_config
from citrace.error_handler import handle_error
from citrace.exceptions import (
    CitraceError,
    ConfigurationError,
    MissingContextError,
)
from citrace.lifecycle import SpanLifecycleController
from citrace.log import init_logger, logger
from citrace.models import StepStatus
from citrace.runner import build_command, run_pipeline, run_step
from citrace.runtime import create_runtime

DEFAULT_STEP = "Unnamed"

STATUS_CHOICE = click.Choice(
    [StepStatus.SUCCESS.value, StepStatus.FAILURE.value], case_sensitive=False
)


def load_cli_config(ctx: click.Context) -> Config:
    options = ctx.obj or {}
    try:
        if options.get("dotenv", True):
            load_env_file(options.get("env_file"))
        return load_config(options.get("config_path"))
    except CitraceError as e:
        handle_error(e, exit_on_error=True)
        raise


@contextmanager
def open_runtime(ctx: click.Context):
    """Load config, set up logging and yield a runtime that is always shut down."""
    config = load_cli_config(ctx)
    init_logger(config)
    runtime = create_runtime(config)
    try:
        yield runtime
    except CitraceError as e:
        handle_error(e, exit_on_error=True)
    finally:
        runtime.shutdown()


def close_options(func):
    """Options shared by the commands that close a span."""
    func = click.option(
        "--started-at",
        type=float,
        required=False,
        help="Epoch seconds when the step started",
    )(func)
    func = click.option(
        "--duration-ms",
        type=int,
        required=False,
        help="Step duration in milliseconds",
    )(func)
    func = click.option(
        "--error", "error", type=str, required=False, help="Error message"
    )(func)
    func = click.option(
        "--status",
        type=STATUS_CHOICE,
        default=StepStatus.SUCCESS.value,
        show_default=True,
        help="Outcome of the step as seen by the CI runner",
    )(func)
    return func


@click.group()
@click.option(
    "-c",
    "--config-path",
    "config_path",
    type=click.Path(),
    required=False,
    help="Path to configuration file",
)
@click.option(
    "--env-file",
    type=click.Path(),
    required=False,
    help="Path to .env file (skips automatic search)",
)
@click.option("--no-dotenv", is_flag=True, help="Skip loading .env file")
@click.pass_context
def cli(ctx, config_path: str | None, env_file: str | None, no_dotenv: bool):
    """Trace multi-step CI jobs with OpenTelemetry across processes."""
    ctx.obj = {
        "config_path": config_path,
        "env_file": env_file,
        "dotenv": not no_dotenv,
    }


@cli.command()
@click.option("--step", type=str, default=DEFAULT_STEP, help="The job name")
@click.pass_context
def start(ctx, step: str):
    """
    Open the root span of a CI job.
    Prints trace_id and parent_span_id for the following steps.
    """
    with open_runtime(ctx) as runtime:
        SpanLifecycleController(runtime).start(step)


@cli.command("start-child")
@click.option("--step", type=str, default=DEFAULT_STEP, help="The step name")
@click.option("--trace-id", type=str, required=False, help="The trace ID")
@click.option(
    "--parent-span-id", type=str, required=False, help="The parent span ID"
)
@click.pass_context
def start_child(ctx, step: str, trace_id: str | None, parent_span_id: str | None):
    """
    Open a child span under an existing trace.
    Prints trace_id and span_id for the matching end-child call.
    """
    with open_runtime(ctx) as runtime:
        try:
            decoded = decode_parent(
                "start-child", trace_id, parent_span_id, runtime.store
            )
        except MissingContextError:
            # Keep the output shape stable for the orchestrator
            publish_lines([f"trace_id={trace_id or ''}", "span_id="])
            raise
        SpanLifecycleController(runtime).start_child(step, decoded.context)


@cli.command("end-child")
@click.option("--step", type=str, required=False, help="The step name")
@click.option("--trace-id", type=str, required=False, help="The trace ID")
@click.option("--span-id", type=str, required=False, help="The child span ID")
@click.option(
    "--parent-span-id", type=str, required=False, help="The parent span ID"
)
@close_options
@click.pass_context
def end_child(
    ctx,
    step: str | None,
    trace_id: str | None,
    span_id: str | None,
    parent_span_id: str | None,
    status: str,
    error: str | None,
    duration_ms: int | None,
    started_at: float | None,
):
    """
    Close a child span, export it and emit its log record.
    """
    with open_runtime(ctx) as runtime:
        decoded = decode_child(
            "end-child", trace_id, span_id, parent_span_id, runtime.store
        )
        SpanLifecycleController(runtime).end_child(
            step or decoded.step or DEFAULT_STEP,
            decoded,
            StepStatus(status.lower()),
            error,
            duration_ms,
            started_at,
        )


@cli.command()
@click.option("--step", type=str, required=False, help="The job name")
@click.option("--trace-id", type=str, required=False, help="The trace ID")
@click.option(
    "--parent-span-id",
    type=str,
    required=False,
    help="The root span ID printed by start",
)
@click.option(
    "--span-id", type=str, required=False, help="Alias of --parent-span-id"
)
@close_options
@click.pass_context
def end(
    ctx,
    step: str | None,
    trace_id: str | None,
    parent_span_id: str | None,
    span_id: str | None,
    status: str,
    error: str | None,
    duration_ms: int | None,
    started_at: float | None,
):
    """
    Close the root span of a CI job and emit the final log record.
    Removes the hand-off file.
    """
    with open_runtime(ctx) as runtime:
        decoded = decode_root(
            "end", trace_id, parent_span_id or span_id, runtime.store
        )
        SpanLifecycleController(runtime).end(
            step or decoded.step or DEFAULT_STEP,
            decoded,
            StepStatus(status.lower()),
            error,
            duration_ms,
            started_at,
        )


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--step", type=str, required=True, help="The step name")
@click.option("--trace-id", type=str, required=False, help="The trace ID")
@click.option(
    "--parent-span-id", type=str, required=False, help="The parent span ID"
)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx,
    step: str,
    trace_id: str | None,
    parent_span_id: str | None,
    command: tuple[str, ...],
):
    """
    Run COMMAND as a child span and exit with its exit code.
    """
    with open_runtime(ctx) as runtime:
        decoded = decode_parent("run", trace_id, parent_span_id, runtime.store)
        run_step(
            SpanLifecycleController(runtime),
            step,
            decoded.context,
            build_command(command),
        )


@cli.command()
@click.argument("job")
@click.pass_context
def pipeline(ctx, job: str):
    """
    Run every step configured for JOB under a single trace.
    """
    with open_runtime(ctx) as runtime:
        steps = runtime.config.pipelines.get(job)
        if steps is None:
            known = ", ".join(sorted(runtime.config.pipelines)) or "none"
            raise ConfigurationError(
                f"Unknown pipeline job: {job}", f"Configured jobs: {known}."
            )
        run_pipeline(SpanLifecycleController(runtime, persist=False), job, steps)
        logger.info(f"Pipeline {job} completed")


@cli.command()
@click.pass_context
def doctor(ctx):
    """
    Check the config and report which telemetry settings are missing.
    """
    config = load_cli_config(ctx)
    report = check_config(config)
    click.echo(f"OTLP protocol: {report['protocol']}")
    click.echo(f"Configured: {', '.join(report['configured_fields']) or 'none'}")
    for error in report["errors"]:
        click.secho(f"ERROR   {error['field']}: {error['message']}", fg="red")
    for warning in report["warnings"]:
        click.secho(
            f"WARNING {warning['field']}: {warning['message']}", fg="yellow"
        )
    if report["errors"]:
        ctx.exit(1)
    click.secho("Config OK", fg="green")


if __name__ == "__main__":
    cli()
