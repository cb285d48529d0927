"""Wrapped execution of CI commands inside step spans."""

import logging
import shlex
import subprocess
from typing import Sequence

from citrace.config import PipelineStep
from citrace.exceptions import StepExecutionError
from citrace.lifecycle import SpanLifecycleController
from citrace.models import StepRecord, StepStatus, TraceContext

logger = logging.getLogger("citrace")

# Exit code reported when the command cannot be launched at all
COMMAND_NOT_RUNNABLE = 127


def build_command(args: Sequence[str]) -> str:
    """Turn CLI arguments into one shell command line.

    A single argument is taken as a complete shell command so that
    ``citrace run -- "npm ci && npm test"`` works as expected.
    """
    if len(args) == 1:
        return args[0]
    return shlex.join(args)


def run_command(command: str) -> int:
    """Run a shell command with inherited stdio and return its exit code."""
    logger.info(f"> Running: {command}")
    completed = subprocess.run(command, shell=True)
    return completed.returncode


def run_step(
    controller: SpanLifecycleController,
    step: str,
    parent: TraceContext,
    command: str,
    publish: bool = True,
) -> StepRecord:
    """Run one command as a child span of ``parent``.

    Raises:
        StepExecutionError: If the command exits non-zero or cannot be started
    """
    record = controller.start_child(step, parent, publish=publish)
    if not command:
        logger.info(f"Step {step} has no command, marking it done")
        controller.close(record, StepStatus.SUCCESS)
        return record

    try:
        exit_code = run_command(command)
    except OSError as e:
        controller.close(record, StepStatus.FAILURE, f"Command could not start: {e}")
        raise StepExecutionError(step, COMMAND_NOT_RUNNABLE) from e

    if exit_code != 0:
        error = StepExecutionError(step, exit_code)
        controller.close(record, StepStatus.FAILURE, str(error))
        raise error

    controller.close(record, StepStatus.SUCCESS)
    return record


def run_pipeline(
    controller: SpanLifecycleController, job: str, steps: list[PipelineStep]
) -> StepRecord:
    """Run every step of a job in this process under one root span.

    Stops at the first failing step; the root span is closed either way.
    """
    root = controller.start(job, publish=False)
    logger.info(f"Running pipeline {job} with {len(steps)} steps")
    try:
        for step in steps:
            run_step(controller, step.name, root.context, step.command, publish=False)
    except StepExecutionError as e:
        controller.close(root, StepStatus.FAILURE, str(e))
        raise
    controller.close(root, StepStatus.SUCCESS)
    return root
