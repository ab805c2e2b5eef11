"""Toolchain runner for component builds.

This module handles:
- Executing a component recipe's commands with subprocess
- Capturing stdout/stderr to a per-component log file
- Terminating the child process group when the pipeline is aborted
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from godwoken_imagegen.errors import BuildCancelled

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while a command runs
POLL_INTERVAL = 0.2
# Seconds to wait after SIGTERM before SIGKILL
KILL_GRACE = 10.0


class ToolchainExecutionError(Exception):
    """Raised when a toolchain command cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass(frozen=True)
class ToolchainInvocation:
    """Inputs of one toolchain run.

    Attributes:
        component: Component being built.
        workdir: Directory the commands run in.
        commands: Commands run in order; the first failure stops the run.
        log_path: File receiving stdout/stderr of every command.
        env: Extra environment variables.
    """

    component: str
    workdir: Path
    commands: tuple[tuple[str, ...], ...]
    log_path: Path
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolchainResult:
    """Result of a toolchain run.

    Attributes:
        success: Whether every command exited 0.
        exit_code: Exit code of the last command run.
        log_path: Path to the log file.
        started_at: Start time.
        finished_at: Finish time.
        command: The last command executed.
        error_message: Error message if the run failed.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None


def terminate_process_group(proc: subprocess.Popen[bytes], grace: float) -> None:
    """Send SIGTERM to the process group, then SIGKILL after ``grace`` seconds."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.warning("Process group %d ignored SIGTERM; killing", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        proc.wait()


def _wait(
    proc: subprocess.Popen[bytes],
    cancel: threading.Event | None,
    poll_interval: float,
) -> int | None:
    """Wait for proc; return None if cancel was set first."""
    while True:
        try:
            return proc.wait(timeout=poll_interval)
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                return None


def run_toolchain(
    invocation: ToolchainInvocation,
    cancel: threading.Event | None = None,
    poll_interval: float = POLL_INTERVAL,
    kill_grace: float = KILL_GRACE,
) -> ToolchainResult:
    """Execute a component's toolchain commands.

    Each command starts in its own process group so that an abort can
    terminate everything it spawned (make, cargo, docker ...).

    Args:
        invocation: Commands and environment to run.
        cancel: Event set by the pipeline to abort the run.
        poll_interval: Seconds between cancellation checks.
        kill_grace: Seconds between SIGTERM and SIGKILL.

    Returns:
        ToolchainResult with execution details.

    Raises:
        BuildCancelled: If ``cancel`` was set before the run finished.
        ToolchainExecutionError: If a command cannot be started.
    """
    invocation.log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path = invocation.log_path

    env: dict[str, str] | None = None
    if invocation.env:
        env = dict(os.environ)
        env.update(invocation.env)

    started_at = datetime.now(timezone.utc)
    exit_code = 0
    cmd_str = ""
    error_message: str | None = None

    with log_path.open("w") as log_file:
        log_file.write(f"# Component: {invocation.component}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {invocation.workdir}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()

        for cmd in invocation.commands:
            if cancel is not None and cancel.is_set():
                raise BuildCancelled(invocation.component)

            cmd_str = shlex.join(cmd)
            logger.info("[%s] Executing: %s", invocation.component, cmd_str)
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.flush()

            try:
                proc = subprocess.Popen(
                    list(cmd),
                    cwd=invocation.workdir,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=env,
                    start_new_session=True,
                )
            except OSError as e:
                error_message = f"Failed to execute {cmd_str}: {e}"
                logger.error(error_message)
                log_file.write(f"\n# {error_message}\n")
                raise ToolchainExecutionError(error_message) from e

            returncode = _wait(proc, cancel, poll_interval)
            if returncode is None:
                logger.warning(
                    "[%s] Aborting %s (pid %d)",
                    invocation.component,
                    cmd_str,
                    proc.pid,
                )
                terminate_process_group(proc, kill_grace)
                log_file.write("\n# CANCELLED\n")
                raise BuildCancelled(invocation.component)

            exit_code = returncode
            if exit_code != 0:
                error_message = f"{cmd_str} failed with exit code {exit_code}"
                logger.error(
                    "[%s] %s. See log: %s",
                    invocation.component,
                    error_message,
                    log_path,
                )
                break

        finished_at = datetime.now(timezone.utc)
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return ToolchainResult(
        success=exit_code == 0,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


class SubprocessToolchain:
    """Toolchain collaborator that runs recipe commands locally."""

    def __init__(self, kill_grace: float = KILL_GRACE) -> None:
        self.kill_grace = kill_grace

    def run(
        self,
        invocation: ToolchainInvocation,
        cancel: threading.Event | None = None,
    ) -> ToolchainResult:
        """Run an invocation; see run_toolchain."""
        return run_toolchain(invocation, cancel=cancel, kill_grace=self.kill_grace)


__all__ = [
    "KILL_GRACE",
    "POLL_INTERVAL",
    "SubprocessToolchain",
    "ToolchainExecutionError",
    "ToolchainInvocation",
    "ToolchainResult",
    "run_toolchain",
    "terminate_process_group",
]
