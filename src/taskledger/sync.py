"""Sync bridge: run an external synchronization tool, then reload the replica.

The bridge is opt-in; nothing in the store calls it implicitly. Process
execution goes through a ``ProcessRunner`` so tests can substitute a fake
and never spawn a real binary.
"""

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

from taskledger.errors import (
    ExternalToolFailedError,
    ExternalToolMissingError,
    ReplicaReloadFailedError,
    SyncTimeoutError,
    TaskLedgerError,
)
from taskledger.logging import Loggers
from taskledger.store import TaskStore

logger = Loggers.sync()


@dataclass
class ExitResult:
    """Outcome of a finished child process.

    Attributes:
        exit_code: Process return code
        stdout: Decoded standard output
        stderr: Decoded standard error
        duration_ms: Wall-clock duration in milliseconds
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": self.duration_ms / 1000,
        }


class ProcessRunner(Protocol):
    """Capability to run a command and capture its result.

    Implementations raise FileNotFoundError when the executable is missing
    and subprocess.TimeoutExpired when ``timeout`` elapses.
    """

    def run(self, command: Sequence[str], timeout: float | None) -> ExitResult: ...


class SubprocessRunner:
    """ProcessRunner backed by ``subprocess.Popen``."""

    def __init__(self, env: dict[str, str] | None = None, cwd: str | None = None):
        self.env = env
        self.cwd = cwd

    def run(self, command: Sequence[str], timeout: float | None) -> ExitResult:
        start_time = time.monotonic()
        process = subprocess.Popen(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.cwd,
            env={**os.environ, **(self.env or {})},
        )
        try:
            stdout_bytes, stderr_bytes = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise
        return ExitResult(
            exit_code=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )


def sync_and_reload(
    replica: "TaskStore | Path",
    runner: ProcessRunner | None = None,
    timeout: float | None = None,
    command: Sequence[str] = ("task", "sync"),
) -> ExitResult:
    """Run the sync tool and re-open the store's persisted state.

    Args:
        replica: TaskStore to reload, or the path of a replica file to re-open
        runner: Process runner (by default a SubprocessRunner with TASKDATA
            pointing at the replica directory)
        timeout: Seconds before the tool is killed; None waits forever
        command: The sync command line

    Returns:
        The tool's ExitResult

    Raises:
        ExternalToolMissingError: The tool executable was not found
        SyncTimeoutError: The tool did not finish within ``timeout``
        ExternalToolFailedError: The tool exited non-zero
        ReplicaReloadFailedError: The replica could not be re-opened
    """
    command = list(command)
    path = Path(replica) if isinstance(replica, (str, Path)) else replica.path
    runner = runner or SubprocessRunner(env={"TASKDATA": str(path.parent)})
    logger.info("sync_started", command=command, replica=str(path))

    try:
        result = runner.run(command, timeout)
    except FileNotFoundError as e:
        logger.error("sync_tool_missing", command=command)
        raise ExternalToolMissingError(command) from e
    except subprocess.TimeoutExpired as e:
        logger.error("sync_timeout", command=command, timeout=timeout)
        raise SyncTimeoutError(command, timeout) from e

    if not result.success:
        logger.error("sync_failed", command=command, exit_code=result.exit_code, stderr=result.stderr)
        raise ExternalToolFailedError(command, result.exit_code, result.stdout, result.stderr)

    try:
        if isinstance(replica, (str, Path)):
            TaskStore(path)
        else:
            replica.reload()
    except TaskLedgerError as e:
        logger.error("replica_reload_failed", replica=str(path), error=e.message)
        raise ReplicaReloadFailedError(path, e.message) from e

    logger.info("sync_completed", duration_ms=result.duration_ms)
    return result
