"""
Bounded execution of external diagnostic commands.

Each command runs in its own process group. When the deadline passes the
whole group is killed and the pipes are drained, so a timed out command
never leaves a running child or an open descriptor behind.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import time
from collections.abc import Sequence
from typing import Any

from xcs_diag.exceptions import CommandError
from xcs_diag.logging import get_logger
from xcs_diag.models import CommandResult

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DRAIN_TIMEOUT_SECONDS = 5.0


class CommandRunner:
    """
    Runs shell commands with a hard wall-clock timeout.

    Never raises for command failures: a timeout returns the empty
    sentinel result, a missing executable or non-zero exit returns
    ``success=False``.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        drain_timeout_seconds: float = DRAIN_TIMEOUT_SECONDS,
        bound_logger: Any | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.drain_timeout_seconds = drain_timeout_seconds
        self._logger = bound_logger or logger

    def run(self, command: str | Sequence[str], timeout_seconds: float | None = None) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            command: Shell command line, or an argv sequence run without a shell.
            timeout_seconds: Per-call override of the runner's timeout.

        Returns:
            The command result.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        use_shell = isinstance(command, str)
        display = command if isinstance(command, str) else shlex.join(command)

        start_time = time.perf_counter()
        try:
            process = subprocess.Popen(
                command,
                shell=use_shell,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            error = CommandError.not_found(display, e)
            self._logger.warning("command_start_failed", **error.to_dict())
            return CommandResult(command=display, stderr=str(e), success=False)

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._terminate(process)
            duration = time.perf_counter() - start_time
            error = CommandError.timeout(display, timeout)
            self._logger.error("command_timed_out", **error.to_dict())
            return CommandResult.timeout_sentinel(display, duration_seconds=duration)
        except BaseException:
            # Interrupted (e.g. KeyboardInterrupt): do not leave the child running
            self._terminate(process)
            raise

        duration = time.perf_counter() - start_time
        success = process.returncode == 0
        if not success:
            error = CommandError.failed(display, process.returncode)
            self._logger.warning("command_failed", **error.to_dict())
        else:
            self._logger.debug(
                "command_completed",
                command=display,
                duration_seconds=round(duration, 3),
            )

        return CommandResult(
            command=display,
            stdout=stdout or "",
            stderr=stderr or "",
            success=success,
            returncode=process.returncode,
            duration_seconds=duration,
        )

    def _terminate(self, process: subprocess.Popen[str]) -> None:
        """Kill the process group and release pipes and the process slot."""
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass

        try:
            process.communicate(timeout=self.drain_timeout_seconds)
        except subprocess.TimeoutExpired:
            # A detached grandchild still holds the pipes open
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            process.wait()
