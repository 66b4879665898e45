"""Submission to the external ``nq`` job queue."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path


class QueueSubmitError(RuntimeError):
    """Queue binary missing, failed, or returned no job id."""


def dispatch_argv(self_command: Sequence[str], channel: str, source_id: str) -> list[str]:
    """Command line the queue runs to dispatch a stored message to the agent."""

    return [*self_command, "dispatch", "--id", f"{channel}:{source_id}"]


class NqQueue:
    """Runs the queue binary; terminal job files land in the done/fail dirs."""

    def __init__(
        self,
        *,
        binary: str,
        queue_dir: Path,
        completed_dir: Path,
        failed_dir: Path,
    ) -> None:
        self.binary = binary
        self.queue_dir = queue_dir
        self.completed_dir = completed_dir
        self.failed_dir = failed_dir

    def environment(self) -> dict[str, str]:
        env = os.environ.copy()
        env["NQDIR"] = str(self.queue_dir)
        env["NQDONEDIR"] = str(self.completed_dir)
        env["NQFAILDIR"] = str(self.failed_dir)
        return env

    def submit(self, argv: Sequence[str]) -> str:
        """Enqueue ``argv`` and return the job file name printed by the queue."""

        try:
            completed = subprocess.run(  # noqa: S603
                [self.binary, *argv],
                env=self.environment(),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as error:
            raise QueueSubmitError(f"Queue command not found: {self.binary}") from error
        except OSError as error:
            raise QueueSubmitError(f"Queue command failed to start: {error}") from error

        job_id = completed.stdout.strip()
        if completed.returncode != 0 or not job_id:
            raise QueueSubmitError(
                f"{self.binary} exited with {completed.returncode}: {completed.stderr.strip()}",
            )
        return job_id
