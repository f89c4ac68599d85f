"""
Blocking execution of external tools (ffmpeg, ffprobe, pdftoppm, magick).

Every invocation carries a timeout. A process that outlives it, or whose
caller cancels, is killed together with its children and reported as
SubprocessTimeoutError / SubprocessCancelledError.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from vidfrompdf.exceptions import (
    SubprocessCancelledError,
    SubprocessFailureError,
    SubprocessTimeoutError,
    ToolNotFoundError,
)

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag shared between a job and its runner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SubprocessCancelledError()


@dataclass
class CompletedRun:
    """Result of a finished external process."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str
    duration_s: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SubprocessRunner:
    """Runs external tools with a deadline and cooperative cancellation."""

    def __init__(self, poll_interval_s: float = 0.1):
        self.poll_interval_s = poll_interval_s

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float,
        cancel: Optional[CancelToken] = None,
        cwd: Optional[Path] = None,
        check: bool = True,
    ) -> CompletedRun:
        """Run args to completion.

        Raises:
            ToolNotFoundError: The executable does not exist
            SubprocessTimeoutError: The process exceeded timeout and was killed
            SubprocessCancelledError: cancel was set while the process ran
            SubprocessFailureError: Non-zero exit status and check is True
        """
        args = [str(a) for a in args]
        if cancel is not None:
            cancel.raise_if_cancelled()

        logger.debug(f"[RUNNER] {' '.join(args)}")
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                args,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name == "posix"),
            )
        except FileNotFoundError:
            raise ToolNotFoundError(args[0])
        except PermissionError:
            raise ToolNotFoundError(args[0], "not executable")

        deadline = started + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill_tree(proc)
                logger.warning(f"[RUNNER] Timed out after {timeout:g}s: {args[0]}")
                raise SubprocessTimeoutError(args, timeout)
            if cancel is not None and cancel.cancelled:
                self._kill_tree(proc)
                logger.info(f"[RUNNER] Cancelled: {args[0]}")
                raise SubprocessCancelledError(f"{args[0]} was cancelled")
            try:
                stdout, stderr = proc.communicate(timeout=min(self.poll_interval_s, remaining))
                break
            except subprocess.TimeoutExpired:
                continue

        result = CompletedRun(
            args=args,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_s=time.monotonic() - started,
        )
        if check and not result.ok:
            logger.error(f"[RUNNER] {args[0]} failed ({result.returncode}): {result.stderr[-2000:]}")
            raise SubprocessFailureError(args, result.returncode, result.stderr)
        return result

    def _kill_tree(self, proc: subprocess.Popen) -> None:
        """Kill the process and everything it spawned, then reap it."""
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            pass
        proc.communicate()
