# command.py
from __future__ import annotations

import enum
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Union

from .credentials import Masker
from .errors import Cancelled, LaunchError, NonZeroExit, Timeout

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT = 64 * 1024


class CommandStatus(str, enum.Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CommandResult:
    argv: tuple
    status: CommandStatus
    exit_code: Optional[int]  # None unless COMPLETED
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timeout: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status is CommandStatus.COMPLETED and self.exit_code == 0

    @property
    def timed_out(self) -> bool:
        return self.status is CommandStatus.TIMED_OUT

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    @property
    def output(self) -> str:
        if self.stdout and self.stderr:
            return self.stdout.rstrip("\n") + "\n" + self.stderr
        return self.stdout or self.stderr

    def error(self) -> Optional[Union[NonZeroExit, Timeout, Cancelled]]:
        """The error this result represents, or None when it succeeded."""
        if self.status is CommandStatus.TIMED_OUT:
            return Timeout(self.command, self.timeout)
        if self.status is CommandStatus.CANCELLED:
            return Cancelled(f"cancelled while running: {self.command}")
        if self.exit_code != 0:
            return NonZeroExit(self.command, self.exit_code)
        return None

    def check(self) -> "CommandResult":
        err = self.error()
        if err is not None:
            raise err
        return self


class CancelToken:
    """Abort request for one run; checked between actions and polled by the runner."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "abort requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "abort requested")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True early if cancelled."""
        return self._event.wait(seconds)


def _tail(text: str, limit: int) -> str:
    if limit and len(text) > limit:
        return "[... truncated ...]\n" + text[-limit:]
    return text


class CommandRunner:
    """
    Executes external commands with structured argv (never through a shell).

    Non-zero exits are reported in the result, not raised. Only a process that
    cannot be started raises (LaunchError).
    """

    def __init__(self, *, max_output: int = DEFAULT_MAX_OUTPUT, poll_interval: float = 0.1):
        self.max_output = max_output
        self.poll_interval = poll_interval

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        *,
        cwd: Union[str, Path, None] = None,
        input: Optional[str] = None,
        secrets: Union[Masker, Iterable[str]] = (),
        cancel: Optional[CancelToken] = None,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        if not argv:
            raise ValueError("argv must not be empty")
        masker = secrets if isinstance(secrets, Masker) else Masker(secrets)
        shown = tuple(masker.mask(a) for a in argv)

        if cwd is not None and not Path(cwd).is_dir():
            raise LaunchError(argv[0], f"working directory not found: {cwd}")

        logger.debug("exec %s (cwd=%s, timeout=%s)", shlex.join(shown), cwd, timeout)
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=None if cwd is None else str(cwd),
                env=None if env is None else dict(env),
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name == "posix"),
            )
        except FileNotFoundError:
            raise LaunchError(argv[0], "executable not found") from None
        except PermissionError:
            raise LaunchError(argv[0], "permission denied") from None
        except OSError as e:
            raise LaunchError(argv[0], e.strerror or str(e)) from None

        status = CommandStatus.COMPLETED
        deadline = None if timeout is None else started + timeout
        pending = input
        while True:
            if cancel is not None:
                wait: Optional[float] = self.poll_interval
                if deadline is not None:
                    wait = min(wait, max(0.0, deadline - time.monotonic()))
            else:
                wait = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                stdout, stderr = proc.communicate(input=pending, timeout=wait)
                break
            except subprocess.TimeoutExpired:
                # stdin may only be handed over on the first call
                pending = None
                if cancel is not None and cancel.cancelled:
                    status = CommandStatus.CANCELLED
                elif deadline is not None and time.monotonic() >= deadline:
                    status = CommandStatus.TIMED_OUT
                else:
                    continue
                self._kill(proc)
                stdout, stderr = proc.communicate()
                break

        duration = time.monotonic() - started
        exit_code = proc.returncode if status is CommandStatus.COMPLETED else None
        if status is not CommandStatus.COMPLETED:
            logger.debug("%s %s after %.1fs", shlex.join(shown), status.value, duration)

        return CommandResult(
            argv=shown,
            status=status,
            exit_code=exit_code,
            stdout=_tail(masker.mask(stdout or ""), self.max_output),
            stderr=_tail(masker.mask(stderr or ""), self.max_output),
            duration=duration,
            timeout=timeout,
        )

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        # the whole process group, so tool wrappers don't leave children holding the pipes
        if os.name == "posix":
            try:
                os.killpg(proc.pid, signal.SIGKILL)
                return
            except (ProcessLookupError, PermissionError):
                pass
        proc.kill()


def base_environment(extra: Optional[Mapping[str, str]] = None) -> dict:
    """Process environment for an action: os.environ + context + credentials."""
    env = os.environ.copy()
    env.update(extra or {})
    return env
