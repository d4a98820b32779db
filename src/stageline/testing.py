# testing.py
"""Fakes for exercising pipelines without spawning processes or sending mail."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .command import CommandResult, CommandStatus
from .credentials import Masker
from .errors import LaunchError


@dataclass
class Call:
    argv: List[str]
    env: Dict[str, str]
    timeout: Optional[float]
    cwd: Optional[str]
    input: Optional[str]


@dataclass
class _Rule:
    prefix: Tuple[str, ...]
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    status: CommandStatus = CommandStatus.COMPLETED
    missing: bool = False
    effect: Optional[Callable[[Call], Optional[str]]] = None


class FakeRunner:
    """
    Drop-in CommandRunner replacement.

    Rules match on an argv prefix; the most recently added matching rule
    wins. Unmatched commands succeed with no output.

        runner = FakeRunner()
        runner.on("mvn", "test", exit_code=1, stdout="BUILD FAILURE")
    """

    def __init__(self):
        self.calls: List[Call] = []
        self._rules: List[_Rule] = []

    def on(
        self,
        *prefix: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        status: CommandStatus = CommandStatus.COMPLETED,
        missing: bool = False,
        effect: Optional[Callable[[Call], Optional[str]]] = None,
    ) -> "FakeRunner":
        self._rules.append(_Rule(tuple(prefix), exit_code, stdout, stderr, status, missing, effect))
        return self

    def _match(self, argv: Sequence[str]) -> Optional[_Rule]:
        for rule in reversed(self._rules):
            if tuple(argv[: len(rule.prefix)]) == rule.prefix:
                return rule
        return None

    def commands(self) -> List[List[str]]:
        return [c.argv for c in self.calls]

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        *,
        cwd: Union[str, Path, None] = None,
        input: Optional[str] = None,
        secrets: Union[Masker, Sequence[str]] = (),
        cancel=None,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        call = Call(argv, dict(env or {}), timeout, None if cwd is None else str(cwd), input)
        self.calls.append(call)
        masker = secrets if isinstance(secrets, Masker) else Masker(secrets)

        rule = self._match(argv)
        if rule is None:
            return CommandResult(argv=tuple(argv), status=CommandStatus.COMPLETED, exit_code=0)
        if rule.missing:
            raise LaunchError(argv[0], "executable not found")

        stdout = rule.stdout
        if rule.effect is not None:
            stdout = (rule.effect(call) or "") + stdout
        completed = rule.status is CommandStatus.COMPLETED
        return CommandResult(
            argv=tuple(masker.mask(a) for a in argv),
            status=rule.status,
            exit_code=rule.exit_code if completed else None,
            stdout=masker.mask(stdout),
            stderr=masker.mask(rule.stderr),
            timeout=timeout,
        )


@dataclass
class Sent:
    recipients: List[str]
    subject: str
    body: str
    attachments: List[Path]
    notification: object = None


@dataclass
class RecordingTransport:
    """Keeps every notification instead of delivering it; can be told to fail."""
    fail_with: Optional[Exception] = None
    sent: List[Sent] = field(default_factory=list)

    def send(self, recipients, subject, body, attachments, notification=None) -> None:
        self.sent.append(Sent(list(recipients), subject, body, list(attachments), notification))
        if self.fail_with is not None:
            raise self.fail_with
