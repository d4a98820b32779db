# actions/base.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..command import CancelToken, CommandResult, CommandRunner
from ..context import Arg, EnvironmentContext, render_arg, render_args
from ..credentials import Binding, Masker, ScopedSecret
from ..errors import CredentialNotFound, NonZeroExit, PipelineError
from ..model import ActionResult


@dataclass
class ActionSession:
    """
    Everything one action may touch while it runs.

    env already contains os.environ, the stage context and the exported
    credential bindings. secrets holds the scoped handles opened for this
    action only; they are invalid once the action returns.
    """
    stage: str
    context: EnvironmentContext
    runner: CommandRunner
    env: Dict[str, str]
    masker: Masker
    workspace: Path
    cancel: CancelToken
    timeout: Optional[float] = None
    secrets: Dict[str, ScopedSecret] = field(default_factory=dict)

    def render(self, arg: Arg) -> str:
        return render_arg(arg, self.context)

    def path(self, arg: Optional[Arg]) -> Path:
        if arg is None:
            return self.workspace
        p = Path(self.render(arg)).expanduser()
        return p if p.is_absolute() else self.workspace / p

    def secret(self, credential_id: str) -> ScopedSecret:
        try:
            return self.secrets[credential_id]
        except KeyError:
            raise CredentialNotFound(credential_id, stage=self.stage) from None

    def run(
        self,
        argv: Sequence[Arg],
        *,
        cwd: Optional[Arg] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        full_env = self.env
        if env:
            full_env = dict(self.env)
            full_env.update(env)
        return self.runner.run(
            render_args(argv, self.context),
            full_env,
            timeout if timeout is not None else self.timeout,
            cwd=self.path(cwd),
            input=input,
            secrets=self.masker,
            cancel=self.cancel,
        )


@dataclass(frozen=True)
class Action:
    """
    Base class of every typed action.

    Subclasses implement `execute(session) -> ActionResult`. Process failures
    come back as data. Configuration errors raised here abort the run; any
    other exception fails the stage like a failed action would.
    """
    name: str
    credentials: Tuple[Binding, ...] = field(default=(), kw_only=True)
    timeout: Optional[float] = field(default=None, kw_only=True)
    advisory: bool = field(default=False, kw_only=True)

    def credential_ids(self) -> List[str]:
        ids = [b.credential_id for b in self.credentials]
        own = getattr(self, "credential_id", None)
        if own and own not in ids:
            ids.append(own)
        return ids

    def with_credentials(self, *bindings: Binding) -> "Action":
        return replace(self, credentials=tuple(self.credentials) + tuple(bindings))

    def describe(self) -> str:
        return self.name

    def execute(self, session: ActionSession) -> ActionResult:
        raise NotImplementedError

    # ---- helpers for subclasses ----
    def outcome(
        self,
        results: Sequence[CommandResult],
        outputs: Optional[Mapping[str, Any]] = None,
        error: Optional[PipelineError] = None,
    ) -> ActionResult:
        """Fold one or more command results into an ActionResult."""
        last = results[-1] if results else None
        if error is None and last is not None:
            error = last.error()
        if error is not None:
            error.at(action=self.name)
        output = "\n".join(r.output.rstrip("\n") for r in results if r.output)
        return ActionResult(
            action=self.name,
            ok=error is None,
            exit_code=last.exit_code if last is not None else None,
            output=output,
            error=error,
            degraded=self.advisory and isinstance(error, NonZeroExit),
            outputs=dict(outputs or {}),
            duration=sum(r.duration for r in results),
        )


@dataclass(frozen=True)
class Command(Action):
    """A plain external command with a structured argument list."""
    argv: Tuple[Arg, ...] = ()
    cwd: Optional[Arg] = None
    env: Mapping[str, Arg] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ValueError(f"command {self.name!r} has an empty argv")

    def describe(self) -> str:
        return " ".join(str(a) for a in self.argv)

    def execute(self, session: ActionSession) -> ActionResult:
        extra = {k: session.render(v) for k, v in self.env.items()}
        res = session.run(self.argv, cwd=self.cwd, timeout=self.timeout, env=extra)
        return self.outcome([res])
