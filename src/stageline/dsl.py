# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .actions.base import Action, Command
from .context import Arg
from .credentials import Binding, TokenBinding, UsernamePasswordBinding
from .guards import Guard, always, guard
from .model import FailurePolicy, Pipeline, Stage
from .notify import NotifySettings

ABORT = FailurePolicy.ABORT
CONTINUE_DEGRADED = FailurePolicy.CONTINUE_DEGRADED


# ---------------------------------------------------------------------
# Action helpers
# ---------------------------------------------------------------------

def cmd(
    name: str,
    *argv: Arg,
    cwd: Optional[Arg] = None,
    env: Optional[Mapping[str, Arg]] = None,
    timeout: Optional[float] = None,
    advisory: bool = False,
    credentials: Sequence[Binding] = (),
) -> Command:
    """Create a command action: cmd("unit tests", "mvn", "-B", "test")."""
    return Command(
        name,
        argv=tuple(argv),
        cwd=cwd,
        env=dict(env or {}),
        timeout=timeout,
        advisory=advisory,
        credentials=tuple(credentials),
    )


def token(credential_id: str, variable: str) -> TokenBinding:
    return TokenBinding(credential_id, variable)


def username_password(credential_id: str, username_variable: str, password_variable: str) -> UsernamePasswordBinding:
    return UsernamePasswordBinding(credential_id, username_variable, password_variable)


def with_credentials(action: Action, *bindings: Binding) -> Action:
    """Expose credentials to one action only (withCredentials equivalent)."""
    return action.with_credentials(*bindings)


# ---------------------------------------------------------------------
# Functional Stage helper
# ---------------------------------------------------------------------

def stage(
    name: str,
    *actions: Action,
    when: Union[Guard, None] = None,
    on_failure: FailurePolicy = FailurePolicy.ABORT,
    env: Optional[Mapping[str, object]] = None,
    timeout: Optional[float] = None,
    description: str = "",
) -> Stage:
    if not actions:
        raise ValueError(f"stage({name!r}) must have at least one action")
    return Stage(
        name=name,
        actions=tuple(actions),
        guard=guard(when) if when is not None else always(),
        on_failure=on_failure,
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        description=description,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StageBuilder:
    def __init__(self, name: str):
        self.name = name
        self._actions: List[Action] = []
        self._guard: Guard = always()
        self._on_failure = FailurePolicy.ABORT
        self._env: Dict[str, str] = {}
        self._timeout: Optional[float] = None
        self._description = ""

    def when(self, g: Guard):
        self._guard = guard(g)
        return self

    def step(self, name: str, *argv: Arg, cwd: Optional[Arg] = None):
        self._actions.append(cmd(name, *argv, cwd=cwd))
        return self

    def action(self, *actions: Action):
        self._actions.extend(actions)
        return self

    def with_env(self, **env):
        # force values to str for the process environment
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def degrade(self):
        """Failures make the stage UNSTABLE instead of stopping the run."""
        self._on_failure = FailurePolicy.CONTINUE_DEGRADED
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def build(self) -> Stage:
        if not self._actions:
            raise ValueError(f"Stage '{self.name}' has no actions")
        return Stage(
            name=self.name,
            actions=tuple(self._actions),
            guard=self._guard,
            on_failure=self._on_failure,
            env=dict(self._env),
            timeout=self._timeout,
            description=self._description,
        )


def build(name: str) -> StageBuilder:
    """Convenience: build('test').step('unit', 'mvn', 'test').build()"""
    return StageBuilder(name)


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *stages: Union[Stage, StageBuilder],
    environment: Optional[Mapping[str, object]] = None,
    required: Iterable[str] = (),
    notify: Optional[NotifySettings] = None,
    recipients: Iterable[str] = (),
    attachments: Iterable[str] = (),
) -> Pipeline:
    """
    Pipeline definition helper.

    Users write, in a pipeline file:

        from stageline.dsl import pipeline, stage, cmd

        def build_pipeline():
            return pipeline(
                "app",
                stage("build", cmd("package", "mvn", "-B", "package")),
                stage("test", cmd("unit", "mvn", "-B", "test")),
            )
    """
    built = [s.build() if isinstance(s, StageBuilder) else s for s in stages]
    recipients = tuple(recipients)
    if recipients:
        notify = replace(notify or NotifySettings(), recipients=tuple(notify.recipients if notify else ()) + recipients)
    return Pipeline(
        name=name,
        stages=tuple(built),
        environment={k: str(v) for k, v in (environment or {}).items()},
        required=tuple(required),
        notify=notify,
        attachments=tuple(attachments),
    )
