# actions/cluster.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ..context import Arg
from ..errors import Timeout
from ..model import ActionResult
from .base import Action, ActionSession


def _namespaced(argv: List[str], namespace: Optional[str]) -> List[str]:
    return argv + ["-n", namespace] if namespace else argv


@dataclass(frozen=True)
class Apply(Action):
    manifest: Arg = ""
    namespace: Optional[Arg] = None
    kubectl: str = "kubectl"

    def describe(self) -> str:
        return f"{self.kubectl} apply -f {self.manifest}"

    def execute(self, session: ActionSession) -> ActionResult:
        ns = session.render(self.namespace) if self.namespace is not None else None
        argv = _namespaced([self.kubectl, "apply", "-f", str(session.path(self.manifest))], ns)
        return self.outcome([session.run(argv, timeout=self.timeout)])


# phases reported by RolloutStatus
COMPLETE = "complete"
FAILED = "failed"
TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class RolloutStatus(Action):
    """
    Wait for a rollout (`deployment/app`) and report its phase.

    kubectl enforces `wait`; the process timeout is a little longer so the
    CLI gets to report the deadline itself.
    """
    resource: Arg = ""
    namespace: Optional[Arg] = None
    wait: float = 300.0
    kubectl: str = "kubectl"

    def describe(self) -> str:
        return f"{self.kubectl} rollout status {self.resource}"

    def execute(self, session: ActionSession) -> ActionResult:
        ns = session.render(self.namespace) if self.namespace is not None else None
        argv = _namespaced(
            [self.kubectl, "rollout", "status", session.render(self.resource), f"--timeout={int(self.wait)}s"],
            ns,
        )
        res = session.run(argv, timeout=self.timeout if self.timeout is not None else self.wait + 30)
        text = res.output.lower()
        if res.ok:
            phase = COMPLETE
        elif res.timed_out or "timed out" in text or "progress deadline" in text:
            phase = TIMED_OUT
        else:
            phase = FAILED

        error = None
        if phase == TIMED_OUT and not res.timed_out:
            error = Timeout(f"rollout of {session.render(self.resource)}", self.wait)
        return self.outcome([res], outputs={"phase": phase}, error=error)


@dataclass(frozen=True)
class Query(Action):
    """List pods/services (or any kind) in a namespace; names become an output."""
    kind: str = "pods"
    namespace: Optional[Arg] = None
    kubectl: str = "kubectl"

    def describe(self) -> str:
        return f"{self.kubectl} get {self.kind}"

    def execute(self, session: ActionSession) -> ActionResult:
        ns = session.render(self.namespace) if self.namespace is not None else None
        argv = _namespaced([self.kubectl, "get", self.kind, "-o", "wide"], ns)
        res = session.run(argv, timeout=self.timeout)
        if not res.ok:
            return self.outcome([res])

        lines = [ln for ln in res.stdout.splitlines() if ln.strip()]
        if lines and lines[0].split()[0].upper() == "NAME":
            lines = lines[1:]
        return self.outcome([res], outputs={self.kind: [ln.split()[0] for ln in lines]})


def get_pods(name: str = "pods", namespace: Optional[Arg] = None, **kw) -> Query:
    return Query(name, kind="pods", namespace=namespace, **kw)


def get_services(name: str = "services", namespace: Optional[Arg] = None, **kw) -> Query:
    return Query(name, kind="services", namespace=namespace, **kw)
