# actions/build.py
from __future__ import annotations

import glob
from dataclasses import dataclass
from typing import List, Tuple

from ..context import Arg
from ..errors import ActionFailed
from ..model import ActionResult
from .base import Action, ActionSession


@dataclass(frozen=True)
class Build(Action):
    """
    Run a build tool in a project directory and collect its artifacts.

    Example:
        Build("package", argv=("mvn", "-B", "clean", "package"),
              project_dir="app", artifacts=("target/*.jar",))

    A successful build whose artifact globs match nothing is a failure:
    later stages would publish stale or missing files otherwise.
    """
    argv: Tuple[Arg, ...] = ()
    project_dir: Arg = "."
    artifacts: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))
        object.__setattr__(self, "artifacts", tuple(self.artifacts))
        if not self.argv:
            raise ValueError(f"build {self.name!r} has an empty argv")

    def describe(self) -> str:
        return " ".join(str(a) for a in self.argv)

    def _collect(self, session: ActionSession) -> List[str]:
        root = session.path(self.project_dir)
        found: List[str] = []
        for pattern in self.artifacts:
            rendered = session.render(pattern)
            found.extend(sorted(glob.glob(str(root / rendered), recursive=True)))
        return found

    def execute(self, session: ActionSession) -> ActionResult:
        res = session.run(self.argv, cwd=self.project_dir, timeout=self.timeout)
        if not res.ok or not self.artifacts:
            return self.outcome([res])

        paths = self._collect(session)
        if not paths:
            err = ActionFailed(
                "build succeeded but produced no artifacts",
                details={"patterns": ", ".join(self.artifacts)},
            )
            return self.outcome([res], error=err)
        return self.outcome([res], outputs={"artifacts": paths})
