# actions/scm.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from ..context import Arg
from ..http import basic_auth
from ..model import ActionResult
from .base import Action, ActionSession


@dataclass(frozen=True)
class Checkout(Action):
    """
    Clone (or fetch) a repository and check out a ref.

    The credential never appears in argv: it is handed to git as an
    http.extraHeader through GIT_CONFIG_* environment variables.
    """
    repo_url: Arg = ""
    ref: Arg = "HEAD"
    dest: Arg = "."
    credential_id: Optional[str] = None

    def describe(self) -> str:
        return f"checkout {self.repo_url}@{self.ref}"

    def _auth_env(self, session: ActionSession) -> Dict[str, str]:
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if not self.credential_id:
            return env
        handle = session.secret(self.credential_id)
        if not handle.is_pair:
            header = f"Authorization: Bearer {handle.value}"
        else:
            header = "Authorization: " + basic_auth(handle.username, handle.password)
        session.masker.add(header.rsplit(" ", 1)[1])
        env.update({
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": header,
        })
        return env

    def execute(self, session: ActionSession) -> ActionResult:
        dest = session.path(self.dest)
        url = session.render(self.repo_url)
        ref = session.render(self.ref)
        env = self._auth_env(session)

        results = []
        if (dest / ".git").exists():
            res = session.run(["git", "fetch", "--tags", "origin"], cwd=str(dest), env=env, timeout=self.timeout)
        else:
            dest.parent.mkdir(parents=True, exist_ok=True)
            res = session.run(["git", "clone", url, str(dest)], env=env, timeout=self.timeout)
        results.append(res)
        if res.ok:
            results.append(
                session.run(["git", "checkout", "--force", ref], cwd=str(dest), env=env, timeout=self.timeout)
            )

        return self.outcome(results, outputs={"working_directory": str(dest)} if results[-1].ok else None)
