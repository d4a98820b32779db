# actions/scan.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple
from urllib.parse import quote

from .. import http
from ..context import Arg
from ..errors import ActionFailed, Cancelled, Timeout
from ..model import ActionResult
from .base import Action, ActionSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scan(Action):
    """
    Vulnerability / static analysis scanner that writes a report file.

    advisory=True turns a non-zero exit into a degraded (UNSTABLE) stage
    instead of a failure; the report is still published as an output.
    """
    argv: Tuple[Arg, ...] = ()
    report: Optional[Arg] = None
    cwd: Optional[Arg] = None

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ValueError(f"scan {self.name!r} has an empty argv")

    def describe(self) -> str:
        mode = "advisory" if self.advisory else "blocking"
        return f"{' '.join(str(a) for a in self.argv)} ({mode})"

    def execute(self, session: ActionSession) -> ActionResult:
        res = session.run(self.argv, cwd=self.cwd, timeout=self.timeout)
        outputs = {}
        if self.report is not None:
            report = session.path(self.report)
            if report.exists():
                outputs["report"] = str(report)
            else:
                logger.warning("scan %s: report %s was not written", self.name, report)
        return self.outcome([res], outputs=outputs)


REQUEST_TIMEOUT = 30.0
PASSING_VERDICTS = ("OK", "WARN")
FAILING_VERDICTS = ("ERROR",)


@dataclass(frozen=True)
class QualityGate(Action):
    """
    Block until the quality-gate service has a verdict for a project.

    Polls GET {server_url}/api/qualitygates/project_status?projectKey=...
    until the status is OK/WARN (pass) or ERROR (fail). A missing analysis
    (404 or status NONE) is polled again until `wait` seconds elapse.
    """
    server_url: Arg = ""
    project_key: Arg = ""
    credential_id: Optional[str] = None
    wait: float = 300.0
    interval: float = 5.0
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    def describe(self) -> str:
        return f"quality gate {self.project_key}"

    def _headers(self, session: ActionSession) -> dict:
        if not self.credential_id:
            return {}
        handle = session.secret(self.credential_id)
        # token auth: token as username, empty password
        if handle.is_pair:
            return {"Authorization": http.basic_auth(handle.username, handle.password)}
        return {"Authorization": http.basic_auth(handle.value, "")}

    def poll_once(self, session: ActionSession, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the current verdict, or None while no verdict is available.

        Raises ActionFailed when the server answers with something that is
        not a project status document (a proxy or login page, for instance).
        """
        url = (
            session.render(self.server_url).rstrip("/")
            + "/api/qualitygates/project_status?projectKey="
            + quote(session.render(self.project_key), safe="")
        )
        try:
            resp = http.request("GET", url, headers=self._headers(session), timeout=timeout or REQUEST_TIMEOUT)
        except http.HTTPRequestError as e:
            if e.status == 404:
                return None
            raise
        try:
            status = (resp.json().get("projectStatus") or {}).get("status")
        except (ValueError, AttributeError) as e:
            raise ActionFailed(
                f"unexpected quality gate response from {url}",
                details={"status": resp.status, "error": f"{type(e).__name__}: {e}"},
            ) from e
        if not status or status == "NONE":
            return None
        return str(status)

    def execute(self, session: ActionSession) -> ActionResult:
        started = self.clock()
        deadline = started + self.wait
        polls = 0
        while True:
            polls += 1
            limit = session.timeout if session.timeout is not None else REQUEST_TIMEOUT
            # never let one request run past the gate deadline
            request_timeout = min(limit, max(deadline - self.clock(), 1.0))
            try:
                verdict = self.poll_once(session, timeout=request_timeout)
            except http.HTTPRequestError as e:
                err = ActionFailed(str(e), details={"status": e.status})
                return self._result(err, polls, started)
            except ActionFailed as e:
                return self._result(e, polls, started)

            if verdict in PASSING_VERDICTS:
                return self._result(None, polls, started, verdict)
            if verdict is not None:
                err = ActionFailed(f"quality gate verdict: {verdict}", details={"verdict": verdict})
                return self._result(err, polls, started, verdict)

            if self.clock() >= deadline:
                return self._result(Timeout(self.describe(), self.wait), polls, started)
            if session.cancel.wait(self.interval):
                return self._result(Cancelled("cancelled while waiting for quality gate"), polls, started)

    def _result(self, error, polls: int, started: float, verdict: Optional[str] = None) -> ActionResult:
        if error is not None:
            error.at(action=self.name)
        outputs = {"polls": polls}
        if verdict is not None:
            outputs["verdict"] = verdict
        return ActionResult(
            action=self.name,
            ok=error is None,
            output=f"quality gate {verdict or 'unavailable'} after {polls} poll(s)",
            error=error,
            degraded=self.advisory and verdict in FAILING_VERDICTS,
            outputs=outputs,
            duration=self.clock() - started,
        )
