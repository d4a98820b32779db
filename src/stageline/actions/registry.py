# actions/registry.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .. import http
from ..context import Arg
from ..errors import ActionFailed, PipelineDefinitionError
from ..model import ActionResult
from .base import Action, ActionSession

_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")

UPLOAD_TIMEOUT = 300.0


# ---------------------------------------------------------------------
# Artifact repository
# ---------------------------------------------------------------------

def maven_path(coordinates: str, default_extension: str = "jar") -> str:
    """
    group:artifact:version[:extension[:classifier]] -> repository-relative path.

    >>> maven_path("com.acme:app:1.2.0")
    'com/acme/app/1.2.0/app-1.2.0.jar'
    """
    parts = coordinates.split(":")
    if len(parts) < 3 or not all(parts[:3]):
        raise PipelineDefinitionError(f"bad coordinates {coordinates!r}, expected group:artifact:version")
    group, artifact, version = parts[:3]
    extension = parts[3] if len(parts) > 3 and parts[3] else default_extension
    classifier = f"-{parts[4]}" if len(parts) > 4 and parts[4] else ""
    return f"{group.replace('.', '/')}/{artifact}/{version}/{artifact}-{version}{classifier}.{extension}"


@dataclass(frozen=True)
class Upload(Action):
    """HTTP PUT of a local artifact into a Maven-layout repository."""
    local_path: Arg = ""
    repository_url: Arg = ""
    coordinates: Arg = ""
    credential_id: Optional[str] = None

    def describe(self) -> str:
        return f"upload {self.local_path} -> {self.coordinates}"

    def target_url(self, session: ActionSession, local: Path) -> str:
        ext = local.suffix.lstrip(".") or "jar"
        rel = maven_path(session.render(self.coordinates), default_extension=ext)
        return session.render(self.repository_url).rstrip("/") + "/" + rel

    def execute(self, session: ActionSession) -> ActionResult:
        local = session.path(self.local_path)
        if not local.is_file():
            err = ActionFailed(f"artifact not found: {local}")
            return self.outcome([], error=err)

        url = self.target_url(session, local)
        headers = {"Content-Type": "application/octet-stream"}
        if self.credential_id:
            handle = session.secret(self.credential_id)
            headers["Authorization"] = http.basic_auth(handle.username, handle.password)

        try:
            resp = http.request("PUT", url, data=local.read_bytes(), headers=headers, timeout=session.timeout or UPLOAD_TIMEOUT)
        except http.HTTPRequestError as e:
            err = ActionFailed(session.masker.mask(str(e)), details={"status": e.status, "url": url})
            return self.outcome([], error=err)

        return ActionResult(
            action=self.name,
            ok=True,
            output=f"uploaded {local.name} -> {url} ({resp.status})",
            outputs={"url": url},
        )


# ---------------------------------------------------------------------
# Container registry
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RegistryLogin(Action):
    """`docker login` with the password on stdin, never in argv."""
    registry: Arg = ""
    credential_id: str = ""
    tool: str = "docker"

    def describe(self) -> str:
        return f"{self.tool} login {self.registry}"

    def execute(self, session: ActionSession) -> ActionResult:
        handle = session.secret(self.credential_id)
        argv = [self.tool, "login", session.render(self.registry), "-u", handle.username, "--password-stdin"]
        res = session.run(argv, input=handle.password + "\n", timeout=self.timeout)
        return self.outcome([res])


@dataclass(frozen=True)
class ImageBuild(Action):
    image: Arg = ""
    context_dir: Arg = "."
    dockerfile: Optional[Arg] = None
    build_args: Mapping[str, Arg] = field(default_factory=dict)
    tool: str = "docker"

    def describe(self) -> str:
        return f"{self.tool} build -t {self.image} {self.context_dir}"

    def execute(self, session: ActionSession) -> ActionResult:
        argv = [self.tool, "build", "-t", session.render(self.image)]
        if self.dockerfile is not None:
            argv += ["-f", str(session.path(self.dockerfile))]
        for key, value in self.build_args.items():
            argv += ["--build-arg", f"{key}={session.render(value)}"]
        argv.append(str(session.path(self.context_dir)))
        res = session.run(argv, timeout=self.timeout)
        return self.outcome([res], outputs={"image": session.render(self.image)} if res.ok else None)


@dataclass(frozen=True)
class Push(Action):
    image: Arg = ""
    tool: str = "docker"

    def describe(self) -> str:
        return f"{self.tool} push {self.image}"

    def execute(self, session: ActionSession) -> ActionResult:
        image = session.render(self.image)
        res = session.run([self.tool, "push", image], timeout=self.timeout)
        outputs = {}
        if res.ok:
            outputs["image"] = image
            m = _DIGEST_RE.search(res.stdout)
            if m:
                outputs["digest"] = m.group(1)
        return self.outcome([res], outputs=outputs)
