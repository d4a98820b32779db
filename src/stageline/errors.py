# errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "mvn": "Install Maven or fix PATH (mvn).",
    "gradle": "Install Gradle or use the project's ./gradlew wrapper.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "kubectl": "Install kubectl and point KUBECONFIG at the target cluster.",
    "trivy": "Install trivy (https://aquasecurity.github.io/trivy).",
    "az": "Install the Azure CLI (az) or fix PATH.",
    "aws": "Install the AWS CLI v2 or fix PATH.",
    "sonar-scanner": "Install sonar-scanner or run the analysis through the build tool.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


class PipelineError(Exception):
    """
    Structured pipeline error with enough context for:
      - clean CLI output
      - the notification summary
      - debugging without full tracebacks
    """

    kind = "pipeline_error"

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.action = action
        self.details: Dict[str, Any] = dict(details or {})

    def at(self, stage: Optional[str] = None, action: Optional[str] = None) -> "PipelineError":
        """Attach stage/action location (first one wins) and return self."""
        if self.stage is None:
            self.stage = stage
        if self.action is None:
            self.action = action
        return self

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.stage:
            lines.append(f"stage={self.stage}")
        if self.action:
            lines.append(f"action={self.action}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "stage": self.stage,
            "action": self.action,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# ----------------------------------------------------------------------
# Configuration errors (fatal to the whole run)
# ----------------------------------------------------------------------

class UndefinedVariable(PipelineError, KeyError):
    kind = "undefined_variable"

    def __init__(self, key: str, **kwargs):
        super().__init__(f"variable {key!r} is not defined", **kwargs)
        self.key = key

    # KeyError.__str__ would repr() the message
    __str__ = PipelineError.__str__


class CredentialNotFound(PipelineError, LookupError):
    kind = "credential_not_found"

    def __init__(self, credential_id: str, **kwargs):
        super().__init__(f"no credential registered as {credential_id!r}", **kwargs)
        self.credential_id = credential_id


class CredentialScopeClosed(PipelineError):
    kind = "credential_expired"

    def __init__(self, credential_id: str, **kwargs):
        super().__init__(
            f"credential {credential_id!r} used outside of its scope", **kwargs
        )
        self.credential_id = credential_id


class GuardEvaluationError(PipelineError):
    kind = "guard_error"


class PipelineDefinitionError(PipelineError, ValueError):
    kind = "definition_error"


# ----------------------------------------------------------------------
# Action errors (captured on the stage result, never raised by the executor)
# ----------------------------------------------------------------------

class LaunchError(PipelineError):
    kind = "launch_error"

    def __init__(self, executable: str, reason: str, **kwargs):
        details = kwargs.pop("details", None) or {}
        hint = TOOL_HINTS.get(executable)
        if hint:
            details.setdefault("hint", hint)
        super().__init__(f"could not start {executable!r}: {reason}", details=details, **kwargs)
        self.executable = executable
        self.hint = hint


class NonZeroExit(PipelineError):
    kind = "non_zero_exit"

    def __init__(self, command: str, exit_code: int, **kwargs):
        super().__init__(f"command exited with status {exit_code}: {command}", **kwargs)
        self.command = command
        self.exit_code = exit_code


class Timeout(PipelineError):
    kind = "timeout"

    def __init__(self, what: str, seconds: Optional[float], **kwargs):
        limit = f"{seconds:g}s" if seconds is not None else "its limit"
        super().__init__(f"{what} did not finish within {limit}", **kwargs)
        self.seconds = seconds


class Cancelled(PipelineError):
    kind = "cancelled"


class ActionFailed(PipelineError):
    """A structured action reported failure without a process exit code."""
    kind = "action_failed"


class NotificationDeliveryError(PipelineError):
    kind = "notification_error"


CONFIGURATION_ERRORS = (UndefinedVariable, CredentialNotFound, CredentialScopeClosed, GuardEvaluationError)
