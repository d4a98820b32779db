from .actions import (
    Apply,
    Build,
    Checkout,
    Command,
    ImageBuild,
    Push,
    QualityGate,
    Query,
    RegistryLogin,
    RolloutStatus,
    Scan,
    Upload,
)
from .command import CancelToken, CommandResult, CommandRunner, CommandStatus
from .context import EnvironmentContext, build_context, fmt, var
from .credentials import CredentialStore, Token, UsernamePassword
from .dsl import build, cmd, pipeline, stage, token, username_password, with_credentials
from .executor import PipelineExecutor, load_pipeline, run_pipeline
from .guards import all_of, always, any_of, never, not_, on_branch, when_equals, when_set
from .model import FailurePolicy, Pipeline, Run, Stage, StageResult, StageStatus
from .notify import Notifier, NotifySettings

__all__ = [
    "pipeline", "stage", "cmd", "build", "token", "username_password", "with_credentials",
    "var", "fmt", "on_branch", "when_set", "when_equals", "all_of", "any_of", "not_", "always", "never",
    "Command", "Checkout", "Build", "Scan", "QualityGate", "Upload", "RegistryLogin", "ImageBuild",
    "Push", "Apply", "RolloutStatus", "Query",
    "EnvironmentContext", "build_context", "CredentialStore", "Token", "UsernamePassword",
    "CommandRunner", "CommandResult", "CommandStatus", "CancelToken",
    "Pipeline", "Stage", "StageResult", "StageStatus", "FailurePolicy", "Run",
    "PipelineExecutor", "run_pipeline", "load_pipeline", "Notifier", "NotifySettings",
]
