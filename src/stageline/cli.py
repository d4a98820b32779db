# cli.py
from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import click

from stageline.command import CancelToken, CommandRunner
from stageline.context import build_context, parse_assignments
from stageline.credentials import CredentialStore, parse_secret_specs
from stageline.errors import PipelineError, UndefinedVariable
from stageline.executor import PipelineExecutor, load_pipeline
from stageline.git_facts.git import git_facts
from stageline.model import FailurePolicy, Pipeline, StageStatus
from stageline.notify import EmailTransport, Notifier, WebhookTransport
from stageline.records import BuildCounter, RunRecorder
from stageline.settings import Settings, load_settings
from stageline.ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

DEFAULT_PIPELINE = "stageline_pipeline.py"


def find_pipeline_files() -> list[Path]:
    """Find stageline_pipeline.py and *_pipeline.py in the current directory."""
    current_dir = Path(".")
    files = []
    default = current_dir / DEFAULT_PIPELINE
    if default.exists():
        files.append(default)
    for path in current_dir.glob("*_pipeline.py"):
        if path != default:
            files.append(path)
    return sorted(files)


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover the pipeline file from the argument or the current directory.

    Raises:
        SystemExit: If no pipeline (or more than one candidate) is found
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists() and path.suffix != ".py":
            path = Path(str(path) + ".py")
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or specify a different path:\n  stageline run --pipeline my_pipeline.py",
            )
            sys.exit(EXIT_CONFIG)
        return path

    files = find_pipeline_files()
    if not files:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", f"  {DEFAULT_PIPELINE}", "  *_pipeline.py"],
            suggestion=f"Create {DEFAULT_PIPELINE} or pass --pipeline explicitly.",
        )
        sys.exit(EXIT_CONFIG)
    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {f}" for f in files],
            suggestion="stageline run --pipeline <file>",
        )
        sys.exit(EXIT_CONFIG)
    return files[0]


def _load(pipeline_arg: str | None) -> Pipeline:
    path = discover_pipeline(pipeline_arg)
    try:
        return load_pipeline(path)
    except PipelineError as e:
        get_console().print_pipeline_error("Invalid pipeline", e)
        sys.exit(EXIT_CONFIG)
    except Exception as e:
        # the pipeline file itself raised (syntax error, bad import, ...)
        get_console().print_error("Could not load pipeline", f"{path}: {type(e).__name__}: {e}")
        if get_console().debug:
            get_console().print_exception(e)
        sys.exit(EXIT_CONFIG)


def _context(pipe: Pipeline, assignments: tuple, build_number: Optional[int], use_git: bool):
    defaults = git_facts() if use_git else {}
    defaults.update(pipe.environment)
    try:
        overrides = parse_assignments(assignments)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--set")
    return build_context(defaults, overrides, required=pipe.required, build_number=build_number)


def _notifier(
    pipe: Pipeline,
    settings: Settings,
    emails: tuple,
    webhooks: tuple,
    home: Path,
    records: bool,
) -> Notifier:
    console = get_console()
    recipients: List[str] = list(pipe.notify.recipients if pipe.notify else ()) + list(emails)
    hooks: List[str] = list(pipe.notify.webhooks if pipe.notify else ()) + list(webhooks)

    transports = []
    if recipients:
        if settings.smtp_host:
            transports.append(EmailTransport.from_settings(settings))
        else:
            console.print_info("Email recipients configured but STAGELINE_SMTP_HOST is not set; email disabled")
    transports.extend(WebhookTransport(url) for url in hooks)

    if settings.log_url:
        log_ref = settings.log_url
    elif records:
        log_ref = str((home / "runs").resolve()) + "/{run_id}"
    else:
        log_ref = None

    kwargs = {"subject": pipe.notify.subject} if pipe.notify else {}
    return Notifier(
        transports,
        recipients,
        log_reference=log_ref,
        attachments=pipe.attachments,
        **kwargs,
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """stageline: sequential CI/CD pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help=f"Pipeline file (defaults to {DEFAULT_PIPELINE} if present)")
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Override a context variable")
@click.option("--secret", "secrets", multiple=True, metavar="ID=ENV|ID=USERENV:PASSENV", help="Register a credential read from the environment")
@click.option("--build-number", type=int, default=None, help="Use this build number instead of allocating one")
@click.option("--timeout", type=float, default=None, help="Default per-action timeout in seconds")
@click.option("--home", default=None, help="State directory for run records (default: $STAGELINE_HOME or .stageline)")
@click.option("--workspace", default=".", show_default=True, help="Working directory for actions")
@click.option("--notify-email", "emails", multiple=True, help="Add an email recipient")
@click.option("--notify-webhook", "webhooks", multiple=True, help="POST the run summary to this URL")
@click.option("--records/--no-records", default=True, show_default=True, help="Write run records and stage logs")
@click.option("--git/--no-git", "use_git", default=True, show_default=True, help="Default BRANCH_NAME/GIT_COMMIT from git")
@click.option("--unstable-exit-code", type=int, default=0, show_default=True, help="Exit code when the run is UNSTABLE")
@click.pass_context
def run(ctx, pipeline_arg, assignments, secrets, build_number, timeout, home, workspace,
        emails, webhooks, records, use_git, unstable_exit_code):
    """Run a pipeline."""
    console = get_console()
    settings = load_settings()
    home_dir = Path(home or settings.home)

    pipe = _load(pipeline_arg)

    try:
        if build_number is None and records:
            build_number = BuildCounter(home_dir).allocate()
        context = _context(pipe, assignments, build_number, use_git)
        credentials = CredentialStore.from_env(parse_secret_specs(secrets))
    except UndefinedVariable as e:
        console.print_pipeline_error(
            "Pre-flight check failed",
            e,
            suggestion=f"Define it in the pipeline environment or pass --set {e.key}=...",
        )
        sys.exit(EXIT_CONFIG)
    except ValueError as e:
        console.print_error("Invalid option", str(e))
        sys.exit(EXIT_CONFIG)

    executor = PipelineExecutor(
        CommandRunner(max_output=settings.max_output),
        credentials,
        notifier=_notifier(pipe, settings, emails, webhooks, home_dir, records),
        console=console,
        recorder=RunRecorder(home_dir) if records else None,
        workspace=workspace,
        default_timeout=timeout if timeout is not None else settings.default_timeout,
    )

    cancel = CancelToken()

    def _on_signal(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling run...")
        cancel.cancel(f"signal {signum}")
        # a second signal falls through to the default handler
        signal.signal(signum, signal.SIG_DFL)

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = executor.execute(pipe, context, build_number=build_number, cancel=cancel)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    console.print_results(result)

    if result.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    if result.error is not None:
        sys.exit(EXIT_CONFIG)
    if result.status is StageStatus.FAILED:
        sys.exit(EXIT_FAILED)
    if result.status is StageStatus.UNSTABLE:
        sys.exit(unstable_exit_code)
    sys.exit(EXIT_OK)


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help=f"Pipeline file (defaults to {DEFAULT_PIPELINE} if present)")
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Override a context variable")
@click.option("--git/--no-git", "use_git", default=True, show_default=True, help="Default BRANCH_NAME/GIT_COMMIT from git")
def plan(pipeline_arg, assignments, use_git):
    """Show which stages would run, without running anything."""
    console = get_console()
    pipe = _load(pipeline_arg)
    try:
        context = _context(pipe, assignments, None, use_git)
    except UndefinedVariable as e:
        console.print_pipeline_error("Pre-flight check failed", e)
        sys.exit(EXIT_CONFIG)

    console.print_header(f"Plan: {pipe.name}")
    for s in pipe.stages:
        try:
            runs = bool(s.guard(context))
            reason = s.guard.describe()
        except Exception as e:
            runs, reason = False, f"guard error: {e}"
        policy = ", degrade on failure" if s.on_failure is FailurePolicy.CONTINUE_DEGRADED else ""
        console.print_plan_stage(s.name, runs, f"{reason}{policy}, {len(s.actions)} action(s)")


def main():
    cli()


if __name__ == "__main__":
    main()
