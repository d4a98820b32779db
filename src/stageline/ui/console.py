"""Console output formatting utilities for stageline."""

from __future__ import annotations

import sys
import traceback
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..errors import PipelineError
    from ..model import Run, StageResult


class Console:
    """Operator-facing progress and error output of a run."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Args:
            debug: show error details and tracebacks
            quiet: suppress progress lines; errors and final results still print
        """
        self.debug = debug
        self.quiet = quiet

    def _out(self, text: str = "") -> None:
        if not self.quiet:
            print(text)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        run_id: str,
        stage_count: int,
        build_number: Optional[int] = None,
    ) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Pipeline: {pipeline}")
        self._out(f"Run ID: {run_id}")
        if build_number is not None:
            self._out(f"Build: #{build_number}")
        self._out(f"Stages: {stage_count}")
        self._out()

    def print_stage_start(self, name: str) -> None:
        self._out(f"\nSTAGE STARTED: {name}")

    def print_action(self, description: str) -> None:
        self._out(f"ACTION: {description}")

    def print_stage_skipped(self, name: str, reason: str) -> None:
        self._out(f"\nSTAGE SKIPPED: {name} ({reason})")

    def print_stage_finished(self, result: "StageResult") -> None:
        """Print the terminal status of a stage, with the failing output tail."""
        self._out(f"STATUS: {result.status.value}")
        if result.error is None:
            return
        if result.exit_code is not None:
            self._out(f"Exit code: {result.exit_code}")
        hint = result.error.details.get("hint")
        if hint:
            self._out(f"Hint: {hint}")
        if self.debug:
            self._out(f"Error details: {result.error}")
        else:
            self._out(f"Error: {result.error.message}")
        if result.output:
            tail = result.output.splitlines()[-20:]
            self._out("Output (last lines):")
            for line in tail:
                self._out(f"  {line}")

    def print_plan_stage(self, name: str, runs: bool, reason: str) -> None:
        """Print a stage in a dry-run plan."""
        mark = "run " if runs else "skip"
        print(f"  [{mark}] {name} ({reason})")

    def print_results(self, run: "Run") -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for result in run.results:
            print(f"  {result.stage}: {result.status.value.upper()}")
        print(f"\nOverall: {run.status.value.upper()}")
        if run.cancelled:
            print("Run was cancelled")
        if run.error is not None:
            print(f"Run aborted: {run.error.message}")

    def print_notification(self, subject: str, body: str) -> None:
        print(f"\nNOTIFICATION: {subject}")
        print(body)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Report a problem that stops the command (bad pipeline file, failed
        pre-flight check, unusable option). Always shown, even when quiet.

        Args:
            title: one-line headline
            message: what went wrong
            details: extra lines, indented under the message
            suggestion: how to fix it
        """
        lines = [f"\nERROR: {title}", message]
        lines += [f"  {d}" for d in details or ()]
        if suggestion:
            lines.append(f"\n{suggestion}")
        print("\n".join(lines), file=sys.stderr)

    def print_pipeline_error(self, title: str, error: "PipelineError", suggestion: Optional[str] = None) -> None:
        """print_error for a PipelineError: kind, location and details become detail lines."""
        where = [f"{k}={v}" for k, v in (("stage", error.stage), ("action", error.action)) if v]
        details = where + [f"{k}={v}" for k, v in error.details.items()]
        self.print_error(title, f"{error.kind}: {error.message}", details=details, suggestion=suggestion)

    def print_exception(self, exc: BaseException) -> None:
        """Unexpected failure inside stageline itself; traceback only with --debug."""
        if self.debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            print(f"Internal error ({type(exc).__name__}): {exc}", file=sys.stderr)
            print("Re-run with --debug for the traceback.", file=sys.stderr)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        if self.debug:
            print(f"[debug] {message}", file=sys.stderr)


_console: Optional[Console] = None


def get_console() -> Console:
    """The process-wide console; the CLI replaces it with set_console()."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
