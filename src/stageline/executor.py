# executor.py
from __future__ import annotations

import logging
import runpy
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .actions.base import Action, ActionSession
from .command import CancelToken, CommandRunner, base_environment
from .context import EnvironmentContext
from .credentials import CredentialStore, Masker, ScopedSecret
from .errors import (
    CONFIGURATION_ERRORS,
    ActionFailed,
    Cancelled,
    GuardEvaluationError,
    PipelineDefinitionError,
    PipelineError,
)
from .model import (
    ActionResult,
    FailurePolicy,
    Pipeline,
    Run,
    Stage,
    StageResult,
    StageStatus,
    utcnow,
)
from .notify import Notifier
from .records import RunRecorder, new_run_id
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Pipeline loading (local python file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - build_pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise PipelineDefinitionError(f"Pipeline file not found: {p}")
    if p.suffix != ".py":
        raise PipelineDefinitionError(f"Pipeline must be a .py file, got: {p.name}")

    globals_dict = runpy.run_path(str(p), run_name=f"stageline_pipeline_{p.stem}")

    if callable(globals_dict.get("build_pipeline")):
        pipeline = globals_dict["build_pipeline"]()
    else:
        pipeline = globals_dict.get("PIPELINE")

    if not isinstance(pipeline, Pipeline):
        raise PipelineDefinitionError(
            "Pipeline file must return/define a Pipeline. "
            "Define build_pipeline() -> Pipeline or PIPELINE = pipeline(...).",
            details={"file": str(p)},
        )
    return pipeline


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------

class PipelineExecutor:
    """
    Runs the stages of a pipeline strictly in order, one at a time.

    Stage failures never unwind the executor: they are recorded on the Run
    and the ABORT / CONTINUE_DEGRADED policy decides what happens next.
    Configuration errors (undefined variable, unknown credential, raising
    guard) stop the run. Whatever happens, the run is finalized and the
    notifier is called exactly once.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        credentials: Optional[CredentialStore] = None,
        *,
        notifier: Optional[Notifier] = None,
        console: Optional[Console] = None,
        recorder: Optional[RunRecorder] = None,
        workspace: str | Path = ".",
        default_timeout: Optional[float] = None,
    ):
        self.runner = runner or CommandRunner()
        self.credentials = credentials or CredentialStore()
        self.notifier = notifier
        self.console = console or get_console()
        self.recorder = recorder
        self.workspace = Path(workspace).resolve()
        self.default_timeout = default_timeout

    # ---- public ----
    def execute(
        self,
        pipeline: Pipeline,
        context: EnvironmentContext,
        *,
        run_id: Optional[str] = None,
        build_number: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Run:
        cancel = cancel or CancelToken()
        run = Run(run_id or new_run_id(pipeline.name, build_number), pipeline.name, build_number)
        self.console.print_run_started(
            pipeline=pipeline.name,
            run_id=run.run_id,
            stage_count=len(pipeline.stages),
            build_number=build_number,
        )
        try:
            self._run_stages(pipeline.stages, context, run, cancel)
        finally:
            run.finalize()
            self._write_record(run)
            self._notify(run)
        return run

    # ---- stages ----
    def _run_stages(
        self,
        stages: Sequence[Stage],
        context: EnvironmentContext,
        run: Run,
        cancel: CancelToken,
    ) -> None:
        for i, stage in enumerate(stages):
            rest = stages[i + 1:]

            if cancel.cancelled:
                run.cancelled = True
                self._skip_all(run, stages[i:], "run cancelled")
                return

            try:
                should_run = self._evaluate_guard(stage, context)
            except GuardEvaluationError as e:
                run.error = e
                self._record(run, i, self._failed(stage, e, utcnow()))
                self._skip_all(run, rest, "run aborted")
                return

            if not should_run:
                self._record(run, i, StageResult.skipped(stage.name, f"guard: {stage.guard.describe()}"))
                continue

            result = self._run_stage(stage, context, run, cancel)
            self._record(run, i, result)

            if result.status is not StageStatus.FAILED:
                continue
            if isinstance(result.error, Cancelled):
                run.cancelled = True
                self._skip_all(run, rest, "run cancelled")
            elif run.error is not None:
                self._skip_all(run, rest, "run aborted")
            else:
                self._skip_all(run, rest, f"stage {stage.name!r} failed")
            return

    def _evaluate_guard(self, stage: Stage, context: EnvironmentContext) -> bool:
        try:
            return bool(stage.guard(context))
        except Exception as e:
            raise GuardEvaluationError(
                f"guard of stage {stage.name!r} raised {type(e).__name__}: {e}",
                stage=stage.name,
                details={"guard": stage.guard.describe()},
            ) from e

    def _run_stage(
        self,
        stage: Stage,
        context: EnvironmentContext,
        run: Run,
        cancel: CancelToken,
    ) -> StageResult:
        started = utcnow()
        self.console.print_stage_start(stage.name)

        results: List[ActionResult] = []
        error: Optional[PipelineError] = None
        degraded: List[str] = []
        try:
            stage_ctx = context.with_overrides(stage.env)
            for action in stage.actions:
                if cancel.cancelled:
                    error = Cancelled(cancel.reason or "abort requested", stage=stage.name, action=action.name)
                    break
                self.console.print_action(action.describe())
                ar = self._run_action(stage, action, stage_ctx, cancel)
                results.append(ar)
                if ar.ok:
                    continue
                if ar.degraded:
                    degraded.append(ar.action)
                    continue
                error = ar.error
                break
        except CONFIGURATION_ERRORS as e:
            error = e.at(stage=stage.name)
            run.error = error

        if error is None:
            status = StageStatus.UNSTABLE if degraded else StageStatus.SUCCEEDED
            reason = f"advisory failure in {', '.join(degraded)}" if degraded else ""
        elif (
            stage.on_failure is FailurePolicy.CONTINUE_DEGRADED
            and run.error is None
            and not isinstance(error, Cancelled)
        ):
            status = StageStatus.UNSTABLE
            reason = f"degraded: {error.kind}"
        else:
            status = StageStatus.FAILED
            reason = ""

        result = StageResult(
            stage=stage.name,
            status=status,
            output="\n".join(a.output.rstrip("\n") for a in results if a.output),
            exit_code=results[-1].exit_code if results else None,
            error=error,
            actions=tuple(results),
            reason=reason,
            started_at=started,
            finished_at=utcnow(),
        )
        self.console.print_stage_finished(result)
        return result

    # ---- actions ----
    def _run_action(
        self,
        stage: Stage,
        action: Action,
        stage_ctx: EnvironmentContext,
        cancel: CancelToken,
    ) -> ActionResult:
        masker = Masker()
        env = stage_ctx.as_env()
        with ExitStack() as scopes:
            secrets: Dict[str, ScopedSecret] = {}
            for cid in action.credential_ids():
                handle = scopes.enter_context(self.credentials.scoped(cid))
                secrets[cid] = handle
                masker.add(*handle.secrets())

            try:
                for binding in action.credentials:
                    env.update(binding.export(secrets[binding.credential_id]))
                session = ActionSession(
                    stage=stage.name,
                    context=stage_ctx,
                    runner=self.runner,
                    env=base_environment(env),
                    masker=masker,
                    workspace=self.workspace,
                    cancel=cancel,
                    timeout=_first(action.timeout, stage.timeout, self.default_timeout),
                    secrets=secrets,
                )
                result = action.execute(session)
            except CONFIGURATION_ERRORS:
                raise
            except PipelineError as e:
                e.at(stage=stage.name, action=action.name)
                result = ActionResult(action=action.name, ok=False, output=str(e), error=e)
            except Exception as e:
                logger.debug("action %s raised", action.name, exc_info=True)
                err = ActionFailed(
                    masker.mask(f"{type(e).__name__}: {e}"),
                    stage=stage.name,
                    action=action.name,
                    details={"exception": type(e).__name__},
                )
                result = ActionResult(action=action.name, ok=False, output=str(err), error=err)

            # whatever produced the output, nothing leaves the scope unmasked
            return replace(result, output=masker.mask(result.output))

    # ---- bookkeeping ----
    def _failed(self, stage: Stage, error: PipelineError, started) -> StageResult:
        return StageResult(
            stage=stage.name,
            status=StageStatus.FAILED,
            error=error,
            started_at=started,
            finished_at=utcnow(),
        )

    def _skip_all(self, run: Run, stages: Sequence[Stage], reason: str) -> None:
        for stage in stages:
            self._record(run, None, StageResult.skipped(stage.name, reason))

    def _record(self, run: Run, index: Optional[int], result: StageResult) -> None:
        run.record(result)
        if result.status is StageStatus.SKIPPED:
            self.console.print_stage_skipped(result.stage, result.reason)
        if self.recorder is not None and result.actions:
            try:
                self.recorder.stage_log(run, len(run.results) if index is None else index + 1, result)
            except OSError as e:
                logger.warning("could not write log for stage %s: %s", result.stage, e)

    def _write_record(self, run: Run) -> None:
        if self.recorder is None:
            return
        try:
            path = self.recorder.write_run(run)
            logger.debug("run record written to %s", path)
        except OSError as e:
            logger.warning("could not write run record for %s: %s", run.run_id, e)

    def _notify(self, run: Run) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(run)
        except Exception:
            logger.exception("notifier raised for run %s", run.run_id)


def _first(*values):
    for v in values:
        if v is not None:
            return v
    return None


def run_pipeline(
    pipeline: Pipeline,
    context: EnvironmentContext,
    *,
    runner: Optional[CommandRunner] = None,
    credentials: Optional[CredentialStore] = None,
    notifier: Optional[Notifier] = None,
    workspace: str | Path = ".",
    cancel: Optional[CancelToken] = None,
    build_number: Optional[int] = None,
) -> Run:
    executor = PipelineExecutor(runner, credentials, notifier=notifier, workspace=workspace)
    return executor.execute(pipeline, context, build_number=build_number, cancel=cancel)
