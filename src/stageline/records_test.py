from concurrent.futures import ThreadPoolExecutor

import pytest

from stageline.model import ActionResult, Run, StageResult, StageStatus
from stageline.records import BuildCounter, RunRecorder, new_run_id


def test_build_numbers_are_unique_under_concurrency(tmp_path):
    counter = BuildCounter(tmp_path)

    with ThreadPoolExecutor(max_workers=8) as pool:
        numbers = list(pool.map(lambda _: counter.allocate(), range(40)))

    assert sorted(numbers) == list(range(1, 41))


def test_build_numbers_survive_restarts(tmp_path):
    assert BuildCounter(tmp_path).allocate() == 1
    assert BuildCounter(tmp_path).allocate() == 2


def test_run_id_is_filesystem_safe():
    rid = new_run_id("my app/main", 3)

    assert rid.startswith("my-app-main-3-")
    assert new_run_id("app") != new_run_id("app")


def test_stage_log_contains_masked_output_and_is_write_once(tmp_path):
    recorder = RunRecorder(tmp_path)
    run = Run("r1", "app")
    result = StageResult(
        stage="build",
        status=StageStatus.SUCCEEDED,
        actions=(ActionResult(action="package", ok=True, exit_code=0, output="token=****\nBUILD SUCCESS\n"),),
    )

    path = recorder.stage_log(run, 1, result)

    assert path.name == "01-build.log"
    assert path.read_text() == "==> package (exit=0)\ntoken=****\nBUILD SUCCESS\n"
    with pytest.raises(FileExistsError):
        recorder.stage_log(run, 1, result)


def test_skipped_stage_has_no_log(tmp_path):
    assert RunRecorder(tmp_path).stage_log(Run("r1", "app"), 1, StageResult.skipped("deploy", "guard")) is None


def test_run_record_round_trip(tmp_path):
    recorder = RunRecorder(tmp_path)
    run = Run("r2", "app", 5)
    run.record(StageResult.skipped("deploy", "guard: never"))
    run.finalize()

    recorder.write_run(run)

    assert recorder.load_run("r2")["stages"][0]["reason"] == "guard: never"
