# records.py
from __future__ import annotations

import json
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Optional

from .model import Run, StageResult

# ---------------------------------------------------------------------
# Layout under the stageline home (default .stageline/):
#
#   builds/<n>                       one empty file per allocated build number
#   runs/<run_id>/run.json           final Run record
#   runs/<run_id>/<NN>-<stage>.log   masked output of each executed stage
#
# Every file is created with mode "x": records are write-once and a second
# write for the same run is an error, never an overwrite.
# ---------------------------------------------------------------------

_SAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe(name: str) -> str:
    return _SAFE.sub("-", name).strip("-") or "unnamed"


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def new_run_id(pipeline: str, build_number: Optional[int] = None) -> str:
    build = f"{build_number}-" if build_number is not None else ""
    return f"{_safe(pipeline)}-{build}{uuid.uuid4().hex[:8]}"


class BuildCounter:
    """
    Allocates build numbers atomically at run start.

    The next number is claimed by exclusively creating builds/<n>; a
    competing process that loses the race moves on to n+1. The in-process
    lock only saves threads from retrying against each other.
    """

    _lock = threading.Lock()

    def __init__(self, root: str | Path):
        self.dir = Path(root) / "builds"

    def _highest(self) -> int:
        nums = [int(p.name) for p in self.dir.iterdir() if p.name.isdigit()] if self.dir.exists() else []
        return max(nums, default=0)

    def allocate(self) -> int:
        with self._lock:
            self.dir.mkdir(parents=True, exist_ok=True)
            n = self._highest() + 1
            while True:
                try:
                    fd = os.open(self.dir / str(n), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                except FileExistsError:
                    n += 1
                    continue
                os.close(fd)
                return n


class RunRecorder:
    """Writes the stage logs and the final run record for each run."""

    def __init__(self, root: str | Path):
        self.root = Path(root) / "runs"

    def run_dir(self, run_id: str) -> Path:
        return self.root / _safe(run_id)

    def stage_log(self, run: Run, index: int, result: StageResult) -> Optional[Path]:
        if not result.actions:
            return None
        d = self.run_dir(run.run_id)
        d.mkdir(parents=True, exist_ok=True)
        path = d / f"{index:02d}-{_safe(result.stage)}.log"
        with path.open("x", encoding="utf-8") as f:
            for a in result.actions:
                f.write(f"==> {a.action} (exit={a.exit_code})\n")
                if a.output:
                    f.write(a.output.rstrip("\n") + "\n")
                if a.error is not None:
                    f.write(f"!! {a.error.kind}: {a.error.message}\n")
        return path

    def write_run(self, run: Run) -> Path:
        d = self.run_dir(run.run_id)
        d.mkdir(parents=True, exist_ok=True)
        path = d / "run.json"
        with path.open("x", encoding="utf-8") as f:
            f.write(_json_dumps_stable(run.to_dict()))
            f.write("\n")
        return path

    def load_run(self, run_id: str) -> dict:
        return json.loads((self.run_dir(run_id) / "run.json").read_text(encoding="utf-8"))
