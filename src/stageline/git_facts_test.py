import shutil
import subprocess

import pytest

from stageline.git_facts.git import current_branch, git_facts
from stageline.settings import load_settings

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@needs_git
def test_outside_a_repository_nothing_is_reported(tmp_path):
    assert git_facts(str(tmp_path)) == {}


@needs_git
def test_facts_from_a_fresh_repository(tmp_path):
    def git(*args):
        subprocess.run(["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", *args],
                       cwd=tmp_path, check=True, capture_output=True)

    git("init", "-b", "main")
    (tmp_path / "README").write_text("hi\n")
    git("add", "README")
    git("commit", "-m", "initial")

    facts = git_facts(str(tmp_path))

    assert facts["BRANCH_NAME"] == "main"
    assert len(facts["GIT_COMMIT"]) == 40
    assert "GIT_URL" not in facts

    git("checkout", "--detach")
    assert current_branch(str(tmp_path)) is None


def test_settings_defaults_and_overrides():
    assert load_settings({}).home == ".stageline"
    assert load_settings({}).default_timeout is None

    s = load_settings({"STAGELINE_HOME": "/var/lib/stageline", "STAGELINE_DEFAULT_TIMEOUT": "90", "STAGELINE_MAX_OUTPUT": "1024"})

    assert (s.home, s.default_timeout, s.max_output) == ("/var/lib/stageline", 90.0, 1024)
