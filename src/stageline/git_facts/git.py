# git.py
# Small, focused wrapper around the Git CLI.
# Used to default BRANCH_NAME / GIT_COMMIT in the run context, so guards like
# on_branch("main") work without the caller passing --set BRANCH_NAME=...

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (e.g. not a repo)
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Return the checked-out branch name, or None on a detached HEAD.

    `git rev-parse --abbrev-ref HEAD` prints "HEAD" when detached, which is
    what CI checkouts of a specific commit usually look like.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def git_facts(cwd: Optional[str] = None) -> Dict[str, str]:
    """
    Best-effort BRANCH_NAME / GIT_COMMIT / GIT_URL for the run context.

    Anything git cannot tell us (not a repo, no remote, git missing) is left out.
    """
    facts: Dict[str, str] = {}
    try:
        facts["GIT_COMMIT"] = head_sha(cwd)
        branch = current_branch(cwd)
        if branch:
            facts["BRANCH_NAME"] = branch
    except (subprocess.CalledProcessError, FileNotFoundError):
        return facts
    try:
        facts["GIT_URL"] = remote_url(cwd=cwd)
    except subprocess.CalledProcessError:
        pass
    return facts
