"""
Git Operations for Plugin Fetching.

This module wraps the git executable for fetching plugins from repositories.

Key features:
- Clone plugin repositories
- Checkout a branch, tag or commit
- Locate the enclosing repository of a local directory
"""

import re
import subprocess
from pathlib import Path

from graft.core.errors import GraftError

_GIT_URL_RE = re.compile(r"^(git\+|git://|ssh://|git@)|\.git(#.*)?$")


class GitError(GraftError):
    """Base exception for git-related errors."""

    pass


def is_git_url(url: str) -> bool:
    """Return True if a plugin target looks like a git repository URL."""
    return bool(_GIT_URL_RE.search(url))


def _run_git(args: list[str], cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git command not found. Please install git.") from e

    if result.returncode != 0:
        raise GitError(
            f"git {args[0]} failed: {(result.stderr or result.stdout).strip()}"
        )
    return result.stdout


def clone_plugin(repo_url: str, target_dir: Path, ref: str | None = None) -> None:
    """
    Clone a plugin repository.

    Args:
        repo_url: Git repository URL ("git+" prefix is stripped)
        target_dir: Target directory for clone
        ref: Optional branch, tag or commit to check out

    Raises:
        GitError: If clone or checkout fails
    """
    if repo_url.startswith("git+"):
        repo_url = repo_url[len("git+"):]

    target_dir.parent.mkdir(parents=True, exist_ok=True)
    _run_git(["clone", repo_url, str(target_dir)])

    if ref:
        checkout(target_dir, ref)


def checkout(repo_dir: Path, ref: str) -> None:
    """
    Checkout a branch, tag or commit.

    Raises:
        GitError: If checkout fails
    """
    _run_git(["checkout", ref], cwd=repo_dir)


def rev_parse_toplevel(path: Path) -> Path:
    """
    Return the root of the git repository containing a directory.

    Raises:
        GitError: If the directory is not inside a repository
    """
    return Path(_run_git(["rev-parse", "--show-toplevel"], cwd=path).strip())
