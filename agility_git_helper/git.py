"""Git helper utilities for agility-git-helper."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import GitError, NotFoundError

logger = logging.getLogger("agility_git_helper.git")

INITIAL_COMMIT_MESSAGE = "chore: initial commit"
ORPHAN_COMMIT_MESSAGE = "Initial commit on orphan branch"


class GitRepository:
    """The branch primitives of one working tree, driven through ``git``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"GitRepository({str(self.root)!r})"

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        logger.debug("git %s (in %s)", " ".join(args), self.root)
        result = subprocess.run(cmd, cwd=self.root, capture_output=True, text=True)
        if check and result.returncode != 0:
            stderr = result.stderr.strip() or result.stdout.strip()
            raise GitError(f"git {args[0]} failed:\n{stderr}")
        return result

    @property
    def refs(self) -> list[str]:
        """Local branch names."""
        result = self._run("for-each-ref", "--format=%(refname:short)", "refs/heads/")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    @property
    def head_commit(self) -> str | None:
        """Commit HEAD points at, None in a repository with no commits yet."""
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    @property
    def current_branch(self) -> str | None:
        result = self._run("symbolic-ref", "--short", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def branch_exists(self, name: str) -> bool:
        return name in self.refs

    def checkout(self, name: str) -> None:
        self._run("checkout", name)
        logger.info("Checked out %s", name)

    def create_branch(self, name: str, checkout: bool = True) -> None:
        if checkout:
            self._run("checkout", "-b", name)
        else:
            self._run("branch", name)
        logger.info("Created branch %s", name)

    def delete_branch(self, name: str, force: bool = False) -> None:
        self._run("branch", "-D" if force else "-d", name)
        logger.info("Deleted branch %s", name)

    def create_initial_commit(self, message: str = INITIAL_COMMIT_MESSAGE) -> None:
        """Stage everything and commit, for a repository with no history."""
        self._run("add", "-A")
        self._run("commit", "-m", message)
        logger.info("Created initial commit in %s", self.root)

    def create_orphan_branch(self, name: str, message: str = ORPHAN_COMMIT_MESSAGE) -> None:
        """Start *name* with no parents and an empty commit."""
        self._run("checkout", "--orphan", name)
        self._run("reset", "--hard")
        self._run("commit", "--allow-empty", "-m", message)
        logger.info("Created orphan branch %s", name)


def find_repository(path: str | Path | None = None) -> GitRepository:
    """Return the repository containing *path* (default: the working directory)."""
    cwd = Path(path) if path else Path.cwd()
    result = subprocess.run(
        ["git", "rev-parse", "--show-toplevel"],
        cwd=cwd, capture_output=True, text=True,
    )
    if result.returncode != 0:
        raise NotFoundError("Git repository", str(cwd))
    return GitRepository(result.stdout.strip())


def copy_to_clipboard(text: str) -> bool:
    """Copy text to system clipboard. Returns True on success."""
    for cmd in (["pbcopy"], ["wl-copy"], ["xclip", "-selection", "clipboard"]):
        try:
            result = subprocess.run(cmd, input=text.encode(), capture_output=True)
            if result.returncode == 0:
                return True
        except FileNotFoundError:
            continue
    return False
