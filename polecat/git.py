"""
Git-backed collaborators: cleanliness probe and worktree creation.

Each polecat is a git worktree of its rig's repository:

    <rigs_root>/<rig>/repo               source repository
    <rigs_root>/<rig>/polecats/<name>    worktree on branch polecat/<name>
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from polecat.exceptions import SandboxCreationError
from polecat.models import Cleanliness, Sandbox, SandboxState, utc_now

logger = logging.getLogger(__name__)

NAME_POOL: Sequence[str] = (
    "furiosa",
    "nux",
    "slit",
    "rictus",
    "capable",
    "toast",
    "dag",
    "cheedo",
    "angharad",
    "ace",
    "morsov",
    "keeper",
)


def git_cleanliness(clone_path: str, timeout: float = 10.0) -> Cleanliness:
    """
    Classify a working tree from `git status --porcelain`.

    Empty output is clean, any output is dirty, and a git failure (missing
    path, not a repository, timeout) is unknown.
    """
    try:
        proc = subprocess.run(
            ["git", "-C", clone_path, "status", "--porcelain"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("git status failed in %s: %s", clone_path, e)
        return Cleanliness.UNKNOWN
    if proc.returncode != 0:
        return Cleanliness.UNKNOWN
    return Cleanliness.DIRTY if proc.stdout.strip() else Cleanliness.CLEAN


def probe_sandbox(sandbox: Sandbox) -> Cleanliness:
    return git_cleanliness(sandbox.clone_path)


def pick_name(taken: Sequence[str], pool: Sequence[str] = NAME_POOL) -> str:
    """First pool name not taken; numbered suffixes once the pool runs out."""
    used = set(taken)
    for name in pool:
        if name not in used:
            return name
    round_ = 2
    while True:
        for name in pool:
            candidate = f"{name}-{round_}"
            if candidate not in used:
                return candidate
        round_ += 1


class GitWorktreeCreator:
    """
    Creates fresh polecats as git worktrees.

    Args:
        rigs_root: Directory containing one subdirectory per rig.
        registry: Used to avoid names already held by polecats, live or destroyed.
        base_ref: Ref new worktree branches start from.
    """

    def __init__(
        self,
        rigs_root: Path,
        registry,
        base_ref: str = "HEAD",
        name_pool: Optional[Sequence[str]] = None,
    ) -> None:
        self.rigs_root = Path(rigs_root)
        self._registry = registry
        self._base_ref = base_ref
        self._pool = name_pool or NAME_POOL

    def repo_path(self, rig: str) -> Path:
        return self.rigs_root / rig / "repo"

    def polecats_path(self, rig: str) -> Path:
        return self.rigs_root / rig / "polecats"

    def _taken_names(self, rig: str) -> List[str]:
        # Destroy only retires the record; the old worktree and its branch
        # stay on disk, so destroyed names and leftover directories are taken.
        taken = [s.name for s in self._registry.list(rig, include_destroyed=True)]
        root = self.polecats_path(rig)
        if root.is_dir():
            taken.extend(entry.name for entry in root.iterdir())
        return taken

    def _prune(self, repo: Path) -> None:
        proc = subprocess.run(
            ["git", "-C", str(repo), "worktree", "prune"], capture_output=True, text=True
        )
        if proc.returncode != 0:
            logger.debug("git worktree prune failed in %s: %s", repo, proc.stderr.strip())

    def create_fresh(self, rig: str) -> Sandbox:
        repo = self.repo_path(rig)
        if not repo.is_dir():
            raise SandboxCreationError(
                f"rig {rig!r} has no repository at {repo}",
                rig=rig,
                code="rig_repo_missing",
            )
        name = pick_name(self._taken_names(rig), self._pool)
        path = self.polecats_path(rig) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        self._prune(repo)

        cmd = [
            "git",
            "-C",
            str(repo),
            "worktree",
            "add",
            "-B",
            f"polecat/{name}",
            str(path),
            self._base_ref,
        ]
        proc = subprocess.run(cmd, capture_output=True, text=True)
        if proc.returncode != 0:
            raise SandboxCreationError(
                f"git worktree add failed for {rig}/{name}: {proc.stderr.strip()}",
                rig=rig,
                sandbox_name=name,
                code="worktree_add_failed",
            )
        logger.info("Created worktree %s for polecat %s/%s", path, rig, name)
        return Sandbox(
            name=name,
            rig=rig,
            clone_path=str(path),
            created_at=utc_now(),
            state=SandboxState.IDLE,
            cleanliness=Cleanliness.CLEAN,
        )
