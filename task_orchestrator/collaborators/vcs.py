"""Git-backed version control collaborator."""

import logging
from pathlib import Path

from task_orchestrator.errors import VersionControlError
from task_orchestrator.git import run_git_checked, stage_all, commit, reset_hard

logger = logging.getLogger(__name__)


class GitVersionControl:
    """Checkpoints are commits; revert is a hard reset plus clean.

    Paths in `keep` (the workflow document, metrics, checkpoint markers)
    are never committed and survive a revert byte for byte, so a rollback
    cannot rewind the audit trail that recorded it.
    """

    def __init__(self, worktree: Path, keep: list[Path] = ()):
        self.worktree = Path(worktree).resolve()
        self.keep = []
        for path in keep:
            path = Path(path).resolve()
            try:
                self.keep.append(path.relative_to(self.worktree).as_posix())
            except ValueError:
                continue  # outside the worktree, git never sees it

    def checkpoint(self, label: str) -> str:
        staged = stage_all(self.worktree, self.keep)
        if not staged.success:
            raise VersionControlError(f"git add failed: {staged.error}")

        result = commit(self.worktree, f"checkpoint: {label}", allow_empty=True)
        if not result.success:
            raise VersionControlError(f"git commit failed: {result.error}")

        sha = run_git_checked(["rev-parse", "HEAD"], self.worktree)
        logger.info(f"[VCS] checkpoint {label} at {sha[:12]}")
        return sha

    def revert(self, ref: str) -> None:
        if not ref:
            raise VersionControlError("No checkpoint reference to revert to")
        saved = self._snapshot()
        result = reset_hard(self.worktree, ref, self.keep)
        self._restore(saved)
        if not result.success:
            raise VersionControlError(f"git reset to {ref[:12]} failed: {result.error}")
        logger.info(f"[VCS] reverted to {ref[:12]}")

    def _snapshot(self) -> dict[Path, bytes]:
        """Contents of kept files, in case the repository tracks some of them."""
        saved = {}
        for rel in self.keep:
            path = self.worktree / rel
            files = [p for p in path.rglob("*") if p.is_file()] if path.is_dir() else [path]
            for f in files:
                if f.is_file():
                    saved[f] = f.read_bytes()
        return saved

    def _restore(self, saved: dict[Path, bytes]) -> None:
        for path, data in saved.items():
            if not path.is_file() or path.read_bytes() != data:
                logger.debug(f"[VCS] restoring {path}")
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
