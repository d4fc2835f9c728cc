"""Git commit and reset operations used for story checkpoints.

`keep` arguments are worktree-relative paths that staging and cleaning
leave alone (the orchestrator's own state files).
"""

from pathlib import Path

from task_orchestrator.git.runner import run_git, GitResult


def stage_all(worktree: Path, keep: list[str] = ()) -> GitResult:
    """Stage all changes (new, modified, deleted) outside keep."""
    args = ["add", "-A"]
    if keep:
        args += ["--", "."] + [f":(exclude){path}" for path in keep]
    return run_git(args, worktree)


def commit(worktree: Path, message: str, allow_empty: bool = False) -> GitResult:
    """Create a commit with the given message."""
    args = ["commit", "-m", message]
    if allow_empty:
        args.append("--allow-empty")
    return run_git(args, worktree)


def reset_hard(worktree: Path, sha: str, keep: list[str] = ()) -> GitResult:
    """Move HEAD and the worktree to sha, then drop untracked files outside keep."""
    reset = run_git(["reset", "--hard", sha], worktree)
    if not reset.success:
        return reset
    clean = ["clean", "-fd"]
    for path in keep:
        clean += ["-e", f"/{path}"]
    return run_git(clean, worktree)
