"""Run git in a worktree.

All git calls go through run_git so timeouts and error text are handled in
one place. Credential prompts are disabled: a checkpoint or revert must not
hang waiting on a terminal.
"""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from task_orchestrator.errors import VersionControlError

GIT_TIMEOUT = 30


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def error(self) -> str:
        """stderr, else stdout, else the exit code."""
        return (self.stderr or self.stdout).strip() or f"exit code {self.returncode}"


def run_git(args: list[str], cwd: Path, timeout: int = GIT_TIMEOUT) -> GitResult:
    """Run `git -C cwd <args>`. A timeout is reported in the result, not raised."""
    cmd = ["git", "-C", str(cwd)] + args
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, env=env)
    except subprocess.TimeoutExpired:
        return GitResult(-1, "", f"git {' '.join(args[:1])} timed out after {timeout}s", timed_out=True)
    return GitResult(proc.returncode, proc.stdout, proc.stderr)


def run_git_checked(args: list[str], cwd: Path, timeout: int = GIT_TIMEOUT) -> str:
    """Stripped stdout of a git command.

    Raises:
        VersionControlError: naming the command and git's error output
    """
    result = run_git(args, cwd, timeout)
    if not result.success:
        raise VersionControlError(f"git {' '.join(args)} failed: {result.error}")
    return result.stdout.strip()
