"""Git plumbing behind the version control collaborator.

run_git and the commit helpers return a GitResult; callers check
.success. run_git_checked raises VersionControlError instead.
"""

from task_orchestrator.git.runner import run_git, run_git_checked, GitResult
from task_orchestrator.git.commit import stage_all, commit, reset_hard

__all__ = [
    "run_git",
    "run_git_checked",
    "GitResult",
    "stage_all",
    "commit",
    "reset_hard",
]
