"""
Configuration loaders for the task orchestrator.

Workspace settings come from workflow.env at the workspace root. Every
path setting is resolved relative to the workspace.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from task_orchestrator.lib import envparse
from task_orchestrator.lib.constants import DEFAULT_STALENESS_DAYS, DEFAULT_STATE_DIR

logger = logging.getLogger(__name__)

SETTINGS_FILE = "workflow.env"
COLLABORATORS_FILE = "collaborators.yaml"

DEFAULT_PLANNING_ALLOWED_GLOBS = [f"{DEFAULT_STATE_DIR}/*", "docs/*", "*.md"]


@dataclass
class WorkflowSettings:
    """Workspace-level settings from workflow.env."""
    workspace: Path
    state_dir: Path
    document_path: Path
    metrics_path: Path
    learnings_path: Path
    collaborators_path: Path
    staleness_days: int = DEFAULT_STALENESS_DAYS
    story_lock_timeout: int = 0
    planning_allowed_globs: list[str] = field(
        default_factory=lambda: list(DEFAULT_PLANNING_ALLOWED_GLOBS)
    )

    @property
    def checkpoints_dir(self) -> Path:
        return self.state_dir / "checkpoints"

    @property
    def session_path(self) -> Path:
        return self.state_dir / "session.json"

    @property
    def locks_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def state_paths(self) -> list[Path]:
        """Orchestrator bookkeeping that version control must never rewind."""
        return [self.state_dir, self.document_path, self.metrics_path, self.learnings_path]


def _resolve(workspace: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else workspace / path


def load_settings(workspace: Path) -> WorkflowSettings:
    """Load workflow.env from workspace and return WorkflowSettings.

    A missing workflow.env yields defaults.
    """
    workspace = Path(workspace).resolve()
    settings_path = workspace / SETTINGS_FILE

    env: dict[str, str] = {}
    if settings_path.exists():
        env = envparse.load_env(settings_path)
    else:
        logger.debug(f"No {SETTINGS_FILE} in {workspace}, using defaults")

    state_dir = _resolve(workspace, env.get("STATE_DIR", DEFAULT_STATE_DIR))
    staleness_days = envparse.get_int(env, "STALENESS_DAYS", DEFAULT_STALENESS_DAYS)
    if staleness_days < 0:
        raise ValueError(f"STALENESS_DAYS must be >= 0, got {staleness_days}")

    return WorkflowSettings(
        workspace=workspace,
        state_dir=state_dir,
        document_path=_resolve(workspace, env.get("DOCUMENT_PATH", str(state_dir / "workflow.json"))),
        metrics_path=_resolve(workspace, env.get("METRICS_PATH", str(state_dir / "metrics.json"))),
        learnings_path=_resolve(workspace, env.get("LEARNINGS_PATH", str(state_dir / "LEARNINGS.md"))),
        collaborators_path=_resolve(workspace, env.get("COLLABORATORS_CONFIG", COLLABORATORS_FILE)),
        staleness_days=staleness_days,
        story_lock_timeout=envparse.get_int(env, "STORY_LOCK_TIMEOUT", 0),
        planning_allowed_globs=envparse.get_list(
            env, "PLANNING_ALLOWED_GLOBS", DEFAULT_PLANNING_ALLOWED_GLOBS
        ),
    )
