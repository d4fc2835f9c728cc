"""External collaborators: agents and tools the orchestrator drives."""

from task_orchestrator.collaborators.base import (
    AgentResult,
    AttemptContext,
    Collaborators,
    ValidatorReport,
)
from task_orchestrator.collaborators.command import (
    CollaboratorsConfig,
    build_collaborators,
    load_collaborators_config,
)
from task_orchestrator.collaborators.console import ConsoleQuestionAgent
from task_orchestrator.collaborators.vcs import GitVersionControl

__all__ = [
    "AgentResult",
    "AttemptContext",
    "Collaborators",
    "ValidatorReport",
    "CollaboratorsConfig",
    "build_collaborators",
    "load_collaborators_config",
    "ConsoleQuestionAgent",
    "GitVersionControl",
]
