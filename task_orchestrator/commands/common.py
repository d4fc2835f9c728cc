"""
Shared wiring for commands.

Builds the store, session, gate and recorder for a workspace from its
settings so every command sees the same paths.
"""

from dataclasses import dataclass
from datetime import timedelta

from task_orchestrator.collaborators import (
    Collaborators,
    GitVersionControl,
    build_collaborators,
    load_collaborators_config,
)
from task_orchestrator.errors import SessionNotStarted
from task_orchestrator.lib.checkpoints import CheckpointStore
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.document import WorkflowDocument, load_document, save_document
from task_orchestrator.lib.metrics import MetricsRecorder
from task_orchestrator.lib.session import WorkflowSession
from task_orchestrator.workflow.phases import PhaseGate


@dataclass
class Workspace:
    settings: WorkflowSettings
    store: CheckpointStore
    session: WorkflowSession
    metrics: MetricsRecorder
    gate: PhaseGate

    def require_session(self) -> WorkflowSession:
        if not self.session.started:
            raise SessionNotStarted(self.settings.state_dir)
        return self.session

    def load(self) -> WorkflowDocument:
        return load_document(self.settings.document_path)

    def save(self, doc: WorkflowDocument) -> None:
        save_document(doc, self.settings.document_path)


def load_collaborators(settings: WorkflowSettings) -> Collaborators:
    """Command-backed collaborators from collaborators.yaml, git for VCS."""
    config = load_collaborators_config(settings.collaborators_path)
    return build_collaborators(config, GitVersionControl(settings.workspace, keep=settings.state_paths))


def open_workspace(settings: WorkflowSettings) -> Workspace:
    store = CheckpointStore(settings.checkpoints_dir)
    session = WorkflowSession(settings.session_path)
    return Workspace(
        settings=settings,
        store=store,
        session=session,
        metrics=MetricsRecorder(settings.metrics_path),
        gate=PhaseGate(store, session, staleness_window=timedelta(days=settings.staleness_days)),
    )
