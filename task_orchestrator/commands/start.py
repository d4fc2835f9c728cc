"""
task-orchestrator start - Initialize the workflow session.

Creates the state directory, the session file, an empty workflow document
and LEARNINGS.md if they don't exist yet. Running it again resumes the
existing session.
"""

from task_orchestrator.commands.common import open_workspace
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.document import new_document, save_document

LEARNINGS_TEMPLATE = """# Learnings

Mistakes seen in earlier stories. Bullets under "Anti-patterns" are
enforced: collaborator output containing a listed pattern fails the attempt.

## Anti-patterns
"""


def cmd_start(args, settings: WorkflowSettings) -> int:
    """Start (or resume) the workflow session."""
    ws = open_workspace(settings)
    settings.state_dir.mkdir(parents=True, exist_ok=True)

    resumed = ws.session.started
    ws.session.start()

    if not settings.document_path.exists():
        save_document(new_document(), settings.document_path)
        print(f"Created {settings.document_path}")

    if not settings.learnings_path.exists():
        settings.learnings_path.parent.mkdir(parents=True, exist_ok=True)
        settings.learnings_path.write_text(LEARNINGS_TEMPLATE)
        print(f"Created {settings.learnings_path}")

    if resumed:
        print(f"Session already started; resuming (state in {settings.state_dir})")
    else:
        print(f"Session started (state in {settings.state_dir})")
    print("Next: task-orchestrator set-phase codebase_mapped")
    return 0
