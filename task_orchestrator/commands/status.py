"""
task-orchestrator status - Show phases, session and story progress.
"""

from task_orchestrator.commands.common import open_workspace
from task_orchestrator.errors import DocumentNotFound
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.metrics import format_duration
from task_orchestrator.workflow.locking import current_holder


def cmd_status(args, settings: WorkflowSettings) -> int:
    """Show workflow status."""
    ws = open_workspace(settings)
    session = ws.require_session()

    print(f"Workspace:     {settings.workspace}")
    print(f"Planning mode: {'ON' if session.planning_mode else 'OFF'}")
    print(f"Phase:         {session.current_phase or '-'}")
    print(f"Story:         {session.current_story or '-'}")
    holder = current_holder(settings.locks_dir)
    if holder:
        print(f"Running:       {holder}")

    print()
    print("Phases:")
    for phase in ws.gate.status():
        mark = "x" if phase.complete else " "
        age = f"  ({format_duration(phase.age.total_seconds())} ago)" if phase.age is not None else ""
        stale = f"  STALE: {', '.join(phase.stale_prerequisites)}" if phase.stale_prerequisites else ""
        print(f"  [{mark}] {phase.name}{age}{stale}")

    try:
        doc = ws.load()
    except DocumentNotFound:
        print()
        print("No workflow document yet")
        return 0

    print()
    stories = list(doc.stories())
    passed = sum(1 for s in stories if s.state == "passed")
    print(f"Stories: {passed}/{len(stories)} passed")
    for task in doc.tasks:
        print(f"  {task.id}: {task.title}")
        for story in task.stories:
            done = sum(1 for v in story.checkpoints.values() if v)
            print(
                f"    {story.id:<10} {story.state:<14} "
                f"checkpoints {done}/{len(story.checkpoints)}  "
                f"attempts {story.metrics.iterations}  {story.title}"
            )
    return 0
