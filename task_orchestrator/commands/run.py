"""
task-orchestrator run - Execute stories.

With an ID, runs that story. Without, runs every story that hasn't passed in
authoring order and stops at the first one that doesn't pass.

Exit codes: 0 all passed, 1 a story was rolled back, 3 a story is
unrecoverable (revert failed; the workspace needs manual repair).
"""

from task_orchestrator.collaborators.base import Collaborators
from task_orchestrator.commands.common import load_collaborators, open_workspace
from task_orchestrator.errors import EXIT_FAILED, EXIT_OK, EXIT_UNRECOVERABLE
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.learnings import LearningEnforcer
from task_orchestrator.workflow.phases import EXECUTION_PHASE
from task_orchestrator.workflow.runner import (
    STATUS_PASSED,
    STATUS_UNRECOVERABLE,
    StoryOutcome,
    StoryRunner,
)


def exit_code_for(outcomes: list[StoryOutcome]) -> int:
    if any(o.status == STATUS_UNRECOVERABLE for o in outcomes):
        return EXIT_UNRECOVERABLE
    if any(o.status != STATUS_PASSED for o in outcomes):
        return EXIT_FAILED
    return EXIT_OK


def print_outcome(outcome: StoryOutcome) -> None:
    if outcome.passed:
        print(f"  {outcome.id}: PASSED ({outcome.attempts_used} attempt(s))")
    else:
        print(f"  {outcome.id}: {outcome.status.upper()} after {outcome.attempts_used} attempt(s)")
        print(f"    {outcome.reason}")


def cmd_run(args, settings: WorkflowSettings, collaborators: Collaborators | None = None) -> int:
    """Run one story or all pending stories."""
    ws = open_workspace(settings)
    ws.require_session()
    ws.gate.enter(EXECUTION_PHASE)

    doc = ws.load()
    runner = StoryRunner(
        collaborators=collaborators or load_collaborators(settings),
        metrics=ws.metrics,
        store=ws.store,
        workspace=settings.workspace,
        enforcer=LearningEnforcer.from_file(settings.learnings_path),
        session=ws.session,
        locks_dir=settings.locks_dir,
        lock_timeout=settings.story_lock_timeout,
        persist=ws.save,
    )

    if args.id:
        print(f"Running {args.id}...")
        outcomes = [runner.run_story(doc, args.id)]
    else:
        pending = [s.id for s in doc.stories() if s.state != "passed"]
        if not pending:
            print("No pending stories")
            return EXIT_OK
        print(f"Running {len(pending)} pending stories...")
        outcomes = runner.run_pending(doc)

    for outcome in outcomes:
        print_outcome(outcome)
    return exit_code_for(outcomes)
