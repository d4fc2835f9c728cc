"""
task-orchestrator set-phase / complete-phase - Move through planning phases.

set-phase refuses a phase whose prerequisites are missing or stale.
complete-phase records the phase checkpoint; completing it again only
refreshes the timestamp.
"""

from task_orchestrator.commands.common import open_workspace
from task_orchestrator.errors import OutOfOrderPhaseError
from task_orchestrator.lib.config import WorkflowSettings


def cmd_set_phase(args, settings: WorkflowSettings) -> int:
    ws = open_workspace(settings)
    ws.require_session()

    ws.gate.enter(args.phase)
    mode = "ON" if ws.session.planning_mode else "OFF"
    print(f"Entered phase '{args.phase}' (planning mode {mode})")
    return 0


def cmd_complete_phase(args, settings: WorkflowSettings) -> int:
    ws = open_workspace(settings)
    ws.require_session()

    decision = ws.gate.check(args.phase)
    if not decision:
        raise OutOfOrderPhaseError(args.phase, decision.prerequisite, decision.reason.value)

    ws.gate.complete(args.phase)
    print(f"Completed phase '{args.phase}'")
    if not ws.session.planning_mode:
        print("Planning mode is OFF")
    return 0
