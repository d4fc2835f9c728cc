"""
task-orchestrator guard-edit - Pre-edit hook.

Reads the hook payload from stdin. Exits 0 to allow the edit, 2 to block it
with the reason on stderr.
"""

import sys

from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.guard import check_edit, parse_hook_payload
from task_orchestrator.lib.session import WorkflowSession

EXIT_BLOCK = 2


def cmd_guard_edit(args, settings: WorkflowSettings, stdin=None) -> int:
    stdin = stdin or sys.stdin
    tool_name, file_path = parse_hook_payload(stdin.read())

    session = WorkflowSession(settings.session_path)
    decision = check_edit(settings, session, tool_name, file_path)
    if decision.allowed:
        return 0

    print(f"BLOCKED: {decision.reason}", file=sys.stderr)
    print(f"File: {decision.path}", file=sys.stderr)
    print(
        "Finish planning (task-orchestrator complete-phase conversion_complete) "
        "before changing source files.",
        file=sys.stderr,
    )
    return EXIT_BLOCK
