"""
task-orchestrator learn <pattern> - Record an anti-pattern in LEARNINGS.md.
"""

from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.learnings import LearningEnforcer, append_learning


def cmd_learn(args, settings: WorkflowSettings) -> int:
    pattern = args.pattern.strip()
    if not pattern:
        print("ERROR: Pattern must not be empty")
        return 2

    if pattern in LearningEnforcer.from_file(settings.learnings_path).patterns:
        print(f"Already listed: {pattern}")
        return 0

    append_learning(settings.learnings_path, pattern, args.note or "")
    print(f"Added anti-pattern to {settings.learnings_path}: {pattern}")
    return 0
