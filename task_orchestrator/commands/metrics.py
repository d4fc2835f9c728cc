"""
task-orchestrator metrics - Show per-story attempt metrics.
"""

from task_orchestrator.commands.common import open_workspace
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.metrics import format_summary, summarize


def cmd_metrics(args, settings: WorkflowSettings) -> int:
    ws = open_workspace(settings)
    data = ws.metrics.load()

    if args.id:
        if args.id not in data:
            print(f"No metrics recorded for {args.id}")
            return 0
        entry = data[args.id]
        print(format_summary(summarize(args.id, entry)))
        if entry["failure_log"]:
            print()
            print("Failures:")
            for failure in entry["failure_log"]:
                stage = failure.get("stage") or "?"
                print(f"  #{failure['attempt']} [{stage}] {failure['timestamp']}: {failure['reason']}")
        return 0

    if not data:
        print("No metrics recorded yet")
        return 0

    total_iterations = sum(e.get("iterations", 0) for e in data.values())
    total_failures = sum(len(e.get("failure_log", [])) for e in data.values())
    print(f"Stories: {len(data)}  iterations: {total_iterations}  failures: {total_failures}")
    for story_id in sorted(data):
        print(format_summary(summarize(story_id, data[story_id])))
    return 0
