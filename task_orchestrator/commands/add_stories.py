"""
task-orchestrator add-stories <file> - Convert parsed PRD tasks into stories.

The file is YAML or JSON, either a list of tasks or {"tasks": [...]}:

    - title: Authentication
      stories:
        - title: Sign in with email
          acceptance_criteria: [...]
          scenarios:
            - given: [...]
              when: [...]
              then: [...]

Stories without an ID get the next free US-NNN. A story ID that already
exists rejects the whole file and leaves the document unchanged.
"""

from pathlib import Path

import yaml

from task_orchestrator.commands.common import open_workspace
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.document import add_tasks_from_prd

CONVERSION_PHASE = "conversion_complete"


def load_parsed_tasks(path: Path) -> list[dict]:
    """Read tasks from a YAML/JSON file.

    Raises:
        ValueError: the file isn't a task list
    """
    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from None

    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list) or not all(isinstance(t, dict) for t in data):
        raise ValueError(f"{path}: expected a list of tasks")
    return data


def cmd_add_stories(args, settings: WorkflowSettings) -> int:
    ws = open_workspace(settings)
    ws.require_session()
    ws.gate.enter(CONVERSION_PHASE)

    path = Path(args.file)
    if not path.exists():
        print(f"ERROR: File not found: {path}")
        return 2

    parsed = load_parsed_tasks(path)
    doc = ws.load()
    before = set(doc.story_ids())
    updated = add_tasks_from_prd(doc, parsed)
    ws.save(updated)

    added = [sid for sid in updated.story_ids() if sid not in before]
    print(f"Added {len(added)} stories: {', '.join(added) or '-'}")
    if added:
        print(f"Next: task-orchestrator complete-phase {CONVERSION_PHASE}")
    return 0
