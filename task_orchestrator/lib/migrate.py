"""
Explicit 2.x -> 3.0 document migration.

Loading never migrates: a 2.x document fails with SchemaMismatch until the
operator runs `task-orchestrator migrate`. The upgrade:

- sets version to 3.0
- adds a placeholder intent (unpopulated, so the intent phase can fill it)
- adds missing config toggles with their defaults
- gives every story a state, the full checkpoint set and a metrics block

2.x stories marked `passes: true` become passed with every flag set.
"""

import copy
import json
from datetime import datetime, timezone
from pathlib import Path

from task_orchestrator.lib.constants import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_CONFIG,
    INTENT_PLACEHOLDER_PREFIX,
)
from task_orchestrator.lib.document import WorkflowConfig
from task_orchestrator.lib.validate import validate

LEGACY_VERSION = "2.0"

PLACEHOLDER_INTENT = {
    "problem_statement": f"{INTENT_PLACEHOLDER_PREFIX} via 'task-orchestrator intent']",
    "user_personas": [],
    "constraints": {"technical": [], "compliance": [], "business": []},
    "risks": [],
    "success_metrics": {"quantitative": [], "qualitative": [], "business": []},
}


def _is_legacy(version) -> bool:
    return version is None or str(version).split(".")[0] == "2"


def migrate_data(data: dict) -> tuple[dict, list[str]]:
    """Upgrade a 2.x document dict.

    Returns (migrated copy, list of human-readable changes). The input is
    not modified.

    Raises:
        ValueError: the document is not a 2.x document
        ValidationError: the migrated document still violates the schema
    """
    found = data.get("version")
    if not _is_legacy(found):
        raise ValueError(f"Cannot migrate from version {found!r}; expected 2.x")

    migrated = copy.deepcopy(data)
    changes = [f"version {found or LEGACY_VERSION} -> {CURRENT_SCHEMA_VERSION}"]
    migrated["version"] = CURRENT_SCHEMA_VERSION

    if not migrated.get("intent"):
        migrated["intent"] = copy.deepcopy(PLACEHOLDER_INTENT)
        changes.append("added placeholder intent")

    config = migrated.get("config")
    if not isinstance(config, dict):
        config = {}
    added = [k for k in DEFAULT_CONFIG if k not in config]
    for key in added:
        config[key] = copy.deepcopy(DEFAULT_CONFIG[key])
    migrated["config"] = config
    if added:
        changes.append(f"added config defaults: {', '.join(added)}")

    flags = WorkflowConfig.from_dict(config).checkpoint_flags()
    count = 0
    for task in migrated.setdefault("tasks", []):
        task.setdefault("title", task.get("id", ""))
        for story in task.setdefault("stories", []):
            _migrate_story(story, flags)
            count += 1
    changes.append(f"updated {count} stories")

    validate(migrated, "workflow")
    return migrated, changes


def _migrate_story(story: dict, flags: list[str]) -> None:
    passed = bool(story.pop("passes", False))
    story.setdefault("title", story.get("id", ""))

    old = story.get("checkpoints") or {}
    checkpoints = {flag: bool(old.get(flag, False)) or passed for flag in flags}
    story["checkpoints"] = checkpoints

    if "state" not in story:
        story["state"] = "passed" if passed else "pending"

    old_metrics = story.get("metrics") or {}
    story["metrics"] = {
        "iterations": int(old_metrics.get("iterations", 0)),
        "consecutive_failures": 0,
        "last_checkpoint_ref": old_metrics.get("last_checkpoint_ref") or old_metrics.get("git_checkpoint"),
        "started_at": old_metrics.get("started_at"),
        "completed_at": old_metrics.get("completed_at"),
        "failure_log": list(old_metrics.get("failure_log", [])),
    }


def backup_path(path: Path, now: datetime | None = None) -> Path:
    """Sibling path for the pre-migration copy: workflow-backup-<stamp>.json."""
    now = now or datetime.now(timezone.utc)
    path = Path(path)
    return path.with_name(f"{path.stem}-backup-{now.strftime('%Y%m%dT%H%M%S')}{path.suffix}")


def read_raw(path: Path) -> dict:
    """Read the document without version checks."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be an object")
    return data
