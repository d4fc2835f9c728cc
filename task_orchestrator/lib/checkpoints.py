"""
Checkpoint store.

One JSON marker per checkpoint name under the checkpoints directory:

    checkpoints/prd_complete.json        {"name": ..., "completed_at": ...}
    checkpoints/US-001.tests_written.json

Presence means the gate is satisfied. Consumers decide freshness from
age_of(). Writes overwrite, so re-completing a checkpoint only moves its
timestamp forward.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from task_orchestrator.errors import CheckpointNotFound
from task_orchestrator.lib.constants import CHECKPOINT_NAME_PATTERN
from task_orchestrator.lib.validate import write_json_atomic

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CheckpointStore:
    """Key-presence-plus-timestamp store backed by a directory."""

    def __init__(self, root: Path, clock: Callable[[], datetime] = utc_now):
        self.root = Path(root)
        self.clock = clock

    def _path(self, name: str) -> Path:
        if not CHECKPOINT_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid checkpoint name '{name}'")
        return self.root / f"{name}.json"

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def write(self, name: str) -> datetime:
        """Record checkpoint name as completed now. Returns the timestamp written."""
        path = self._path(name)
        completed_at = self.clock()
        write_json_atomic(path, {"name": name, "completed_at": completed_at.isoformat()})
        logger.debug(f"[CHECKPOINT] wrote {name} at {completed_at.isoformat()}")
        return completed_at

    def completed_at(self, name: str) -> datetime:
        """Timestamp of the last write.

        Raises:
            CheckpointNotFound: if no record exists
        """
        path = self._path(name)
        if not path.exists():
            raise CheckpointNotFound(name)
        try:
            data = json.loads(path.read_text())
            stamp = datetime.fromisoformat(data["completed_at"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            # A corrupted marker proves nothing
            logger.warning(f"[CHECKPOINT] unreadable record {path}: {e}")
            raise CheckpointNotFound(name) from None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp

    def age_of(self, name: str) -> timedelta:
        """How long ago the checkpoint was written.

        Raises:
            CheckpointNotFound: if no record exists
        """
        return self.clock() - self.completed_at(name)

    def clear(self, name: str) -> bool:
        """Remove a checkpoint. Returns True if one existed."""
        path = self._path(name)
        if path.exists():
            path.unlink()
            logger.debug(f"[CHECKPOINT] cleared {name}")
            return True
        return False

    def names(self, prefix: str = "") -> list[str]:
        """All recorded checkpoint names starting with prefix, sorted."""
        if not self.root.exists():
            return []
        return sorted(
            p.stem for p in self.root.glob("*.json")
            if p.stem.startswith(prefix)
        )


def story_checkpoint_name(story_id: str, flag: str) -> str:
    """Checkpoint name for one step of one story."""
    return f"{story_id}.{flag}"
