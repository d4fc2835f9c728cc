"""
Metrics recording for story attempts.

Keeps metrics.json keyed by story ID:

    {
      "US-001": {
        "iterations": 3,
        "failure_log": [{"attempt": 1, "stage": "validate", "reason": ..., ...}],
        "timeline": [{"event": "started", "timestamp": ...}]
      }
    }

The record is append-only: entries are never edited or removed, so the
file doubles as an audit trail of why a story needed N attempts.
"""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from task_orchestrator.errors import MetricsInvalid
from task_orchestrator.lib.validate import validate_before_write, write_json_atomic

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricsRecorder:
    """Append-only per-story metrics backed by a JSON file."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = _utc_now):
        self.path = Path(path)
        self.clock = clock
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise MetricsInvalid(self.path, str(e)) from e
        if not isinstance(data, dict):
            raise MetricsInvalid(self.path, f"expected an object, got {type(data).__name__}")
        return data

    def load(self) -> dict:
        """Full metrics record for display. Missing or corrupted file reads as empty."""
        try:
            return self._read()
        except MetricsInvalid as e:
            logger.warning(f"[METRICS] {e}")
            return {}

    def for_story(self, story_id: str) -> dict:
        return self.load().get(story_id, _empty_entry())

    def _append(self, story_id: str, mutate: Callable[[dict], None]) -> dict:
        with self._lock:
            data = self._read()
            entry = data.setdefault(story_id, _empty_entry())
            mutate(entry)
            validate_before_write(data, "metrics", self.path)
            write_json_atomic(self.path, data)
            return entry

    def record_iteration(
        self,
        story_id: str,
        reason: Optional[str] = None,
        attempt: Optional[int] = None,
        stage: Optional[str] = None,
        validators: Optional[list[str]] = None,
    ) -> dict:
        """Count one attempt for story_id.

        A reason marks the attempt as failed and appends it to the failure
        log. Returns the appended failure entry, or {} for a clean attempt.
        """
        stamp = self.clock().isoformat()
        failure = {}
        if reason is not None:
            failure = {
                "attempt": attempt,
                "stage": stage,
                "reason": reason,
                "validators": list(validators or []),
                "timestamp": stamp,
            }

        def mutate(entry: dict) -> None:
            entry["iterations"] += 1
            if failure:
                entry["failure_log"].append(failure)

        self._append(story_id, mutate)
        if failure:
            logger.info(f"[METRICS] {story_id} attempt {attempt} failed at {stage}: {reason}")
        return failure

    def record_timestamp(self, story_id: str, event: str) -> str:
        """Append a timeline event for story_id. Returns the timestamp."""
        stamp = self.clock().isoformat()
        self._append(
            story_id,
            lambda entry: entry["timeline"].append({"event": event, "timestamp": stamp}),
        )
        logger.debug(f"[METRICS] {story_id} {event} at {stamp}")
        return stamp


def _empty_entry() -> dict:
    return {"iterations": 0, "failure_log": [], "timeline": []}


@dataclass
class StorySummary:
    story_id: str
    iterations: int
    failures: int
    elapsed_seconds: Optional[float]
    last_failure: Optional[str]


def summarize(story_id: str, entry: dict) -> StorySummary:
    """Reduce a story's metrics entry for display."""
    failures = entry.get("failure_log", [])
    timeline = entry.get("timeline", [])

    elapsed = None
    started = next((e["timestamp"] for e in timeline if e["event"] == "started"), None)
    finished = next(
        (e["timestamp"] for e in reversed(timeline) if e["event"] in ("passed", "rolled_back")),
        None,
    )
    if started and finished:
        elapsed = (datetime.fromisoformat(finished) - datetime.fromisoformat(started)).total_seconds()

    return StorySummary(
        story_id=story_id,
        iterations=entry.get("iterations", 0),
        failures=len(failures),
        elapsed_seconds=elapsed,
        last_failure=failures[-1]["reason"] if failures else None,
    )


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def format_summary(summary: StorySummary) -> str:
    """One display line per story."""
    elapsed = format_duration(summary.elapsed_seconds) if summary.elapsed_seconds is not None else "-"
    line = (
        f"  {summary.story_id:<12} iterations={summary.iterations:<3} "
        f"failures={summary.failures:<3} time={elapsed}"
    )
    if summary.last_failure:
        line += f"  last: {summary.last_failure}"
    return line
