"""
Workflow session state.

Replaces ad-hoc flag files with one object, persisted to session.json and
passed explicitly to the phase gate, the story runner and the edit guard.

Lifecycle:
- start() creates the session (planning mode off, no phase, no story)
- entering a planning phase sets planning_mode
- completing the last planning phase clears it
- reading any field before start() raises SessionNotStarted
"""

import json
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from task_orchestrator.errors import SessionNotStarted
from task_orchestrator.lib.validate import write_json_atomic

logger = logging.getLogger(__name__)


@dataclass
class SessionData:
    started_at: str
    planning_mode: bool = False
    current_phase: Optional[str] = None
    current_story: Optional[str] = None
    history: list[dict] = field(default_factory=list)


class WorkflowSession:
    """Process-wide workflow state with an explicit lifecycle."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Optional[SessionData] = None

    @property
    def started(self) -> bool:
        if self._data is None and self.path.exists():
            self._load()
        return self._data is not None

    def _load(self) -> None:
        try:
            raw = json.loads(self.path.read_text())
            self._data = SessionData(**raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"[SESSION] unreadable {self.path}: {e}")
            self._data = None

    def _require(self) -> SessionData:
        if not self.started:
            raise SessionNotStarted(self.path.parent)
        return self._data

    def _save(self) -> None:
        write_json_atomic(self.path, asdict(self._data))

    def start(self) -> None:
        """Initialize the session. An existing session is kept as-is."""
        if self.started:
            logger.info(f"[SESSION] resuming session started {self._data.started_at}")
            return
        self._data = SessionData(started_at=datetime.now(timezone.utc).isoformat())
        self._save()
        logger.info("[SESSION] started")

    @property
    def planning_mode(self) -> bool:
        return self._require().planning_mode

    @property
    def current_phase(self) -> Optional[str]:
        return self._require().current_phase

    @property
    def current_story(self) -> Optional[str]:
        return self._require().current_story

    def enter_phase(self, phase: str, planning: bool) -> None:
        data = self._require()
        data.current_phase = phase
        if planning and not data.planning_mode:
            logger.info(f"[SESSION] planning mode ON ({phase})")
        data.planning_mode = data.planning_mode or planning
        data.history.append({"event": "enter", "phase": phase,
                             "at": datetime.now(timezone.utc).isoformat()})
        self._save()

    def end_planning(self) -> None:
        data = self._require()
        if data.planning_mode:
            logger.info("[SESSION] planning mode OFF")
        data.planning_mode = False
        self._save()

    def set_story(self, story_id: Optional[str]) -> None:
        data = self._require()
        data.current_story = story_id
        self._save()
