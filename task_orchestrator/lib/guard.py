"""
Source-edit guard.

Used as a pre-edit hook: while planning mode is on, edits to source files
are refused. The hook payload arrives as JSON on stdin:

    {"tool_name": "Edit", "tool_input": {"file_path": "src/app.ts"}}

Edits are always allowed when no session exists, outside planning mode,
for paths inside the state directory, and for paths matching
PLANNING_ALLOWED_GLOBS.
"""

import json
import logging
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Optional

from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.session import WorkflowSession

logger = logging.getLogger(__name__)

EDIT_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit", "write", "edit"})


@dataclass
class GuardDecision:
    allowed: bool
    path: str = ""
    reason: str = ""


def parse_hook_payload(text: str) -> tuple[str, str]:
    """Return (tool_name, file_path) from a hook payload. Unparseable -> ("", "")."""
    try:
        payload = json.loads(text or "{}")
    except json.JSONDecodeError:
        return "", ""
    if not isinstance(payload, dict):
        return "", ""
    tool_input = payload.get("tool_input") or {}
    file_path = (
        tool_input.get("file_path")
        or tool_input.get("path")
        or tool_input.get("notebook_path")
        or ""
    )
    return str(payload.get("tool_name", "")), str(file_path)


def _relative(settings: WorkflowSettings, file_path: str) -> Optional[str]:
    path = Path(file_path)
    if not path.is_absolute():
        path = settings.workspace / path
    try:
        return path.resolve().relative_to(settings.workspace).as_posix()
    except ValueError:
        return None


def check_edit(settings: WorkflowSettings, session: WorkflowSession, tool_name: str, file_path: str) -> GuardDecision:
    """Decide whether tool_name may modify file_path."""
    if tool_name not in EDIT_TOOLS or not file_path:
        return GuardDecision(True, file_path)

    # No session yet: the workflow isn't managing this workspace
    if not session.started or not session.planning_mode:
        return GuardDecision(True, file_path)

    relative = _relative(settings, file_path)
    if relative is None:
        return GuardDecision(True, file_path)

    state_dir = settings.state_dir.resolve()
    if (settings.workspace / relative).resolve().is_relative_to(state_dir):
        return GuardDecision(True, relative)

    for pattern in settings.planning_allowed_globs:
        if fnmatch(relative, pattern):
            return GuardDecision(True, relative)

    phase = session.current_phase or "planning"
    logger.info(f"[GUARD] blocked edit of {relative} during {phase}")
    return GuardDecision(
        False,
        relative,
        f"Planning mode is active (phase '{phase}'); source edits are blocked until "
        f"'conversion_complete' is completed.",
    )
