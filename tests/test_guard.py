"""Tests for the planning-mode edit guard."""

import json

import pytest

from task_orchestrator.lib.config import load_settings
from task_orchestrator.lib.guard import check_edit, parse_hook_payload
from task_orchestrator.lib.session import WorkflowSession


@pytest.fixture
def settings(tmp_path):
    return load_settings(tmp_path)


@pytest.fixture
def planning(settings):
    session = WorkflowSession(settings.session_path)
    session.start()
    session.enter_phase("prd_complete", planning=True)
    return session


class TestParseHookPayload:
    def test_file_path(self):
        payload = json.dumps({"tool_name": "Write", "tool_input": {"file_path": "src/a.ts"}})
        assert parse_hook_payload(payload) == ("Write", "src/a.ts")

    def test_notebook_path(self):
        payload = json.dumps({"tool_name": "NotebookEdit", "tool_input": {"notebook_path": "nb.ipynb"}})
        assert parse_hook_payload(payload) == ("NotebookEdit", "nb.ipynb")

    @pytest.mark.parametrize("text", ["", "not json", "[1, 2]"])
    def test_unusable_payload(self, text):
        assert parse_hook_payload(text) == ("", "")


class TestCheckEdit:
    def test_source_edit_blocked(self, settings, planning):
        decision = check_edit(settings, planning, "Edit", "src/app.ts")
        assert not decision.allowed
        assert decision.path == "src/app.ts"
        assert "prd_complete" in decision.reason

    def test_absolute_path_inside_workspace_blocked(self, settings, planning):
        decision = check_edit(settings, planning, "Write", str(settings.workspace / "src" / "app.ts"))
        assert not decision.allowed
        assert decision.path == "src/app.ts"

    def test_state_dir_allowed(self, settings, planning):
        assert check_edit(settings, planning, "Write", ".orchestrator/workflow.json").allowed

    @pytest.mark.parametrize("path", ["docs/prd.md", "README.md"])
    def test_allowed_globs(self, settings, planning, path):
        assert check_edit(settings, planning, "Edit", path).allowed

    def test_custom_globs(self, settings, planning):
        settings.planning_allowed_globs = ["e2e/*"]
        assert check_edit(settings, planning, "Edit", "e2e/login.spec.ts").allowed
        assert not check_edit(settings, planning, "Edit", "docs/prd.md").allowed

    def test_outside_workspace_allowed(self, settings, planning, tmp_path_factory):
        elsewhere = tmp_path_factory.mktemp("other") / "notes.txt"
        assert check_edit(settings, planning, "Edit", str(elsewhere)).allowed

    def test_non_edit_tool_allowed(self, settings, planning):
        assert check_edit(settings, planning, "Read", "src/app.ts").allowed

    def test_no_session_allows_everything(self, settings):
        session = WorkflowSession(settings.session_path)
        assert check_edit(settings, session, "Edit", "src/app.ts").allowed

    def test_allowed_after_planning(self, settings, planning):
        planning.end_planning()
        assert check_edit(settings, planning, "Edit", "src/app.ts").allowed
