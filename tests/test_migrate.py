"""Tests for the 2.x -> 3.0 document migration."""

import copy
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from task_orchestrator.commands.migrate import cmd_migrate
from task_orchestrator.errors import SchemaMismatch
from task_orchestrator.lib.config import load_settings
from task_orchestrator.lib.document import WorkflowDocument, load_document, new_document, save_document
from task_orchestrator.lib.migrate import PLACEHOLDER_INTENT, backup_path, migrate_data

LEGACY_DOC = {
    "version": "2.0",
    "project": "shop",
    "tasks": [
        {
            "id": "T-001",
            "title": "Authentication",
            "stories": [
                {
                    "id": "US-001",
                    "title": "Sign in",
                    "passes": True,
                    "metrics": {"iterations": 2, "git_checkpoint": "abc123"},
                },
                {"id": "US-002", "title": "Sign out", "checkpoints": {"tests_written": True}},
            ],
        }
    ],
    "config": {"max_attempts_per_story": 3},
}


class TestMigrateData:
    def test_upgrades_version_and_adds_intent(self):
        migrated, changes = migrate_data(LEGACY_DOC)
        assert migrated["version"] == "3.0"
        assert migrated["intent"] == PLACEHOLDER_INTENT
        assert changes[0] == "version 2.0 -> 3.0"
        assert "added placeholder intent" in changes

    def test_placeholder_intent_is_not_populated(self):
        migrated, _ = migrate_data(LEGACY_DOC)
        doc = WorkflowDocument.from_dict(migrated)
        assert doc.intent is not None
        assert not doc.intent.is_populated

    def test_config_defaults_keep_existing_values(self):
        migrated, _ = migrate_data(LEGACY_DOC)
        config = migrated["config"]
        assert config["max_attempts_per_story"] == 3
        assert config["enable_whitebox"] is True
        assert config["validators"] == ["playwright", "browser", "whitebox"]

    def test_passed_story_gets_every_flag(self):
        migrated, _ = migrate_data(LEGACY_DOC)
        story = migrated["tasks"][0]["stories"][0]
        assert story["state"] == "passed"
        assert all(story["checkpoints"].values())
        assert "passes" not in story
        assert story["metrics"]["last_checkpoint_ref"] == "abc123"
        assert story["metrics"]["iterations"] == 2

    def test_pending_story_keeps_recorded_flags(self):
        migrated, _ = migrate_data(LEGACY_DOC)
        story = migrated["tasks"][0]["stories"][1]
        assert story["state"] == "pending"
        assert story["checkpoints"]["tests_written"] is True
        assert story["checkpoints"]["build_complete"] is False

    def test_input_not_modified(self):
        original = copy.deepcopy(LEGACY_DOC)
        migrate_data(LEGACY_DOC)
        assert LEGACY_DOC == original

    def test_unknown_keys_survive(self):
        migrated, _ = migrate_data(LEGACY_DOC)
        assert WorkflowDocument.from_dict(migrated).to_dict()["project"] == "shop"

    def test_rejects_current_version(self):
        with pytest.raises(ValueError) as exc_info:
            migrate_data({"version": "3.0", "tasks": [], "config": {}})
        assert "expected 2.x" in str(exc_info.value)


class TestBackupPath:
    def test_timestamped_sibling(self, tmp_path):
        now = datetime(2026, 3, 1, 14, 30, 5, tzinfo=timezone.utc)
        path = backup_path(tmp_path / "workflow.json", now)
        assert path == tmp_path / "workflow-backup-20260301T143005.json"


class TestCmdMigrate:
    @pytest.fixture
    def settings(self, tmp_path):
        settings = load_settings(tmp_path)
        settings.document_path.parent.mkdir(parents=True)
        settings.document_path.write_text(json.dumps(LEGACY_DOC))
        return settings

    def test_legacy_document_refused_on_load(self, settings):
        before = settings.document_path.read_text()
        with pytest.raises(SchemaMismatch):
            load_document(settings.document_path)
        assert settings.document_path.read_text() == before

    def test_dry_run_writes_nothing(self, settings, capsys):
        before = settings.document_path.read_text()
        assert cmd_migrate(SimpleNamespace(dry_run=True), settings) == 0
        assert settings.document_path.read_text() == before
        assert list(settings.state_dir.glob("*-backup-*")) == []
        assert "Dry run" in capsys.readouterr().out

    def test_migrates_with_backup(self, settings):
        before = settings.document_path.read_text()
        assert cmd_migrate(SimpleNamespace(dry_run=False), settings) == 0

        backups = list(settings.state_dir.glob("workflow-backup-*.json"))
        assert len(backups) == 1
        assert backups[0].read_text() == before

        doc = load_document(settings.document_path)
        assert doc.version == "3.0"
        assert doc.find_story("US-001").state == "passed"
        assert doc.config.max_attempts_per_story == 3

    def test_already_current(self, tmp_path, capsys):
        settings = load_settings(tmp_path)
        save_document(new_document(), settings.document_path)
        assert cmd_migrate(SimpleNamespace(dry_run=False), settings) == 0
        assert "no migration needed" in capsys.readouterr().out

    def test_missing_document(self, tmp_path, capsys):
        assert cmd_migrate(SimpleNamespace(dry_run=False), load_settings(tmp_path)) == 2
        assert "not found" in capsys.readouterr().out

    def test_unparseable_document(self, settings, capsys):
        settings.document_path.write_text("{not json")
        assert cmd_migrate(SimpleNamespace(dry_run=False), settings) == 2
        assert "Failed to parse" in capsys.readouterr().out
