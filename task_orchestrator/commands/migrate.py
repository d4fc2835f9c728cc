"""
task-orchestrator migrate - Upgrade a 2.x workflow document to 3.0.

Writes a timestamped backup next to the document before saving.
--dry-run prints the changes without writing anything.
"""

import json

from task_orchestrator.errors import DocumentInvalid
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.constants import SUPPORTED_SCHEMA_VERSIONS
from task_orchestrator.lib.document import save_document, WorkflowDocument
from task_orchestrator.lib.migrate import backup_path, migrate_data, read_raw
from task_orchestrator.lib.validate import ValidationError


def cmd_migrate(args, settings: WorkflowSettings) -> int:
    path = settings.document_path
    if not path.exists():
        print(f"ERROR: {path} not found")
        return 2

    try:
        data = read_raw(path)
    except (json.JSONDecodeError, ValueError) as e:
        print(f"ERROR: Failed to parse {path}: {e}")
        return 2

    version = data.get("version")
    if version in SUPPORTED_SCHEMA_VERSIONS:
        print(f"Already at version {version}; no migration needed")
        return 0

    try:
        migrated, changes = migrate_data(data)
    except ValidationError as e:
        raise DocumentInvalid(path, str(e)) from None
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    print(f"Migrating {path}")
    for change in changes:
        print(f"  - {change}")

    if args.dry_run:
        print("Dry run: no changes written")
        return 0

    backup = backup_path(path)
    backup.write_text(path.read_text())
    print(f"Backup: {backup}")

    save_document(WorkflowDocument.from_dict(migrated), path)
    print(f"Saved {path}")
    return 0
