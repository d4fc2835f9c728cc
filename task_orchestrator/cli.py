#!/usr/bin/env python3
"""task-orchestrator CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from task_orchestrator.errors import OrchestratorError
from task_orchestrator.lib.config import load_settings
from task_orchestrator.lib.validate import ValidationError
from task_orchestrator.commands import start as cmd_start_module
from task_orchestrator.commands import phase as cmd_phase_module
from task_orchestrator.commands import story as cmd_story_module
from task_orchestrator.commands import run as cmd_run_module
from task_orchestrator.commands import status as cmd_status_module
from task_orchestrator.commands import metrics as cmd_metrics_module
from task_orchestrator.commands import intent as cmd_intent_module
from task_orchestrator.commands import add_stories as cmd_add_stories_module
from task_orchestrator.commands import migrate as cmd_migrate_module
from task_orchestrator.commands import guard as cmd_guard_module
from task_orchestrator.commands import learn as cmd_learn_module


def get_settings(args):
    """Load workflow.env from --workspace or the current directory."""
    return load_settings(Path(args.workspace or Path.cwd()))


def cmd_start(args):
    return cmd_start_module.cmd_start(args, get_settings(args))


def cmd_set_phase(args):
    return cmd_phase_module.cmd_set_phase(args, get_settings(args))


def cmd_complete_phase(args):
    return cmd_phase_module.cmd_complete_phase(args, get_settings(args))


def cmd_set_story(args):
    return cmd_story_module.cmd_set_story(args, get_settings(args))


def cmd_cleanup(args):
    return cmd_story_module.cmd_cleanup(args, get_settings(args))


def cmd_mark_story_pass(args):
    return cmd_story_module.cmd_mark_story_pass(args, get_settings(args))


def cmd_rollback(args):
    return cmd_story_module.cmd_rollback(args, get_settings(args))


def cmd_run(args):
    return cmd_run_module.cmd_run(args, get_settings(args))


def cmd_status(args):
    return cmd_status_module.cmd_status(args, get_settings(args))


def cmd_metrics(args):
    return cmd_metrics_module.cmd_metrics(args, get_settings(args))


def cmd_intent(args):
    return cmd_intent_module.cmd_intent(args, get_settings(args))


def cmd_add_stories(args):
    return cmd_add_stories_module.cmd_add_stories(args, get_settings(args))


def cmd_migrate(args):
    return cmd_migrate_module.cmd_migrate(args, get_settings(args))


def cmd_guard_edit(args):
    return cmd_guard_module.cmd_guard_edit(args, get_settings(args))


def cmd_learn(args):
    return cmd_learn_module.cmd_learn(args, get_settings(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='task-orchestrator', description='Phase-gated story workflow')
    parser.add_argument('--workspace', '-w', help='Workspace root (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # start
    p_start = subparsers.add_parser('start', help='Initialize the workflow session')
    p_start.set_defaults(func=cmd_start)

    # set-phase
    p_set_phase = subparsers.add_parser('set-phase', help='Enter a phase (checks prerequisites)')
    p_set_phase.add_argument('phase', help='Phase name (e.g., prd_complete)')
    p_set_phase.set_defaults(func=cmd_set_phase)

    # complete-phase
    p_complete = subparsers.add_parser('complete-phase', help='Record a phase as complete')
    p_complete.add_argument('phase', help='Phase name')
    p_complete.set_defaults(func=cmd_complete_phase)

    # set-story
    p_set_story = subparsers.add_parser('set-story', help='Set the current story')
    p_set_story.add_argument('id', help='Story ID (e.g., US-001)')
    p_set_story.set_defaults(func=cmd_set_story)

    # cleanup
    p_cleanup = subparsers.add_parser('cleanup', help='Run cleanup for a story')
    p_cleanup.add_argument('id', help='Story ID')
    p_cleanup.set_defaults(func=cmd_cleanup)

    # mark-story-pass
    p_pass = subparsers.add_parser('mark-story-pass', help='Mark a story passed from recorded checkpoints')
    p_pass.add_argument('id', help='Story ID')
    p_pass.set_defaults(func=cmd_mark_story_pass)

    # rollback
    p_rollback = subparsers.add_parser('rollback', help="Revert the workspace to a story's checkpoint")
    p_rollback.add_argument('id', help='Story ID')
    p_rollback.set_defaults(func=cmd_rollback)

    # run
    p_run = subparsers.add_parser('run', help='Run one story or all pending stories')
    p_run.add_argument('id', nargs='?', help='Story ID (runs all pending if omitted)')
    p_run.set_defaults(func=cmd_run)

    # status
    p_status = subparsers.add_parser('status', help='Show phases and story progress')
    p_status.set_defaults(func=cmd_status)

    # metrics
    p_metrics = subparsers.add_parser('metrics', help='Show attempt metrics')
    p_metrics.add_argument('id', nargs='?', help='Story ID (all stories if omitted)')
    p_metrics.set_defaults(func=cmd_metrics)

    # intent
    p_intent = subparsers.add_parser('intent', help='Capture problem statement, personas, constraints and risks')
    p_intent.add_argument('--problem', help='Problem statement (prompts if not provided)')
    p_intent.add_argument('--answers', help='YAML/JSON file with interview answers (asks on console if omitted)')
    p_intent.add_argument('--force', action='store_true', help='Overwrite an existing intent')
    p_intent.set_defaults(func=cmd_intent)

    # add-stories
    p_add = subparsers.add_parser('add-stories', help='Add tasks and stories from a parsed PRD file')
    p_add.add_argument('file', help='YAML or JSON task list')
    p_add.set_defaults(func=cmd_add_stories)

    # migrate
    p_migrate = subparsers.add_parser('migrate', help='Upgrade a 2.x workflow document to 3.0')
    p_migrate.add_argument('--dry-run', action='store_true', help='Show changes without writing')
    p_migrate.set_defaults(func=cmd_migrate)

    # guard-edit
    p_guard = subparsers.add_parser('guard-edit', help='Pre-edit hook: block source edits during planning')
    p_guard.set_defaults(func=cmd_guard_edit)

    # learn
    p_learn = subparsers.add_parser('learn', help='Add an anti-pattern to LEARNINGS.md')
    p_learn.add_argument('pattern', help='Text that must not appear in collaborator output')
    p_learn.add_argument('--note', '-n', help='Why the pattern is banned')
    p_learn.set_defaults(func=cmd_learn)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except OrchestratorError as e:
        print(f"ERROR: {e}")
        return e.exit_code
    except (ValueError, ValidationError) as e:
        print(f"ERROR: {e}")
        return 2


if __name__ == '__main__':
    sys.exit(main())
