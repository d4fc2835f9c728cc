"""
Operator commands on a single story.

    set-story <id>        make <id> the current story
    cleanup <id>          run the cleanup collaborators and record cleanup_complete
    mark-story-pass <id>  mark a story passed from its recorded checkpoints
    rollback <id>         revert the workspace to the story's checkpoint
"""

import logging
from datetime import datetime, timezone

from task_orchestrator.collaborators.base import AttemptContext, Collaborators, VersionControl
from task_orchestrator.commands.common import load_collaborators, open_workspace
from task_orchestrator.errors import (
    AttemptsExhausted,
    ConcurrentStoryConflict,
    UnrecoverableState,
    VersionControlError,
)
from task_orchestrator.lib.checkpoints import story_checkpoint_name
from task_orchestrator.lib.config import WorkflowSettings
from task_orchestrator.lib.constants import (
    CHECKPOINT_BUILD_COMPLETE,
    CHECKPOINT_CLEANUP_COMPLETE,
    CHECKPOINT_TESTS_WRITTEN,
    VALIDATED_SUFFIX,
)
from task_orchestrator.lib.document import FailureEntry, WorkflowConfig
from task_orchestrator.lib.history import format_failure_history
from task_orchestrator.workflow.fsm import StoryFSM
from task_orchestrator.workflow.locking import current_holder

logger = logging.getLogger(__name__)


def required_checkpoints(config: WorkflowConfig) -> list[str]:
    """Flags that must be recorded before a story may be marked passed."""
    flags = [CHECKPOINT_TESTS_WRITTEN, CHECKPOINT_BUILD_COMPLETE]
    flags.extend(f"{name}{VALIDATED_SUFFIX}" for name in config.enabled_validators())
    if config.cleanup_per_story:
        flags.append(CHECKPOINT_CLEANUP_COMPLETE)
    return flags


def cmd_set_story(args, settings: WorkflowSettings) -> int:
    """Make a story the current story."""
    ws = open_workspace(settings)
    session = ws.require_session()
    doc = ws.load()
    story = doc.find_story(args.id)

    holder = current_holder(settings.locks_dir)
    if holder and holder != story.id:
        raise ConcurrentStoryConflict(story.id, holder)

    session.set_story(story.id)
    print(f"Current story: {story.id} - {story.title} ({story.state})")
    return 0


def cmd_cleanup(args, settings: WorkflowSettings, collaborators: Collaborators | None = None) -> int:
    """Run cleanup for a story and record cleanup_complete on success."""
    ws = open_workspace(settings)
    ws.require_session()
    doc = ws.load()
    story = doc.find_story(args.id)
    collaborators = collaborators or load_collaborators(settings)

    ctx = AttemptContext(
        story=story,
        attempt=max(story.metrics.iterations, 1),
        max_attempts=doc.config.max_attempts_per_story,
        workspace=settings.workspace,
        history=format_failure_history(story.metrics.failure_log),
    )

    for cleaner in collaborators.cleaners:
        print(f"  {cleaner.name}...")
        result = cleaner.cleanup(ctx)
        if not result.success:
            print(f"ERROR: Cleanup '{cleaner.name}' failed for {story.id}")
            if result.error:
                print(result.error)
            return 1

    ws.store.write(story_checkpoint_name(story.id, CHECKPOINT_CLEANUP_COMPLETE))
    story.checkpoints[CHECKPOINT_CLEANUP_COMPLETE] = True
    ws.save(doc)
    print(f"Cleanup complete for {story.id}")
    return 0


def cmd_mark_story_pass(args, settings: WorkflowSettings) -> int:
    """Mark a story passed. Every required step must be recorded."""
    ws = open_workspace(settings)
    ws.require_session()
    doc = ws.load()
    story = doc.find_story(args.id)
    config = doc.config

    if story.state == "passed":
        print(f"{story.id} already passed")
        return 0

    if story.metrics.consecutive_failures >= config.max_attempts_per_story:
        raise AttemptsExhausted(story.id, story.metrics.consecutive_failures, config.max_attempts_per_story)

    missing = [
        flag for flag in required_checkpoints(config)
        if not ws.store.exists(story_checkpoint_name(story.id, flag))
    ]
    if missing:
        print(f"ERROR: Cannot mark {story.id} as passed; missing checkpoints:")
        for flag in missing:
            print(f"  - {flag}")
        return 2

    fsm = StoryFSM(story)
    if not fsm.can("mark_pass"):
        print(f"ERROR: {story.id} is {story.state}; run 'rollback {story.id}' first")
        return 2

    fsm.mark_pass()
    story.mark_all_checkpoints()
    story.metrics.consecutive_failures = 0
    story.metrics.completed_at = ws.metrics.record_timestamp(story.id, "passed")
    ws.save(doc)
    print(f"{story.id} marked as passed")
    return 0


def cmd_rollback(args, settings: WorkflowSettings, vcs: VersionControl | None = None) -> int:
    """Revert the workspace to the story's start checkpoint."""
    ws = open_workspace(settings)
    session = ws.require_session()
    doc = ws.load()
    story = doc.find_story(args.id)

    fsm = StoryFSM(story)
    if not fsm.can("roll_back"):
        print(f"ERROR: {story.id} is {story.state}; nothing to roll back")
        return 2

    ref = story.metrics.last_checkpoint_ref
    if not ref:
        print(f"ERROR: {story.id} has no checkpoint reference to revert to")
        return 2

    vcs = vcs or load_collaborators(settings).vcs
    print(f"Reverting workspace to {ref[:12]}...")
    try:
        vcs.revert(ref)
    except VersionControlError as e:
        if fsm.can("give_up"):
            fsm.give_up()
            ws.save(doc)
        raise UnrecoverableState(story.id, ref, str(e)) from e

    story.reset_checkpoints()
    for flag in story.checkpoints:
        ws.store.clear(story_checkpoint_name(story.id, flag))
    story.metrics.failure_log.append(FailureEntry(
        attempt=story.metrics.iterations,
        reason="rolled back by operator",
        timestamp=datetime.now(timezone.utc).isoformat(),
        stage="rollback",
    ))
    story.metrics.consecutive_failures = 0
    fsm.roll_back()
    ws.metrics.record_timestamp(story.id, "rolled_back")
    if session.current_story == story.id:
        session.set_story(None)
    ws.save(doc)
    print(f"{story.id} rolled back")
    return 0
