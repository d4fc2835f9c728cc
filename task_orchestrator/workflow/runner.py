"""Story runner.

Drives one story through TEST_WRITE -> BUILD -> VALIDATE -> CLEANUP with an
explicit attempt counter:

1. Take the workspace (one story at a time) and a VCS checkpoint.
2. Up to max_attempts_per_story attempts. Any failing stage records a
   failure and restarts at TEST_WRITE with the failure history in context.
3. All stages pass -> every checkpoint flag true, state passed.
4. Budget exhausted -> revert to the checkpoint, flags reset, state
   rolled_back. If the revert fails the story is unrecoverable.

Validators run concurrently against the same build. Each has its own
timeout; a slow validator fails on its own without cancelling siblings.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Optional

from task_orchestrator.collaborators.base import (
    AgentResult,
    AttemptContext,
    Collaborators,
    ValidatorReport,
)
from task_orchestrator.errors import (
    CheckpointUnavailable,
    ConcurrentStoryConflict,
    OrchestratorError,
    OutOfOrderPhaseError,
    UnrecoverableState,
    ValidatorFailure,
    VersionControlError,
)
from task_orchestrator.lib.checkpoints import CheckpointStore, story_checkpoint_name
from task_orchestrator.lib.constants import (
    CHECKPOINT_BUILD_COMPLETE,
    CHECKPOINT_CLEANUP_COMPLETE,
    CHECKPOINT_TESTS_WRITTEN,
    VALIDATED_SUFFIX,
)
from task_orchestrator.lib.document import FailureEntry, Story, WorkflowDocument
from task_orchestrator.lib.history import format_failure_history
from task_orchestrator.lib.learnings import LearningEnforcer
from task_orchestrator.lib.metrics import MetricsRecorder
from task_orchestrator.lib.session import WorkflowSession
from task_orchestrator.workflow.fsm import StoryFSM
from task_orchestrator.workflow.locking import story_lock
from task_orchestrator.workflow.phases import EXECUTION_PHASE

logger = logging.getLogger(__name__)

STATUS_PASSED = "passed"
STATUS_ROLLED_BACK = "rolled_back"
STATUS_UNRECOVERABLE = "unrecoverable"


@dataclass
class StoryOutcome:
    id: str
    passed: bool
    attempts_used: int
    status: str
    reason: str = ""
    checkpoint_ref: Optional[str] = None


@dataclass
class AttemptFailure:
    stage: str
    reason: str
    validators: list[str] = field(default_factory=list)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _log_late_result(story_id: str, name: str, future) -> None:
    """Record what a timed-out validator eventually reported."""
    try:
        report = future.result()
    except Exception as e:
        logger.warning(f"[VALIDATE] {story_id}: late {name} raised {e}")
        return
    verdict = "pass" if report.passed else "fail"
    logger.info(f"[VALIDATE] {story_id}: late {name} result after timeout: {verdict} {report.diagnostics}")


class StoryRunner:
    """Runs stories one at a time against a shared workspace."""

    def __init__(
        self,
        collaborators: Collaborators,
        metrics: MetricsRecorder,
        store: CheckpointStore,
        workspace: Path,
        enforcer: Optional[LearningEnforcer] = None,
        session: Optional[WorkflowSession] = None,
        locks_dir: Optional[Path] = None,
        lock_timeout: int = 0,
        persist: Optional[Callable[[WorkflowDocument], None]] = None,
    ):
        self.collaborators = collaborators
        self.metrics = metrics
        self.store = store
        self.workspace = Path(workspace)
        self.enforcer = enforcer or LearningEnforcer()
        self.session = session
        self.locks_dir = locks_dir
        self.lock_timeout = lock_timeout
        self.persist = persist or (lambda doc: None)

        self._active = threading.Lock()
        self._active_story: Optional[str] = None

    @property
    def active_story(self) -> Optional[str]:
        return self._active_story

    def run_story(self, doc: WorkflowDocument, story_id: str) -> StoryOutcome:
        """Run one story to passed, rolled_back or unrecoverable.

        Raises:
            UnknownStory: story_id not in doc
            ConcurrentStoryConflict: another story holds the workspace
            OutOfOrderPhaseError: planning mode is still on
            CheckpointUnavailable: VCS could not create a rollback point
        """
        story = doc.find_story(story_id)

        if self.session is not None and self.session.planning_mode:
            raise OutOfOrderPhaseError(
                EXECUTION_PHASE, None, "planning mode is active; complete the conversion phase first"
            )

        if not self._active.acquire(blocking=False):
            raise ConcurrentStoryConflict(story_id, self._active_story)
        self._active_story = story_id
        try:
            lock = (
                story_lock(self.locks_dir, story_id, self.lock_timeout)
                if self.locks_dir is not None else nullcontext()
            )
            with lock:
                return self._run(doc, story)
        finally:
            self._active_story = None
            self._active.release()

    def run_pending(self, doc: WorkflowDocument, stop_on_failure: bool = True) -> list[StoryOutcome]:
        """Run every story that hasn't passed, in authoring order."""
        outcomes = []
        for story in list(doc.stories()):
            if story.state == "passed":
                continue
            outcome = self.run_story(doc, story.id)
            outcomes.append(outcome)
            if not outcome.passed and stop_on_failure:
                logger.info(f"[STORY] stopping after {story.id} ({outcome.status})")
                break
        return outcomes

    # ------------------------------------------------------------------

    def _save(self, doc: WorkflowDocument) -> None:
        self.persist(doc)

    def _run(self, doc: WorkflowDocument, story: Story) -> StoryOutcome:
        config = doc.config

        if story.state == "passed":
            logger.info(f"[STORY] {story.id} already passed, nothing to do")
            return StoryOutcome(story.id, True, 0, STATUS_PASSED, "already passed",
                                story.metrics.last_checkpoint_ref)
        if story.state == "unrecoverable":
            raise UnrecoverableState(
                story.id, story.metrics.last_checkpoint_ref,
                "repair the workspace and run 'rollback' before retrying",
            )

        validator_names = config.enabled_validators()
        missing = [n for n in validator_names if n not in self.collaborators.validators]
        if missing:
            raise OrchestratorError(f"No collaborator configured for validator(s): {', '.join(missing)}")

        try:
            ref = self.collaborators.vcs.checkpoint(story.id)
        except VersionControlError as e:
            raise CheckpointUnavailable(story.id, str(e)) from e

        fsm = StoryFSM(story, on_transition=lambda *_: self._save(doc))
        story.metrics.last_checkpoint_ref = ref
        story.metrics.started_at = _now_iso()
        story.metrics.completed_at = None
        story.metrics.consecutive_failures = 0
        story.reset_checkpoints()
        self._clear_step_checkpoints(story)
        self.metrics.record_timestamp(story.id, "started")
        if self.session is not None:
            self.session.set_story(story.id)

        enforcer = self.enforcer if config.enable_learning_enforcer else LearningEnforcer()
        max_attempts = config.max_attempts_per_story
        logger.info(f"[STORY] {story.id}: starting ({max_attempts} attempts, checkpoint {ref})")

        fsm.begin()
        last_failure: Optional[AttemptFailure] = None
        for attempt in range(1, max_attempts + 1):
            story.metrics.iterations += 1
            ctx = AttemptContext(
                story=story,
                attempt=attempt,
                max_attempts=max_attempts,
                workspace=self.workspace,
                history=format_failure_history(story.metrics.failure_log),
                denylist=list(enforcer.patterns),
            )
            logger.info(f"[STORY] {story.id}: attempt {attempt}/{max_attempts}")

            failure = self._attempt(doc, story, fsm, ctx, enforcer, validator_names)
            if failure is None:
                return self._finish_passed(doc, story, attempt)

            last_failure = failure
            self._record_failure(doc, story, attempt, failure)
            if attempt < max_attempts:
                story.reset_checkpoints()
                self._clear_step_checkpoints(story)
                fsm.retry()

        return self._roll_back(doc, story, fsm, max_attempts, last_failure)

    def _attempt(
        self,
        doc: WorkflowDocument,
        story: Story,
        fsm: StoryFSM,
        ctx: AttemptContext,
        enforcer: LearningEnforcer,
        validator_names: list[str],
    ) -> Optional[AttemptFailure]:
        """One pass through the stages. Returns None on success."""
        # TEST_WRITE
        result = self._call_agent("test_write", self.collaborators.test_author.write_tests, ctx)
        failure = self._check_agent("test_write", result, enforcer)
        if failure:
            return failure
        self._step_done(doc, story, CHECKPOINT_TESTS_WRITTEN)
        fsm.tests_written()

        # BUILD
        result = self._call_agent("build", self.collaborators.implementer.implement, ctx)
        failure = self._check_agent("build", result, enforcer)
        if failure:
            return failure
        self._step_done(doc, story, CHECKPOINT_BUILD_COMPLETE)
        fsm.built()

        # VALIDATE
        try:
            self._validate(doc, story, ctx, validator_names)
        except ValidatorFailure as e:
            reason = "; ".join(f"{name}: {text}" for name, text in sorted(e.failures.items()))
            return AttemptFailure("validate", reason, sorted(e.failures))

        # CLEANUP
        if not doc.config.cleanup_per_story:
            fsm.pass_without_cleanup()
            return None

        fsm.validated()
        for cleaner in self.collaborators.cleaners:
            result = self._call_agent("cleanup", cleaner.cleanup, ctx)
            if not result.success:
                return AttemptFailure("cleanup", f"{cleaner.name}: {result.error or 'failed'}")
        self._step_done(doc, story, CHECKPOINT_CLEANUP_COMPLETE)
        fsm.cleaned()
        return None

    def _call_agent(self, stage: str, fn, ctx: AttemptContext) -> AgentResult:
        try:
            return fn(ctx)
        except Exception as e:
            logger.exception(f"[STORY] {ctx.story.id}: {stage} collaborator raised")
            return AgentResult(success=False, error=f"{type(e).__name__}: {e}", exit_code=-1)

    def _check_agent(self, stage: str, result: AgentResult, enforcer: LearningEnforcer) -> Optional[AttemptFailure]:
        if not result.success:
            return AttemptFailure(stage, result.error or f"exit code {result.exit_code}")
        violations = enforcer.violations(result.output)
        if violations:
            quoted = ", ".join(f"'{v}'" for v in violations)
            return AttemptFailure(stage, f"output repeats known anti-pattern(s): {quoted}")
        return None

    def _validate(self, doc: WorkflowDocument, story: Story, ctx: AttemptContext, names: list[str]) -> None:
        """Run validators and flip flags for the ones that passed.

        Raises:
            ValidatorFailure: listing every failing validator
        """
        if not names:
            return

        timeout = doc.config.test_timeout_ms / 1000
        if doc.config.parallel_validate:
            reports = self._run_validators(ctx, names, timeout, workers=len(names))
        else:
            reports = []
            for name in names:
                reports.extend(self._run_validators(ctx, [name], timeout, workers=1))

        failures = {}
        for report in reports:
            if report.passed:
                self._step_done(doc, story, f"{report.validator}{VALIDATED_SUFFIX}")
            else:
                failures[report.validator] = report.diagnostics or "failed"
                logger.info(f"[VALIDATE] {story.id}: {report.validator} failed: {report.diagnostics}")

        if failures:
            raise ValidatorFailure(story.id, failures)

    def _run_validators(self, ctx: AttemptContext, names: list[str], timeout: float, workers: int) -> list[ValidatorReport]:
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="validator")
        deadline = time.monotonic() + timeout
        futures = [(name, executor.submit(self._call_validator, name, ctx)) for name in names]

        reports = []
        for name, future in futures:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                reports.append(future.result(timeout=remaining))
            except FuturesTimeout:
                reports.append(ValidatorReport(name, False, f"timed out after {timeout:g}s", timed_out=True))
                future.add_done_callback(partial(_log_late_result, ctx.story.id, name))

        # Timed-out validators keep running; their results are only logged
        executor.shutdown(wait=False)
        return reports

    def _call_validator(self, name: str, ctx: AttemptContext) -> ValidatorReport:
        try:
            report = self.collaborators.validators[name].validate(ctx)
        except Exception as e:
            logger.exception(f"[VALIDATE] {ctx.story.id}: {name} raised")
            return ValidatorReport(name, False, f"{type(e).__name__}: {e}")
        if report.validator != name:
            report.validator = name
        return report

    def _step_done(self, doc: WorkflowDocument, story: Story, flag: str) -> None:
        story.checkpoints[flag] = True
        self.store.write(story_checkpoint_name(story.id, flag))
        self._save(doc)

    def _clear_step_checkpoints(self, story: Story) -> None:
        for flag in story.checkpoints:
            self.store.clear(story_checkpoint_name(story.id, flag))

    def _record_failure(self, doc: WorkflowDocument, story: Story, attempt: int, failure: AttemptFailure) -> None:
        entry = self.metrics.record_iteration(
            story.id,
            reason=failure.reason,
            attempt=attempt,
            stage=failure.stage,
            validators=failure.validators,
        )
        story.metrics.failure_log.append(FailureEntry(
            attempt=attempt,
            reason=failure.reason,
            timestamp=entry["timestamp"],
            stage=failure.stage,
            validators=list(failure.validators),
        ))
        story.metrics.consecutive_failures += 1
        self._save(doc)

    def _finish_passed(self, doc: WorkflowDocument, story: Story, attempt: int) -> StoryOutcome:
        self.metrics.record_iteration(story.id, attempt=attempt)
        story.mark_all_checkpoints()
        for flag in story.checkpoints:
            self.store.write(story_checkpoint_name(story.id, flag))
        story.metrics.consecutive_failures = 0
        story.metrics.completed_at = self.metrics.record_timestamp(story.id, "passed")
        if self.session is not None:
            self.session.set_story(None)
        self._save(doc)
        logger.info(f"[STORY] {story.id}: passed after {attempt} attempt(s)")
        return StoryOutcome(story.id, True, attempt, STATUS_PASSED,
                            checkpoint_ref=story.metrics.last_checkpoint_ref)

    def _roll_back(
        self,
        doc: WorkflowDocument,
        story: Story,
        fsm: StoryFSM,
        attempts: int,
        last_failure: Optional[AttemptFailure],
    ) -> StoryOutcome:
        ref = story.metrics.last_checkpoint_ref
        cause = f"{last_failure.stage}: {last_failure.reason}" if last_failure else "unknown"
        reason = f"Attempts exhausted ({attempts}/{doc.config.max_attempts_per_story}); last failure {cause}"
        logger.warning(f"[STORY] {story.id}: {reason}; reverting to {ref}")

        try:
            self.collaborators.vcs.revert(ref)
        except Exception as e:
            error = UnrecoverableState(story.id, ref, str(e))
            logger.error(f"[STORY] {error}")
            fsm.give_up()
            self.metrics.record_timestamp(story.id, "unrecoverable")
            self._save(doc)
            return StoryOutcome(story.id, False, attempts, STATUS_UNRECOVERABLE, str(error), ref)

        story.reset_checkpoints()
        self._clear_step_checkpoints(story)
        story.metrics.consecutive_failures = 0
        fsm.roll_back()
        self.metrics.record_timestamp(story.id, "rolled_back")
        if self.session is not None:
            self.session.set_story(None)
        self._save(doc)
        return StoryOutcome(story.id, False, attempts, STATUS_ROLLED_BACK, reason, ref)
