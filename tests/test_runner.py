"""Tests for task_orchestrator.workflow.runner module."""

import shutil
import subprocess
import threading

import pytest

from task_orchestrator.collaborators.base import AgentResult, Collaborators, ValidatorReport
from task_orchestrator.collaborators.vcs import GitVersionControl
from task_orchestrator.errors import (
    CheckpointUnavailable,
    ConcurrentStoryConflict,
    OrchestratorError,
    OutOfOrderPhaseError,
    UnknownStory,
    UnrecoverableState,
    VersionControlError,
)
from task_orchestrator.lib.checkpoints import CheckpointStore
from task_orchestrator.lib.config import load_settings
from task_orchestrator.lib.document import add_tasks_from_prd, load_document, new_document, save_document
from task_orchestrator.lib.learnings import LearningEnforcer
from task_orchestrator.lib.metrics import MetricsRecorder
from task_orchestrator.lib.session import WorkflowSession
from task_orchestrator.workflow.locking import story_lock
from task_orchestrator.workflow.runner import StoryRunner


class FakeAgent:
    """Test author, implementer or cleaner with scripted results."""

    def __init__(self, results=None, name="fake", on_call=None):
        self.name = name
        self.results = list(results or [])
        self.calls = []
        self.on_call = on_call

    def _next(self, ctx):
        self.calls.append(ctx)
        if self.on_call:
            self.on_call(ctx)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return AgentResult(success=True, output="ok")

    def write_tests(self, ctx):
        return self._next(ctx)

    def implement(self, ctx):
        return self._next(ctx)

    def cleanup(self, ctx):
        return self._next(ctx)


class FakeValidator:
    def __init__(self, name, outcomes=None, release: threading.Event | None = None):
        self.name = name
        self.outcomes = list(outcomes or [])
        self.release = release
        self.calls = 0

    def validate(self, ctx):
        self.calls += 1
        if self.release is not None:
            self.release.wait(timeout=5)
        passed = self.outcomes.pop(0) if self.outcomes else True
        return ValidatorReport(self.name, passed, "" if passed else f"{self.name}: assertion failed")


class FakeVCS:
    def __init__(self, fail_checkpoint=False, fail_revert=False):
        self.fail_checkpoint = fail_checkpoint
        self.fail_revert = fail_revert
        self.checkpoints = []
        self.reverts = []

    def checkpoint(self, label):
        if self.fail_checkpoint:
            raise VersionControlError("git commit failed: disk full")
        self.checkpoints.append(label)
        return "sha-start"

    def revert(self, ref):
        self.reverts.append(ref)
        if self.fail_revert:
            raise VersionControlError("git reset failed")


TASKS = [{"title": "Auth", "stories": [{"title": "Sign in"}, {"title": "Sign out"}]}]


def make_doc(**config):
    return add_tasks_from_prd(new_document(config), TASKS)


def make_collaborators(validators=None, vcs=None, test_author=None, implementer=None, cleaners=None):
    if validators is None:
        validators = {name: FakeValidator(name) for name in ("playwright", "browser", "whitebox")}
    return Collaborators(
        test_author=test_author or FakeAgent(name="test_author"),
        implementer=implementer or FakeAgent(name="implementer"),
        validators=validators,
        vcs=vcs or FakeVCS(),
        cleaners=[FakeAgent(name="prettier")] if cleaners is None else cleaners,
    )


@pytest.fixture
def doc_path(tmp_path):
    return tmp_path / "workflow.json"


@pytest.fixture
def metrics(tmp_path):
    return MetricsRecorder(tmp_path / "metrics.json")


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(tmp_path / "checkpoints")


def make_runner(collaborators, metrics, store, tmp_path, doc_path, **kwargs):
    return StoryRunner(
        collaborators=collaborators,
        metrics=metrics,
        store=store,
        workspace=tmp_path,
        persist=lambda doc: save_document(doc, doc_path),
        **kwargs,
    )


class TestHappyPath:
    """A story that passes every stage on the first attempt."""

    def test_passes_first_attempt(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        collaborators = make_collaborators()
        runner = make_runner(collaborators, metrics, store, tmp_path, doc_path)

        outcome = runner.run_story(doc, "US-001")

        assert outcome.passed
        assert outcome.status == "passed"
        assert outcome.attempts_used == 1
        story = doc.find_story("US-001")
        assert story.state == "passed"
        assert all(story.checkpoints.values())
        assert story.metrics.iterations == 1
        assert story.metrics.last_checkpoint_ref == "sha-start"
        assert story.metrics.completed_at is not None
        assert collaborators.vcs.checkpoints == ["US-001"]
        assert collaborators.vcs.reverts == []

    def test_step_checkpoints_recorded(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        make_runner(make_collaborators(), metrics, store, tmp_path, doc_path).run_story(doc, "US-001")
        assert store.exists("US-001.tests_written")
        assert store.exists("US-001.whitebox_validated")
        assert store.exists("US-001.cleanup_complete")

    def test_document_persisted(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        make_runner(make_collaborators(), metrics, store, tmp_path, doc_path).run_story(doc, "US-001")
        saved = load_document(doc_path)
        assert saved.find_story("US-001").state == "passed"
        assert saved.find_story("US-002").state == "pending"

    def test_metrics_recorded(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        make_runner(make_collaborators(), metrics, store, tmp_path, doc_path).run_story(doc, "US-001")
        entry = metrics.for_story("US-001")
        assert entry["iterations"] == 1
        assert entry["failure_log"] == []
        assert [e["event"] for e in entry["timeline"]] == ["started", "passed"]

    def test_already_passed_is_noop(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        runner = make_runner(make_collaborators(), metrics, store, tmp_path, doc_path)
        runner.run_story(doc, "US-001")
        outcome = runner.run_story(doc, "US-001")
        assert outcome.passed
        assert outcome.attempts_used == 0
        assert doc.find_story("US-001").metrics.iterations == 1


class TestRetries:
    """Failed attempts restart at TEST_WRITE with history."""

    def test_five_whitebox_failures_roll_back(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        validators = {
            "playwright": FakeValidator("playwright"),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox", [False] * 5),
        }
        collaborators = make_collaborators(validators=validators)
        runner = make_runner(collaborators, metrics, store, tmp_path, doc_path)

        outcome = runner.run_story(doc, "US-001")

        assert not outcome.passed
        assert outcome.status == "rolled_back"
        assert outcome.attempts_used == 5
        assert "5/5" in outcome.reason
        story = doc.find_story("US-001")
        assert story.state == "rolled_back"
        assert story.metrics.iterations == 5
        assert not any(story.checkpoints.values())
        assert story.metrics.consecutive_failures == 0
        assert collaborators.vcs.reverts == ["sha-start"]
        assert store.names("US-001.") == []

        entry = metrics.for_story("US-001")
        assert entry["iterations"] == 5
        assert len(entry["failure_log"]) == 5
        assert all(f["validators"] == ["whitebox"] for f in entry["failure_log"])
        assert entry["timeline"][-1]["event"] == "rolled_back"

    def test_four_failures_then_success(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        validators = {
            "playwright": FakeValidator("playwright"),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox", [False] * 4 + [True]),
        }
        collaborators = make_collaborators(validators=validators)
        outcome = make_runner(collaborators, metrics, store, tmp_path, doc_path).run_story(doc, "US-001")

        assert outcome.passed
        assert outcome.attempts_used == 5
        story = doc.find_story("US-001")
        assert all(story.checkpoints.values())
        assert story.metrics.iterations == 5
        assert len(story.metrics.failure_log) == 4
        assert collaborators.vcs.reverts == []

    def test_history_passed_to_next_attempt(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        implementer = FakeAgent([AgentResult(success=False, error="tsc: type error in login.ts")])
        test_author = FakeAgent()
        collaborators = make_collaborators(test_author=test_author, implementer=implementer)
        make_runner(collaborators, metrics, store, tmp_path, doc_path).run_story(doc, "US-001")

        assert [c.attempt for c in test_author.calls] == [1, 2]
        assert test_author.calls[0].history == ""
        assert "type error in login.ts" in test_author.calls[1].history

    def test_attempt_budget_from_config(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=2)
        implementer = FakeAgent([AgentResult(success=False, error="x")] * 3)
        outcome = make_runner(make_collaborators(implementer=implementer), metrics, store,
                              tmp_path, doc_path).run_story(doc, "US-001")
        assert outcome.status == "rolled_back"
        assert len(implementer.calls) == 2

    def test_all_validator_failures_aggregated(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1)
        validators = {
            "playwright": FakeValidator("playwright", [False]),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox", [False]),
        }
        make_runner(make_collaborators(validators=validators), metrics, store,
                    tmp_path, doc_path).run_story(doc, "US-001")
        failure = metrics.for_story("US-001")["failure_log"][0]
        assert failure["stage"] == "validate"
        assert failure["validators"] == ["playwright", "whitebox"]

    def test_sequential_validation_runs_every_validator(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1, parallel_validate=False)
        validators = {
            "playwright": FakeValidator("playwright", [False]),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox"),
        }
        make_runner(make_collaborators(validators=validators), metrics, store,
                    tmp_path, doc_path).run_story(doc, "US-001")
        assert [v.calls for v in validators.values()] == [1, 1, 1]

    def test_collaborator_exception_is_failed_attempt(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        test_author = FakeAgent([RuntimeError("agent crashed")])
        outcome = make_runner(make_collaborators(test_author=test_author), metrics, store,
                              tmp_path, doc_path).run_story(doc, "US-001")
        assert outcome.passed
        assert "agent crashed" in doc.find_story("US-001").metrics.failure_log[0].reason

    def test_cleanup_failure_retries(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        cleaner = FakeAgent([AgentResult(success=False, error="tsc failed")], name="tsc")
        outcome = make_runner(make_collaborators(cleaners=[cleaner]), metrics, store,
                              tmp_path, doc_path).run_story(doc, "US-001")
        assert outcome.attempts_used == 2
        assert doc.find_story("US-001").metrics.failure_log[0].stage == "cleanup"


class TestValidatorTimeout:
    def test_slow_validator_fails_without_blocking_siblings(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1, test_timeout_ms=50)
        release = threading.Event()
        validators = {
            "playwright": FakeValidator("playwright"),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox", release=release),
        }
        try:
            outcome = make_runner(make_collaborators(validators=validators), metrics, store,
                                  tmp_path, doc_path).run_story(doc, "US-001")
        finally:
            release.set()

        assert outcome.status == "rolled_back"
        failure = metrics.for_story("US-001")["failure_log"][0]
        assert failure["validators"] == ["whitebox"]
        assert "timed out" in failure["reason"]
        assert validators["playwright"].calls == 1


class TestLearningEnforcer:
    def test_violation_fails_attempt_and_skips_build(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        test_author = FakeAgent([AgentResult(success=True, output="const x = y as any;")])
        implementer = FakeAgent()
        collaborators = make_collaborators(test_author=test_author, implementer=implementer)
        runner = make_runner(collaborators, metrics, store, tmp_path, doc_path,
                             enforcer=LearningEnforcer(["as any"]))

        outcome = runner.run_story(doc, "US-001")

        assert outcome.passed
        assert outcome.attempts_used == 2
        assert len(implementer.calls) == 1
        failure = doc.find_story("US-001").metrics.failure_log[0]
        assert failure.stage == "test_write"
        assert "'as any'" in failure.reason

    def test_denylist_given_to_collaborators(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        test_author = FakeAgent()
        runner = make_runner(make_collaborators(test_author=test_author), metrics, store, tmp_path,
                             doc_path, enforcer=LearningEnforcer(["as any"]))
        runner.run_story(doc, "US-001")
        assert test_author.calls[0].denylist == ["as any"]

    def test_disabled_enforcer_ignores_patterns(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(enable_learning_enforcer=False)
        test_author = FakeAgent([AgentResult(success=True, output="as any")])
        runner = make_runner(make_collaborators(test_author=test_author), metrics, store, tmp_path,
                             doc_path, enforcer=LearningEnforcer(["as any"]))
        assert runner.run_story(doc, "US-001").attempts_used == 1


class TestConfigToggles:
    def test_whitebox_disabled_not_run(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(enable_whitebox=False)
        whitebox = FakeValidator("whitebox", [False])
        validators = {"playwright": FakeValidator("playwright"), "browser": FakeValidator("browser"),
                      "whitebox": whitebox}
        outcome = make_runner(make_collaborators(validators=validators), metrics, store,
                              tmp_path, doc_path).run_story(doc, "US-001")
        assert outcome.attempts_used == 1
        assert whitebox.calls == 0

    def test_cleanup_disabled_skips_cleaners(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(cleanup_per_story=False)
        cleaner = FakeAgent(name="prettier")
        outcome = make_runner(make_collaborators(cleaners=[cleaner]), metrics, store,
                              tmp_path, doc_path).run_story(doc, "US-001")
        assert outcome.passed
        assert cleaner.calls == []
        assert doc.find_story("US-001").checkpoints["cleanup_complete"] is True

    def test_missing_validator_collaborator(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        validators = {"playwright": FakeValidator("playwright")}
        with pytest.raises(OrchestratorError) as exc_info:
            make_runner(make_collaborators(validators=validators), metrics, store,
                        tmp_path, doc_path).run_story(doc, "US-001")
        assert "browser" in str(exc_info.value)


class TestVersionControlFailures:
    def test_checkpoint_unavailable(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        test_author = FakeAgent()
        collaborators = make_collaborators(vcs=FakeVCS(fail_checkpoint=True), test_author=test_author)
        with pytest.raises(CheckpointUnavailable) as exc_info:
            make_runner(collaborators, metrics, store, tmp_path, doc_path).run_story(doc, "US-001")
        assert "US-001" in str(exc_info.value)
        assert test_author.calls == []
        assert doc.find_story("US-001").state == "pending"

    def test_revert_failure_is_unrecoverable(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1)
        implementer = FakeAgent([AgentResult(success=False, error="x")])
        collaborators = make_collaborators(vcs=FakeVCS(fail_revert=True), implementer=implementer)
        runner = make_runner(collaborators, metrics, store, tmp_path, doc_path)

        outcome = runner.run_story(doc, "US-001")

        assert outcome.status == "unrecoverable"
        assert "sha-start" in outcome.reason
        assert doc.find_story("US-001").state == "unrecoverable"
        assert load_document(doc_path).find_story("US-001").state == "unrecoverable"

        with pytest.raises(UnrecoverableState):
            runner.run_story(doc, "US-001")


class TestConcurrency:
    def test_second_story_refused_while_first_runs(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        errors = []

        def start_another(ctx):
            try:
                runner.run_story(doc, "US-002")
            except ConcurrentStoryConflict as e:
                errors.append(e)

        test_author = FakeAgent(on_call=start_another)
        runner = make_runner(make_collaborators(test_author=test_author), metrics, store, tmp_path, doc_path)
        runner.run_story(doc, "US-001")

        assert len(errors) == 1
        assert errors[0].active == "US-001"
        assert doc.find_story("US-002").state == "pending"

    def test_workspace_lock_held_elsewhere(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        locks = tmp_path / "locks"
        runner = make_runner(make_collaborators(), metrics, store, tmp_path, doc_path, locks_dir=locks)
        with story_lock(locks, "US-009"):
            with pytest.raises(ConcurrentStoryConflict) as exc_info:
                runner.run_story(doc, "US-001")
        assert exc_info.value.active == "US-009"
        assert doc.find_story("US-001").state == "pending"

    def test_planning_mode_blocks_execution(self, tmp_path, doc_path, metrics, store):
        session = WorkflowSession(tmp_path / "session.json")
        session.start()
        session.enter_phase("prd_complete", planning=True)
        runner = make_runner(make_collaborators(), metrics, store, tmp_path, doc_path, session=session)
        with pytest.raises(OutOfOrderPhaseError):
            runner.run_story(make_doc(), "US-001")

    def test_unknown_story(self, tmp_path, doc_path, metrics, store):
        runner = make_runner(make_collaborators(), metrics, store, tmp_path, doc_path)
        with pytest.raises(UnknownStory):
            runner.run_story(make_doc(), "US-404")


class TestRunPending:
    def test_runs_in_authoring_order(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        collaborators = make_collaborators()
        outcomes = make_runner(collaborators, metrics, store, tmp_path, doc_path).run_pending(doc)
        assert [o.id for o in outcomes] == ["US-001", "US-002"]
        assert collaborators.vcs.checkpoints == ["US-001", "US-002"]

    def test_stops_at_first_failure(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1)
        implementer = FakeAgent([AgentResult(success=False, error="x")])
        outcomes = make_runner(make_collaborators(implementer=implementer), metrics, store,
                               tmp_path, doc_path).run_pending(doc)
        assert [o.status for o in outcomes] == ["rolled_back"]
        assert doc.find_story("US-002").state == "pending"

    def test_continue_after_failure(self, tmp_path, doc_path, metrics, store):
        doc = make_doc(max_attempts_per_story=1)
        implementer = FakeAgent([AgentResult(success=False, error="x")])
        outcomes = make_runner(make_collaborators(implementer=implementer), metrics, store,
                               tmp_path, doc_path).run_pending(doc, stop_on_failure=False)
        assert [o.status for o in outcomes] == ["rolled_back", "passed"]

    def test_skips_passed_stories(self, tmp_path, doc_path, metrics, store):
        doc = make_doc()
        doc.find_story("US-001").state = "passed"
        outcomes = make_runner(make_collaborators(), metrics, store, tmp_path, doc_path).run_pending(doc)
        assert [o.id for o in outcomes] == ["US-002"]


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGitRollback:
    """Rollback through a real repository with the default state directory."""

    @pytest.fixture
    def workspace(self, tmp_path):
        def git(*args):
            subprocess.run(["git", "-C", str(tmp_path), *args], check=True, capture_output=True)

        git("init", "-q")
        git("config", "user.email", "dev@example.com")
        git("config", "user.name", "Dev")
        git("config", "commit.gpgsign", "false")
        (tmp_path / "app.py").write_text("v1\n")
        git("add", "-A")
        git("commit", "-q", "-m", "initial")
        return tmp_path

    def test_rollback_keeps_metrics_history(self, workspace):
        settings = load_settings(workspace)
        doc = make_doc(max_attempts_per_story=3)
        save_document(doc, settings.document_path)

        def write_feature(ctx):
            (workspace / "feature.py").write_text(f"attempt {ctx.attempt}\n")

        validators = {
            "playwright": FakeValidator("playwright"),
            "browser": FakeValidator("browser"),
            "whitebox": FakeValidator("whitebox", [False] * 3),
        }
        collaborators = make_collaborators(
            validators=validators,
            vcs=GitVersionControl(workspace, keep=settings.state_paths),
            implementer=FakeAgent(name="implementer", on_call=write_feature),
        )
        metrics = MetricsRecorder(settings.metrics_path)
        runner = StoryRunner(
            collaborators=collaborators,
            metrics=metrics,
            store=CheckpointStore(settings.checkpoints_dir),
            workspace=workspace,
            persist=lambda d: save_document(d, settings.document_path),
        )

        outcome = runner.run_story(doc, "US-001")

        assert outcome.status == "rolled_back"
        assert not (workspace / "feature.py").exists()
        assert (workspace / "app.py").read_text() == "v1\n"

        entry = metrics.for_story("US-001")
        assert entry["iterations"] == 3
        assert [f["attempt"] for f in entry["failure_log"]] == [1, 2, 3]
        assert [e["event"] for e in entry["timeline"]] == ["started", "rolled_back"]

        stored = load_document(settings.document_path).find_story("US-001")
        assert stored.state == "rolled_back"
        assert stored.metrics.iterations == 3
