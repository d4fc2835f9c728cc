"""
Error taxonomy for the task orchestrator.

Every fatal error names the violated precondition and the identifier
involved (phase name, story ID, schema version). Each error carries the
exit code the CLI uses when it surfaces.
"""

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PRECONDITION = 2
EXIT_UNRECOVERABLE = 3


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""
    exit_code = EXIT_PRECONDITION


class SessionNotStarted(OrchestratorError):
    """Workflow session read before 'start' initialized it."""

    def __init__(self, state_dir):
        self.state_dir = state_dir
        super().__init__(
            f"No workflow session in {state_dir}. Run 'task-orchestrator start' first."
        )


class DocumentNotFound(OrchestratorError):
    """Workflow state document does not exist."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Workflow document not found: {path}")


class DocumentInvalid(OrchestratorError):
    """Workflow state document is malformed or violates its schema."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"Invalid workflow document {path}: {message}")


class MetricsInvalid(OrchestratorError):
    """metrics.json cannot be read, so appending to it would discard history."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"Refusing to update unreadable metrics file {path}: {message}")


class SchemaMismatch(OrchestratorError):
    """Document version is not one this build understands."""

    def __init__(self, found: str | None, supported: list[str], path=None):
        self.found = found
        self.supported = list(supported)
        self.path = path
        expected = ", ".join(self.supported)
        where = f" in {path}" if path else ""
        super().__init__(
            f"Unsupported schema version {found!r}{where} (supported: {expected}). "
            "Run 'task-orchestrator migrate' to upgrade explicitly."
        )


class OutOfOrderPhaseError(OrchestratorError):
    """Phase prerequisite is missing or stale."""

    def __init__(self, phase: str, prerequisite: str | None, reason: str):
        self.phase = phase
        self.prerequisite = prerequisite
        self.reason = reason
        if prerequisite:
            detail = f"prerequisite '{prerequisite}' is {reason}"
        else:
            detail = reason
        super().__init__(f"Cannot enter phase '{phase}': {detail}")


class UnknownPhase(OrchestratorError):
    """Phase name is not in the phase table."""

    def __init__(self, phase: str):
        self.phase = phase
        super().__init__(f"Unknown phase '{phase}'")


class DuplicateStoryId(OrchestratorError):
    """Story ID already exists in the document."""

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Duplicate story ID '{story_id}'")


class AlreadyPopulated(OrchestratorError):
    """Intent section is already filled in."""

    def __init__(self, section: str = "intent"):
        self.section = section
        super().__init__(
            f"Document {section} is already populated (pass overwrite to replace it)"
        )


class UnknownStory(OrchestratorError):
    """Story ID not present in the document."""

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Story '{story_id}' not found in workflow document")


class ConcurrentStoryConflict(OrchestratorError):
    """A second story was started while another one holds the workspace."""

    def __init__(self, requested: str, active: str | None):
        self.requested = requested
        self.active = active
        holder = f"story '{active}'" if active else "another process"
        super().__init__(
            f"Cannot start story '{requested}': workspace is held by {holder}"
        )


class CheckpointNotFound(OrchestratorError):
    """Checkpoint record does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Checkpoint '{name}' not found")


class CheckpointUnavailable(OrchestratorError):
    """Version control could not produce a rollback point for a story."""
    exit_code = EXIT_FAILED

    def __init__(self, story_id: str, message: str):
        self.story_id = story_id
        super().__init__(
            f"Could not create a rollback checkpoint for story '{story_id}': {message}"
        )


class AttemptsExhausted(OrchestratorError):
    """Story used its attempt budget and has not been rolled back."""

    def __init__(self, story_id: str, attempts: int, limit: int):
        self.story_id = story_id
        self.attempts = attempts
        self.limit = limit
        super().__init__(
            f"Story '{story_id}' failed {attempts} of {limit} allowed attempts; "
            f"run 'task-orchestrator rollback {story_id}' first"
        )


class ValidatorFailure(OrchestratorError):
    """One or more validators rejected the build. Consumed by the retry loop."""
    exit_code = EXIT_FAILED

    def __init__(self, story_id: str, failures: dict[str, str]):
        self.story_id = story_id
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"Validation failed for story '{story_id}': {names}")


class VersionControlError(OrchestratorError):
    """Version control collaborator failed."""
    exit_code = EXIT_FAILED


class UnrecoverableState(OrchestratorError):
    """Revert to the story checkpoint failed; the workspace needs manual repair."""
    exit_code = EXIT_UNRECOVERABLE

    def __init__(self, story_id: str, checkpoint_ref: str | None, message: str):
        self.story_id = story_id
        self.checkpoint_ref = checkpoint_ref
        super().__init__(
            f"Story '{story_id}' could not be reverted to checkpoint "
            f"{checkpoint_ref!r}: {message}"
        )
