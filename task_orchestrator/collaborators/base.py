"""
Collaborator contracts.

The orchestrator drives external agents and tools it does not implement.
Each role is a small protocol; the story runner only depends on these.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from task_orchestrator.lib.document import Story
from task_orchestrator.lib.questions import Question


@dataclass
class AgentResult:
    """Outcome of a test-author, implementer or cleanup invocation."""
    success: bool
    output: str = ""
    error: str = ""
    exit_code: int = 0


@dataclass
class ValidatorReport:
    """Outcome of one validator."""
    validator: str
    passed: bool
    diagnostics: str = ""
    timed_out: bool = False


@dataclass
class AttemptContext:
    """Everything a collaborator needs for one attempt at a story."""
    story: Story
    attempt: int
    max_attempts: int
    workspace: Path
    history: str = ""
    denylist: list[str] = field(default_factory=list)


class TestAuthor(Protocol):
    __test__ = False  # not a pytest class

    def write_tests(self, ctx: AttemptContext) -> AgentResult: ...


class Implementer(Protocol):
    def implement(self, ctx: AttemptContext) -> AgentResult: ...


class Validator(Protocol):
    name: str

    def validate(self, ctx: AttemptContext) -> ValidatorReport: ...


class Cleaner(Protocol):
    name: str

    def cleanup(self, ctx: AttemptContext) -> AgentResult: ...


class VersionControl(Protocol):
    def checkpoint(self, label: str) -> str:
        """Create a reversible checkpoint and return its handle.

        Raises VersionControlError on failure.
        """
        ...

    def revert(self, ref: str) -> None:
        """Restore the workspace to ref. Raises VersionControlError on failure."""
        ...


class QuestionAgent(Protocol):
    def ask(self, questions: list[Question]) -> dict[str, list[str]]: ...


@dataclass
class Collaborators:
    """The set of collaborators a story run uses."""
    test_author: TestAuthor
    implementer: Implementer
    validators: dict[str, Validator]
    vcs: VersionControl
    cleaners: list[Cleaner] = field(default_factory=list)
