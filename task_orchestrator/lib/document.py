"""
Workflow state document.

The document is the single source of truth across phases:

    {
      "version": "3.0",
      "intent": {...} | null,
      "tasks": [{"id": "T-001", "title": ..., "stories": [{...}, ...]}],
      "config": {"max_attempts_per_story": 5, ...}
    }

Tasks and stories keep authoring order. Unknown top-level keys are carried
through load/save untouched. Mutating helpers (merge_intent,
add_tasks_from_prd) return a new document and never touch their input, so
a failed mutation leaves the caller's document as it was.
"""

import copy
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Iterator, Optional

from task_orchestrator.errors import (
    AlreadyPopulated,
    DocumentInvalid,
    DocumentNotFound,
    DuplicateStoryId,
    SchemaMismatch,
    UnknownStory,
)
from task_orchestrator.lib.constants import (
    CHECKPOINT_BUILD_COMPLETE,
    CHECKPOINT_CLEANUP_COMPLETE,
    CHECKPOINT_TESTS_WRITTEN,
    CURRENT_SCHEMA_VERSION,
    DEFAULT_CONFIG,
    GENERATED_ID_RE,
    INTENT_PLACEHOLDER_PREFIX,
    STORY_ID_PREFIX,
    SUPPORTED_SCHEMA_VERSIONS,
    TASK_ID_PREFIX,
    VALIDATED_SUFFIX,
    VALIDATOR_NAME_PATTERN,
    WHITEBOX_VALIDATOR,
)
from task_orchestrator.lib.validate import (
    ValidationError,
    validate,
    validate_before_write,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

KNOWN_TOP_LEVEL = ("version", "intent", "tasks", "config")


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

@dataclass
class Persona:
    name: str
    description: str = ""


@dataclass
class Risk:
    description: str
    probability: str  # low, medium, high
    impact: str       # low, medium, high
    mitigation: str = ""


@dataclass
class Intent:
    """Problem framing captured during the intent phase."""
    problem_statement: str
    user_personas: list[Persona] = field(default_factory=list)
    constraints: dict[str, list[str]] = field(
        default_factory=lambda: {"technical": [], "compliance": [], "business": []}
    )
    risks: list[Risk] = field(default_factory=list)
    success_metrics: dict[str, list[str]] = field(
        default_factory=lambda: {"quantitative": [], "qualitative": [], "business": []}
    )

    @property
    def is_populated(self) -> bool:
        text = self.problem_statement.strip()
        return bool(text) and not text.startswith(INTENT_PLACEHOLDER_PREFIX)

    @classmethod
    def from_dict(cls, data: dict) -> "Intent":
        constraints = {"technical": [], "compliance": [], "business": []}
        constraints.update(data.get("constraints") or {})
        metrics = {"quantitative": [], "qualitative": [], "business": []}
        metrics.update(data.get("success_metrics") or {})
        return cls(
            problem_statement=data.get("problem_statement", ""),
            user_personas=[
                Persona(name=p["name"], description=p.get("description", ""))
                if isinstance(p, dict) else Persona(name=str(p))
                for p in data.get("user_personas", [])
            ],
            constraints=constraints,
            risks=[
                Risk(
                    description=r["description"],
                    probability=r["probability"],
                    impact=r["impact"],
                    mitigation=r.get("mitigation", ""),
                )
                for r in data.get("risks", [])
            ],
            success_metrics=metrics,
        )


# ---------------------------------------------------------------------------
# Stories and tasks
# ---------------------------------------------------------------------------

@dataclass
class Scenario:
    """Gherkin triple."""
    given: list[str] = field(default_factory=list)
    when: list[str] = field(default_factory=list)
    then: list[str] = field(default_factory=list)
    name: str = ""


@dataclass
class FailureEntry:
    attempt: int
    reason: str
    timestamp: str
    stage: str = ""
    validators: list[str] = field(default_factory=list)


@dataclass
class StoryMetrics:
    iterations: int = 0
    consecutive_failures: int = 0
    last_checkpoint_ref: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    failure_log: list[FailureEntry] = field(default_factory=list)


@dataclass
class Story:
    """Atomic unit of implementable work."""
    id: str
    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    scenarios: list[Scenario] = field(default_factory=list)
    state: str = "pending"
    checkpoints: dict[str, bool] = field(default_factory=dict)
    metrics: StoryMetrics = field(default_factory=StoryMetrics)

    @property
    def is_complete(self) -> bool:
        return bool(self.checkpoints) and all(self.checkpoints.values())

    def reset_checkpoints(self) -> None:
        for flag in self.checkpoints:
            self.checkpoints[flag] = False

    def mark_all_checkpoints(self) -> None:
        for flag in self.checkpoints:
            self.checkpoints[flag] = True

    @classmethod
    def from_dict(cls, data: dict, flags: list[str]) -> "Story":
        raw_metrics = data.get("metrics") or {}
        metrics = StoryMetrics(
            iterations=raw_metrics.get("iterations", 0),
            consecutive_failures=raw_metrics.get("consecutive_failures", 0),
            last_checkpoint_ref=raw_metrics.get("last_checkpoint_ref"),
            started_at=raw_metrics.get("started_at"),
            completed_at=raw_metrics.get("completed_at"),
            failure_log=[FailureEntry(**entry) for entry in raw_metrics.get("failure_log", [])],
        )
        checkpoints = {flag: False for flag in flags}
        checkpoints.update(data.get("checkpoints") or {})
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            scenarios=[
                Scenario(
                    given=list(s.get("given", [])),
                    when=list(s.get("when", [])),
                    then=list(s.get("then", [])),
                    name=s.get("name", ""),
                )
                for s in data.get("scenarios", [])
            ],
            state=data.get("state", "pending"),
            checkpoints=checkpoints,
            metrics=metrics,
        )


@dataclass
class Task:
    id: str
    title: str
    description: str = ""
    stories: list[Story] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass
class WorkflowConfig:
    """Named toggles from the document's config section."""
    max_attempts_per_story: int = DEFAULT_CONFIG["max_attempts_per_story"]
    validators: list[str] = field(default_factory=lambda: list(DEFAULT_CONFIG["validators"]))
    enable_whitebox: bool = True
    enable_learning_enforcer: bool = True
    cleanup_per_story: bool = True
    parallel_validate: bool = True
    test_timeout_ms: int = DEFAULT_CONFIG["test_timeout_ms"]
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowConfig":
        known = {k: data[k] for k in DEFAULT_CONFIG if k in data}
        extra = {k: v for k, v in data.items() if k not in DEFAULT_CONFIG}
        config = cls(**known, extra=extra)
        if config.max_attempts_per_story < 1:
            raise ValueError(
                f"max_attempts_per_story must be >= 1, got {config.max_attempts_per_story}"
            )
        for name in config.validators:
            if not VALIDATOR_NAME_PATTERN.match(name):
                raise ValueError(
                    f"Invalid validator name '{name}' (use letters, digits, _ and -)"
                )
        return config

    def to_dict(self) -> dict:
        data = asdict(self)
        extra = data.pop("extra")
        data.update(extra)
        return data

    def enabled_validators(self) -> list[str]:
        """Validators that run in VALIDATE, in configured order."""
        return [
            name for name in self.validators
            if name != WHITEBOX_VALIDATOR or self.enable_whitebox
        ]

    def checkpoint_flags(self) -> list[str]:
        """Fixed flag set for every story of this document."""
        flags = [CHECKPOINT_TESTS_WRITTEN, CHECKPOINT_BUILD_COMPLETE]
        flags.extend(f"{name}{VALIDATED_SUFFIX}" for name in self.validators)
        flags.append(CHECKPOINT_CLEANUP_COMPLETE)
        return flags


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

@dataclass
class WorkflowDocument:
    version: str = CURRENT_SCHEMA_VERSION
    intent: Optional[Intent] = None
    tasks: list[Task] = field(default_factory=list)
    config: WorkflowConfig = field(default_factory=WorkflowConfig)
    extra: dict = field(default_factory=dict)

    def stories(self) -> Iterator[Story]:
        """All stories in authoring order."""
        for task in self.tasks:
            yield from task.stories

    def story_ids(self) -> list[str]:
        return [s.id for s in self.stories()]

    def find_story(self, story_id: str) -> Story:
        for story in self.stories():
            if story.id == story_id:
                return story
        raise UnknownStory(story_id)

    def task_for(self, story_id: str) -> Task:
        for task in self.tasks:
            if any(s.id == story_id for s in task.stories):
                return task
        raise UnknownStory(story_id)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["version"] = self.version
        data["intent"] = asdict(self.intent) if self.intent else None
        data["tasks"] = [asdict(t) for t in self.tasks]
        data["config"] = self.config.to_dict()
        # version first keeps the file readable
        ordered = {k: data[k] for k in KNOWN_TOP_LEVEL}
        ordered.update({k: v for k, v in data.items() if k not in KNOWN_TOP_LEVEL})
        return ordered

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowDocument":
        config = WorkflowConfig.from_dict(data.get("config") or {})
        flags = config.checkpoint_flags()
        tasks = [
            Task(
                id=t["id"],
                title=t.get("title", ""),
                description=t.get("description", ""),
                stories=[Story.from_dict(s, flags) for s in t.get("stories", [])],
            )
            for t in data.get("tasks", [])
        ]
        intent = Intent.from_dict(data["intent"]) if data.get("intent") else None
        return cls(
            version=data["version"],
            intent=intent,
            tasks=tasks,
            config=config,
            extra={k: v for k, v in data.items() if k not in KNOWN_TOP_LEVEL},
        )


def new_document(config: dict | None = None, **extra) -> WorkflowDocument:
    """Empty document at the current schema version."""
    merged = dict(DEFAULT_CONFIG)
    merged.update(config or {})
    return WorkflowDocument(config=WorkflowConfig.from_dict(merged), extra=extra)


def _check_invariants(doc: WorkflowDocument) -> None:
    seen: set[str] = set()
    for story in doc.stories():
        if story.id in seen:
            raise DuplicateStoryId(story.id)
        seen.add(story.id)


def load_document(path: Path) -> WorkflowDocument:
    """Load and validate the workflow document.

    Raises:
        DocumentNotFound: file missing
        SchemaMismatch: version not supported (file is left untouched)
        DocumentInvalid: malformed JSON or schema violation
    """
    path = Path(path)
    if not path.exists():
        raise DocumentNotFound(path)

    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise DocumentInvalid(path, f"invalid JSON: {e}") from None

    if not isinstance(data, dict):
        raise DocumentInvalid(path, "top level must be an object")

    found = data.get("version")
    if found not in SUPPORTED_SCHEMA_VERSIONS:
        raise SchemaMismatch(found, SUPPORTED_SCHEMA_VERSIONS, path)

    try:
        validate(data, "workflow")
        doc = WorkflowDocument.from_dict(data)
    except ValidationError as e:
        raise DocumentInvalid(path, str(e)) from None
    except (KeyError, TypeError, ValueError) as e:
        raise DocumentInvalid(path, str(e)) from None

    _check_invariants(doc)
    logger.debug(f"[DOC] loaded {path} ({len(doc.story_ids())} stories)")
    return doc


def save_document(doc: WorkflowDocument, path: Path) -> None:
    """Validate and write the document atomically."""
    _check_invariants(doc)
    data = doc.to_dict()
    try:
        validate_before_write(data, "workflow", path)
    except ValidationError as e:
        raise DocumentInvalid(path, str(e)) from None
    write_json_atomic(path, data)
    logger.debug(f"[DOC] saved {path}")


def merge_intent(doc: WorkflowDocument, intent_fields: dict, overwrite: bool = False) -> WorkflowDocument:
    """Return a copy of doc with its intent section populated.

    Raises:
        AlreadyPopulated: intent already holds a real problem statement
        DocumentInvalid: intent_fields don't match the intent schema
    """
    if doc.intent is not None and doc.intent.is_populated and not overwrite:
        raise AlreadyPopulated("intent")

    try:
        validate({"version": doc.version, "intent": intent_fields, "tasks": [],
                  "config": doc.config.to_dict()}, "workflow")
    except ValidationError as e:
        raise DocumentInvalid("<intent>", str(e)) from None

    updated = copy.deepcopy(doc)
    updated.intent = Intent.from_dict(intent_fields)
    return updated


def _next_id(prefix: str, taken: set[str]) -> str:
    highest = 0
    for existing in taken:
        match = GENERATED_ID_RE.match(existing)
        if match and existing.startswith(prefix):
            highest = max(highest, int(match.group(1)))
    candidate = highest + 1
    while f"{prefix}{candidate:03d}" in taken:
        candidate += 1
    return f"{prefix}{candidate:03d}"


def add_tasks_from_prd(doc: WorkflowDocument, parsed_tasks: list[dict]) -> WorkflowDocument:
    """Return a copy of doc with parsed tasks and stories appended.

    Each parsed task is {"id"?, "title", "description"?, "stories": [...]}
    and each story {"id"?, "title", "description"?, "acceptance_criteria",
    "scenarios"}. Stories without an ID get the next free US-NNN. A task
    whose ID already exists receives the stories.

    Raises:
        DuplicateStoryId: a given story ID already exists (doc unchanged)
    """
    updated = copy.deepcopy(doc)
    flags = updated.config.checkpoint_flags()
    story_ids = set(updated.story_ids())
    task_ids = {t.id for t in updated.tasks}

    for raw_task in parsed_tasks:
        task_id = raw_task.get("id")
        task = next((t for t in updated.tasks if task_id and t.id == task_id), None)
        if task is None:
            if not task_id:
                task_id = _next_id(TASK_ID_PREFIX, task_ids)
            task = Task(
                id=task_id,
                title=raw_task.get("title", ""),
                description=raw_task.get("description", ""),
            )
            updated.tasks.append(task)
            task_ids.add(task_id)

        for raw_story in raw_task.get("stories", []):
            story_id = raw_story.get("id")
            if story_id:
                if story_id in story_ids:
                    raise DuplicateStoryId(story_id)
            else:
                story_id = _next_id(STORY_ID_PREFIX, story_ids)
            story_ids.add(story_id)

            fresh = dict(raw_story, id=story_id)
            # Incoming progress is never trusted
            for key in ("state", "checkpoints", "metrics"):
                fresh.pop(key, None)
            task.stories.append(Story.from_dict(fresh, flags))
            logger.info(f"[DOC] added story {story_id} to task {task.id}")

    try:
        validate(updated.to_dict(), "workflow")
    except ValidationError as e:
        raise DocumentInvalid("<prd>", str(e)) from None
    return updated
