"""
Phase gate for planning phases.

Each phase lists the phases that must have completed before it. A phase is
complete when its checkpoint exists and is readable. Prerequisites marked freshness-sensitive
must also have been completed within the staleness window; an older record
counts as missing.

Usage:
    gate = PhaseGate(store, session)
    gate.enter("prd_complete")      # raises OutOfOrderPhaseError if blocked
    ...
    gate.complete("prd_complete")
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

from task_orchestrator.errors import CheckpointNotFound, OutOfOrderPhaseError, UnknownPhase
from task_orchestrator.lib.checkpoints import CheckpointStore
from task_orchestrator.lib.constants import DEFAULT_STALENESS_DAYS
from task_orchestrator.lib.session import WorkflowSession

logger = logging.getLogger(__name__)


class GateReason(Enum):
    MISSING = "MISSING"
    STALE = "STALE"


@dataclass(frozen=True)
class PhaseDefinition:
    name: str
    prerequisites: tuple[str, ...] = ()
    # Prerequisites whose checkpoint must be younger than the staleness window
    fresh: frozenset[str] = frozenset()
    planning: bool = True
    # Completing this phase ends planning mode
    ends_planning: bool = False


EXECUTION_PHASE = "execution"

DEFAULT_PHASES = [
    PhaseDefinition("codebase_mapped"),
    PhaseDefinition(
        "intent_complete",
        prerequisites=("codebase_mapped",),
        fresh=frozenset({"codebase_mapped"}),
    ),
    PhaseDefinition("prd_complete", prerequisites=("intent_complete",)),
    PhaseDefinition("user_stories_complete", prerequisites=("prd_complete",)),
    PhaseDefinition(
        "conversion_complete",
        prerequisites=("user_stories_complete",),
        ends_planning=True,
    ),
    PhaseDefinition(EXECUTION_PHASE, prerequisites=("conversion_complete",), planning=False),
]


@dataclass
class GateDecision:
    phase: str
    allowed: bool
    prerequisite: Optional[str] = None
    reason: Optional[GateReason] = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass
class PhaseStatus:
    name: str
    complete: bool
    age: Optional[timedelta] = None
    stale_prerequisites: list[str] = field(default_factory=list)


class PhaseGate:
    """Enforces phase ordering through checkpoint records."""

    def __init__(
        self,
        store: CheckpointStore,
        session: WorkflowSession,
        phases: list[PhaseDefinition] | None = None,
        staleness_window: timedelta = timedelta(days=DEFAULT_STALENESS_DAYS),
    ):
        self.store = store
        self.session = session
        self.phases = {p.name: p for p in (phases or DEFAULT_PHASES)}
        self.staleness_window = staleness_window

        for phase in self.phases.values():
            for prereq in phase.prerequisites:
                if prereq not in self.phases:
                    raise UnknownPhase(prereq)

    def _definition(self, phase: str) -> PhaseDefinition:
        try:
            return self.phases[phase]
        except KeyError:
            raise UnknownPhase(phase) from None

    def _age(self, name: str) -> Optional[timedelta]:
        """Age of a readable marker; None when missing or corrupted."""
        try:
            return self.store.age_of(name)
        except CheckpointNotFound:
            return None

    def check(self, phase: str) -> GateDecision:
        """Decide whether phase may start, naming the first blocking prerequisite."""
        definition = self._definition(phase)

        for prereq in definition.prerequisites:
            age = self._age(prereq)
            if age is None:
                return GateDecision(phase, False, prereq, GateReason.MISSING)
            if prereq in definition.fresh and age > self.staleness_window:
                return GateDecision(phase, False, prereq, GateReason.STALE)

        return GateDecision(phase, True)

    def can_enter(self, phase: str) -> bool:
        return self.check(phase).allowed

    def enter(self, phase: str) -> None:
        """Start phase.

        Raises:
            OutOfOrderPhaseError: a prerequisite is missing or stale
        """
        decision = self.check(phase)
        if not decision.allowed:
            logger.warning(
                f"[GATE] refused {phase}: {decision.prerequisite} {decision.reason.value}"
            )
            raise OutOfOrderPhaseError(phase, decision.prerequisite, decision.reason.value)

        definition = self.phases[phase]
        self.session.enter_phase(phase, planning=definition.planning)
        logger.info(f"[GATE] entered {phase}")

    def complete(self, phase: str) -> None:
        """Write the phase checkpoint. Re-completing only refreshes the timestamp."""
        definition = self._definition(phase)
        self.store.write(phase)
        logger.info(f"[GATE] completed {phase}")
        if definition.ends_planning:
            self.session.end_planning()

    def status(self) -> list[PhaseStatus]:
        """Completion state of every phase, in table order."""
        result = []
        for definition in self.phases.values():
            age = self._age(definition.name)
            stale = [
                p for p in definition.fresh
                if (self._age(p) or timedelta(0)) > self.staleness_window
            ]
            result.append(PhaseStatus(definition.name, age is not None, age, sorted(stale)))
        return result
