"""Story state machine using the transitions library.

Per-story lifecycle:

    pending -> test_write -> build -> validate -> cleanup -> passed
                   ^___________|________|___________|   (retry)
    any active stage -> rolled_back (attempts exhausted, revert succeeded)
    any active stage -> unrecoverable (revert failed)

The story's `state` field is the persisted copy of the machine state; every
transition writes it back to the Story object.

Usage:
    fsm = StoryFSM(story)
    fsm.begin()          # pending -> test_write
    fsm.tests_written()  # test_write -> build
"""

import logging
from enum import Enum
from typing import Callable

from transitions import Machine

from task_orchestrator.lib.document import Story

logger = logging.getLogger(__name__)


class StoryState(Enum):
    PENDING = "pending"
    TEST_WRITE = "test_write"
    BUILD = "build"
    VALIDATE = "validate"
    CLEANUP = "cleanup"
    PASSED = "passed"
    ROLLED_BACK = "rolled_back"
    UNRECOVERABLE = "unrecoverable"


STATES = [s.value for s in StoryState]

ACTIVE_STATES = ["test_write", "build", "validate", "cleanup"]
TERMINAL_STATES = ["passed", "rolled_back", "unrecoverable"]

# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Starting (or restarting after rollback / interrupted run)
    {"trigger": "begin", "source": ["pending", "rolled_back"] + ACTIVE_STATES, "dest": "test_write"},

    # Happy path
    {"trigger": "tests_written", "source": "test_write", "dest": "build"},
    {"trigger": "built", "source": "build", "dest": "validate"},
    {"trigger": "validated", "source": "validate", "dest": "cleanup"},
    {"trigger": "cleaned", "source": "cleanup", "dest": "passed"},
    {"trigger": "pass_without_cleanup", "source": "validate", "dest": "passed"},

    # Failed attempt, budget left
    {"trigger": "retry", "source": ACTIVE_STATES, "dest": "test_write"},

    # Budget exhausted and workspace reverted, or operator rollback
    {"trigger": "roll_back", "source": ACTIVE_STATES + ["passed", "unrecoverable"], "dest": "rolled_back"},

    # Revert itself failed
    {"trigger": "give_up", "source": ACTIVE_STATES + ["passed"], "dest": "unrecoverable"},

    # Operator marks the story done after recorded checkpoints
    {"trigger": "mark_pass", "source": ["pending", "rolled_back"] + ACTIVE_STATES, "dest": "passed"},
]


class StoryFSM:
    """State machine for one story.

    Wraps the transitions library with story-specific logic:
    - Initial state comes from story.state
    - Transitions write the new state back to the story
    - Logs all transitions
    """

    def __init__(self, story: Story, on_transition: Callable[[str, str, str], None] | None = None):
        self.story = story
        self.on_transition = on_transition

        initial = story.state
        if initial not in STATES:
            logger.warning(f"[FSM] {story.id}: Unknown state '{initial}', defaulting to 'pending'")
            initial = "pending"
            story.state = initial

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.story.id}: {from_state} -> {to_state} ({trigger})")
        self.story.state = to_state

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES
