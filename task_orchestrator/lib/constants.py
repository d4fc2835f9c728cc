"""Shared constants for the orchestrator."""

import re

# Workflow document schema versions this build reads and writes
CURRENT_SCHEMA_VERSION = "3.0"
SUPPORTED_SCHEMA_VERSIONS = ["3.0"]

# Story ID / task ID generation
STORY_ID_PREFIX = "US-"
TASK_ID_PREFIX = "T-"
GENERATED_ID_RE = re.compile(r'^(?:US|T)-(\d+)$')

# Checkpoint names double as file names
CHECKPOINT_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')
VALIDATOR_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')

# Per-story checkpoint flags (validator flags are inserted between build and cleanup)
CHECKPOINT_TESTS_WRITTEN = "tests_written"
CHECKPOINT_BUILD_COMPLETE = "build_complete"
CHECKPOINT_CLEANUP_COMPLETE = "cleanup_complete"
VALIDATED_SUFFIX = "_validated"

DEFAULT_VALIDATORS = ["playwright", "browser", "whitebox"]
WHITEBOX_VALIDATOR = "whitebox"

# Document config defaults
DEFAULT_CONFIG = {
    "max_attempts_per_story": 5,
    "validators": list(DEFAULT_VALIDATORS),
    "enable_whitebox": True,
    "enable_learning_enforcer": True,
    "cleanup_per_story": True,
    "parallel_validate": True,
    "test_timeout_ms": 30000,
}

# Intent text written by migration; counts as "not populated"
INTENT_PLACEHOLDER_PREFIX = "[To be filled"

RISK_LEVELS = ("low", "medium", "high")

# Freshness window for codebase mapping, in days
DEFAULT_STALENESS_DAYS = 30

DEFAULT_STATE_DIR = ".orchestrator"
