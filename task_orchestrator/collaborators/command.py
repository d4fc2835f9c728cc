"""
Subprocess-backed collaborators.

Loads collaborators.yaml to decide which CLI command plays each role.
If no config file exists, built-in defaults are used.

    timeout: 600
    test_author: "claude -p --dangerously-skip-permissions"
    implementer: "claude -p --dangerously-skip-permissions"
    validators:
      playwright: "npx playwright test e2e/{story_id}.spec.ts"
      whitebox: "claude -p"
    cleanup:
      - "npx prettier --write ."
      - "npx tsc --noEmit"

Templates support {workspace}, {story_id} and {prompt}. If {prompt}
appears in the template it is passed as an argument, otherwise the
rendered prompt goes to stdin. A command succeeds when it exits 0.
"""

import logging
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from task_orchestrator.collaborators.base import (
    AgentResult,
    AttemptContext,
    Collaborators,
    ValidatorReport,
    VersionControl,
)
from task_orchestrator.lib.history import format_scenarios
from task_orchestrator.lib.prompts import build_section, render_prompt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600

DEFAULT_COMMANDS = {
    "test_author": "claude -p --dangerously-skip-permissions",
    "implementer": "claude -p --dangerously-skip-permissions",
    "validators": {
        "playwright": "npx playwright test e2e/{story_id}.spec.ts",
        "browser": "claude -p --dangerously-skip-permissions",
        "whitebox": "claude -p --dangerously-skip-permissions",
    },
    "cleanup": [
        "npx prettier --write .",
        "npx tsc --noEmit",
    ],
}

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class CollaboratorsConfig:
    """Command templates from collaborators.yaml."""
    test_author: str = DEFAULT_COMMANDS["test_author"]
    implementer: str = DEFAULT_COMMANDS["implementer"]
    validators: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COMMANDS["validators"]))
    cleanup: list[str] = field(default_factory=lambda: list(DEFAULT_COMMANDS["cleanup"]))
    timeout: int = DEFAULT_TIMEOUT


def load_collaborators_config(path: Optional[Path]) -> CollaboratorsConfig:
    """Load collaborators.yaml; a missing file yields defaults.

    Raises:
        ValueError: the file exists but is not valid YAML of the expected shape
    """
    if path is None or not Path(path).exists():
        return CollaboratorsConfig()

    try:
        data = yaml.safe_load(Path(path).read_text()) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from None

    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    config = CollaboratorsConfig()
    if "test_author" in data:
        config.test_author = str(data["test_author"])
    if "implementer" in data:
        config.implementer = str(data["implementer"])
    if "validators" in data:
        if not isinstance(data["validators"], dict):
            raise ValueError(f"{path}: 'validators' must map names to commands")
        config.validators.update({str(k): str(v) for k, v in data["validators"].items()})
    if "cleanup" in data:
        cleanup = data["cleanup"] or []
        config.cleanup = [cleanup] if isinstance(cleanup, str) else [str(c) for c in cleanup]
    if "timeout" in data:
        config.timeout = int(data["timeout"])
    return config


def build_command(template: str, variables: dict[str, str]) -> tuple[list[str], bool]:
    """Expand a command template.

    Returns (argv, prompt_via_stdin). The prompt is substituted after shell
    splitting so quotes inside it can't break the command line.
    """
    prompt_via_stdin = "{prompt}" not in template
    expanded = template.replace("{prompt}", _PROMPT_PLACEHOLDER)
    for key, value in variables.items():
        if key != "prompt":
            expanded = expanded.replace(f"{{{key}}}", value)

    remaining = re.findall(r'\{(\w+)\}', expanded)
    if remaining:
        raise ValueError(f"Unsubstituted variables {remaining} in command: {template}")

    argv = shlex.split(expanded)
    prompt = variables.get("prompt", "")
    argv = [prompt if arg == _PROMPT_PLACEHOLDER else arg for arg in argv]
    return argv, prompt_via_stdin


def _prompt_variables(ctx: AttemptContext) -> dict[str, str]:
    story = ctx.story
    criteria = "\n".join(f"- {c}" for c in story.acceptance_criteria) or "(none)"
    learnings = None
    if ctx.denylist:
        learnings = "\n".join(f"- `{p}`" for p in ctx.denylist)
    return {
        "story_id": story.id,
        "story_title": story.title,
        "story_description": story.description,
        "acceptance_criteria": criteria,
        "scenarios": format_scenarios(story.scenarios),
        "attempt": str(ctx.attempt),
        "max_attempts": str(ctx.max_attempts),
        "history_section": ctx.history,
        "learnings_section": build_section(learnings, "## Never do this (known anti-patterns)"),
    }


class CommandAgent:
    """Runs one command template as a collaborator."""

    def __init__(self, name: str, template: str, prompt_name: str, timeout: int = DEFAULT_TIMEOUT):
        self.name = name
        self.template = template
        self.prompt_name = prompt_name
        self.timeout = timeout

    def run(self, ctx: AttemptContext, **extra) -> AgentResult:
        variables = _prompt_variables(ctx)
        variables.update(extra)
        prompt = render_prompt(self.prompt_name, **variables)
        argv, via_stdin = build_command(
            self.template,
            {"workspace": str(ctx.workspace), "story_id": ctx.story.id, "prompt": prompt},
        )

        logger.debug(f"[AGENT] {self.name}: {' '.join(argv[:3])}...")
        try:
            result = subprocess.run(
                argv,
                cwd=str(ctx.workspace),
                input=prompt if via_stdin else None,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return AgentResult(success=False, error=f"{self.name} timed out after {self.timeout}s", exit_code=-1)
        except FileNotFoundError:
            return AgentResult(success=False, error=f"{self.name}: command not found: {argv[0]}", exit_code=127)

        return AgentResult(
            success=result.returncode == 0,
            output=result.stdout,
            error=result.stderr.strip(),
            exit_code=result.returncode,
        )

    # Role methods
    def write_tests(self, ctx: AttemptContext) -> AgentResult:
        return self.run(ctx)

    def implement(self, ctx: AttemptContext) -> AgentResult:
        return self.run(ctx)

    def cleanup(self, ctx: AttemptContext) -> AgentResult:
        return self.run(ctx)


class CommandValidator:
    """Validator that passes when its command exits 0."""

    def __init__(self, name: str, template: str, timeout: int = DEFAULT_TIMEOUT):
        self.name = name
        self._agent = CommandAgent(f"validator:{name}", template, "validate", timeout)

    def validate(self, ctx: AttemptContext) -> ValidatorReport:
        result = self._agent.run(ctx, validator=self.name)
        diagnostics = result.error if not result.success else result.output
        return ValidatorReport(
            validator=self.name,
            passed=result.success,
            diagnostics=(diagnostics or result.output).strip(),
        )


def build_collaborators(config: CollaboratorsConfig, vcs: VersionControl) -> Collaborators:
    """Wire command-backed collaborators from config."""
    return Collaborators(
        test_author=CommandAgent("test_author", config.test_author, "test_author", config.timeout),
        implementer=CommandAgent("implementer", config.implementer, "implement", config.timeout),
        validators={
            name: CommandValidator(name, template, config.timeout)
            for name, template in config.validators.items()
        },
        cleaners=[
            CommandAgent(f"cleanup:{template}", template, "cleanup", config.timeout)
            for template in config.cleanup
        ],
        vcs=vcs,
    )
