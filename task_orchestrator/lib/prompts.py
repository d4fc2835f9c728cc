"""
Prompt templates for collaborator requests.

Templates live in task_orchestrator/prompts/<name>.md and use str.format()
placeholders; {{ and }} are literal braces. <!-- comments --> are notes for
template authors and are removed before rendering.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from string import Formatter

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "placeholders", "build_section", "clear_cache", "PROMPTS_DIR"]

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_COMMENT_RE = re.compile(r'<!--.*?-->\s*', re.DOTALL)


class PromptError(Exception):
    """Prompt template missing or not fully rendered."""


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """Template text for name, author comments removed.

    Raises:
        PromptError: no such template
    """
    path = PROMPTS_DIR / f"{name}.md"
    if not path.is_file():
        raise PromptError(f"Prompt template '{name}' not found at {path}")
    logger.debug(f"[PROMPT] loaded {name}")
    return _COMMENT_RE.sub("", path.read_text()).lstrip()


def placeholders(template: str) -> set[str]:
    """Field names a template expects."""
    return {field for _, field, _, _ in Formatter().parse(template) if field}


def render_prompt(name: str, **variables) -> str:
    """Render template name with variables.

    Every placeholder must have a value; extra variables are ignored.

    Raises:
        PromptError: template missing, or placeholders without a value
    """
    template = load_prompt(name)
    missing = sorted(placeholders(template) - set(variables))
    if missing:
        raise PromptError(
            f"Missing required variable(s) for prompt '{name}': {', '.join(missing)}"
        )
    return template.format(**variables)


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """Markdown section under header, or "" when there is nothing to show."""
    body = content or empty_msg
    if body is None:
        return ""
    return f"{header}\n\n{body}\n"


def clear_cache() -> None:
    load_prompt.cache_clear()
