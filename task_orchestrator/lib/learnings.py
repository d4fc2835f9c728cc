"""
Learning enforcer.

LEARNINGS.md accumulates mistakes observed in earlier stories. Bullets under
an "## Anti-patterns" heading form a denylist: collaborator output that
contains any listed pattern is rejected as a failed attempt.

    ## Anti-patterns
    - Tests must not sleep: `waitForTimeout(`
    - `as any`

If a bullet has backticked text, each backticked span is a pattern;
otherwise the whole bullet text is the pattern.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r'^##\s+anti[- ]?patterns\s*$', re.IGNORECASE)
HEADING_RE = re.compile(r'^#{1,6}\s')
BULLET_RE = re.compile(r'^\s*[-*]\s+(.*\S)\s*$')
BACKTICK_RE = re.compile(r'`([^`]+)`')


def parse_learnings(text: str) -> list[str]:
    """Extract denylist patterns from LEARNINGS.md content."""
    patterns: list[str] = []
    in_section = False

    for line in text.splitlines():
        if HEADING_RE.match(line):
            in_section = bool(SECTION_RE.match(line.strip()))
            continue
        if not in_section:
            continue
        match = BULLET_RE.match(line)
        if not match:
            continue
        body = match.group(1)
        spans = BACKTICK_RE.findall(body)
        for pattern in spans or [body]:
            if pattern not in patterns:
                patterns.append(pattern)

    return patterns


@dataclass
class LearningEnforcer:
    """Rejects output that repeats a known bad pattern."""
    patterns: list[str] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> "LearningEnforcer":
        path = Path(path)
        if not path.exists():
            logger.debug(f"[LEARN] no learnings file at {path}")
            return cls()
        patterns = parse_learnings(path.read_text())
        logger.debug(f"[LEARN] loaded {len(patterns)} anti-patterns from {path}")
        return cls(patterns)

    def violations(self, output: str) -> list[str]:
        """Patterns found in output, in denylist order."""
        if not output:
            return []
        return [p for p in self.patterns if p in output]


def append_learning(path: Path, pattern: str, note: str = "") -> None:
    """Add an anti-pattern bullet, creating the file and section as needed."""
    path = Path(path)
    bullet = f"- {note}: `{pattern}`" if note else f"- `{pattern}`"

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"# Learnings\n\n## Anti-patterns\n{bullet}\n")
        return

    lines = path.read_text().splitlines()
    section_at = next((i for i, line in enumerate(lines) if SECTION_RE.match(line.strip())), None)
    if section_at is None:
        lines.extend(["", "## Anti-patterns", bullet])
    else:
        insert_at = section_at + 1
        while insert_at < len(lines) and not HEADING_RE.match(lines[insert_at]):
            insert_at += 1
        # Keep the bullet above trailing blank lines of the section
        while insert_at > section_at + 1 and not lines[insert_at - 1].strip():
            insert_at -= 1
        lines.insert(insert_at, bullet)
    path.write_text("\n".join(lines) + "\n")
