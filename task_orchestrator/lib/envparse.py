"""
Safe .env file parser for workflow.env.

Parses KEY=value lines without shell execution and rejects values that
look like shell substitutions. Typed getters convert values with a
clear error naming the offending key.
"""

import re
from pathlib import Path

# Shell constructs a workflow.env value may not contain: backticks,
# $( and ${ substitution, ; chaining, && and pipes.
_SHELL_RE = re.compile(r"`|\$[({]|;|&&|\|")

_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


def _unquote(value: str) -> str:
    if len(value) > 1 and value[0] in "\"'" and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse env-file text into a dict.

    Raises:
        ValueError: if syntax is invalid or a forbidden pattern is found
    """
    env = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        where = f"{source}:{lineno}"
        key, sep, value = (part.strip() for part in line.partition("="))
        if not sep:
            raise ValueError(f"{where}: expected KEY=value, got '{line}'")
        if not _KEY_RE.match(key):
            raise ValueError(f"{where}: Invalid key '{key}' (use A-Z, 0-9 and _)")

        value = _unquote(value)
        if _SHELL_RE.search(value):
            raise ValueError(f"{where}: Forbidden shell syntax in value of {key}")
        env[key] = value
    return env


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse env file at filepath.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env(path.read_text(), source=str(path))


def get_int(env: dict[str, str], key: str, default: int) -> int:
    """Read an integer setting, falling back to default when unset."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got '{raw}'") from None


def get_list(env: dict[str, str], key: str, default: list[str]) -> list[str]:
    """Read a comma separated list setting."""
    raw = env.get(key)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]
