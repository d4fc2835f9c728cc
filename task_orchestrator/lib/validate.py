"""
JSON Schema checks for the orchestrator's data files.

Everything the orchestrator persists (workflow document, metrics) is checked
against its schema first. Data that fails is never written.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class ValidationError(Exception):
    """Data doesn't match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{location}")


@lru_cache(maxsize=None)
def _validator(schema_name: str) -> jsonschema.Draft7Validator:
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
    return jsonschema.Draft7Validator(json.loads(schema_path.read_text()))


def validate(data: dict, schema_name: str) -> None:
    """
    Check data against the named schema ("workflow", "metrics").

    When several rules fail, the most relevant error is reported.

    Raises:
        ValidationError: naming the offending field path
    """
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    path = ".".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, path)


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """
    Validate data that is about to be written to filepath.

    Raises:
        ValidationError: If data doesn't match schema
    """
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
            e.path,
        ) from None


def write_json_atomic(filepath: Path, data: dict) -> None:
    """Write JSON through a sibling temp file so readers never see a partial file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = filepath.with_name(f".{filepath.name}.tmp")
    tmp_path.write_text(json.dumps(data, indent=2) + "\n")
    tmp_path.replace(filepath)
