"""Validate composition and module documents against the JSON Schema for their apiVersion and kind."""

import json
from pathlib import Path

import jsonschema

SUPPORTED_API_VERSIONS = {"infragraph.dev/v1": "v1"}
SCHEMA_NAMES = {"Composition": "composition", "Module": "module"}


def _schema_dir() -> Path:
    """Directory containing schema files (infragraph/schema/)."""
    return Path(__file__).resolve().parent.parent / "schema"


def load_schema(api_version: str, kind: str) -> dict:
    """Load the JSON Schema for the given apiVersion and kind.

    apiVersion format is e.g. 'infragraph.dev/v1'; kind is 'Composition' or
    'Module'. The schema file is '<kind>-<version>.json', e.g. module-v1.json.
    """
    if api_version not in SUPPORTED_API_VERSIONS:
        raise ValueError(f"Unsupported apiVersion: {api_version}")
    if kind not in SCHEMA_NAMES:
        raise ValueError(f"Unsupported kind: {kind}")
    path = _schema_dir() / f"{SCHEMA_NAMES[kind]}-{SUPPORTED_API_VERSIONS[api_version]}.json"
    if not path.exists():
        raise FileNotFoundError(f"Schema not found: {path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def validate_document(data: dict, source: str = "document") -> None:
    """Validate a parsed YAML document (dict) against its apiVersion/kind schema.

    Raises:
        jsonschema.ValidationError: If validation fails. Message includes
            the first ten error details. Caller may convert to SystemExit for CLI.
    """
    if not isinstance(data, dict):
        raise jsonschema.ValidationError(f"{source}: expected a mapping at the top level")
    api_version = data.get("apiVersion")
    if not api_version:
        raise jsonschema.ValidationError(f"{source}: missing required field: apiVersion")
    kind = data.get("kind")
    if not kind:
        raise jsonschema.ValidationError(f"{source}: missing required field: kind")
    schema = load_schema(api_version, kind)
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        lines = [f"{source} validation failed:"]
        for i, err in enumerate(errors[:10], 1):
            path = ".".join(str(p) for p in err.absolute_path) if err.absolute_path else "(root)"
            lines.append(f"  {i}. {path}: {err.message}")
        if len(errors) > 10:
            lines.append(f"  ... and {len(errors) - 10} more errors")
        raise jsonschema.ValidationError("\n".join(lines))
