"""Collection definitions: loading and JSON Schema validation.

A definitions file lists the collections of the service with their field
signatures. Reference fields use ``Ref<Collection>`` signatures:

    collections:
      - name: User
        fields:
          firstName: {signature: String}
          account: {signature: "Ref<Account>?"}
        computed_fields:
          age: {signature: Number, body: "(doc) => ..."}
"""

import logging
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema import Draft7Validator

from .errors import SchemaValidationError
from .references import field_signatures, parse_signature

logger = logging.getLogger(__name__)

_FIELD_SCHEMA = {
    "oneOf": [
        {"type": "string"},
        {
            "type": "object",
            "properties": {"signature": {"type": "string"}},
            "required": ["signature"],
        },
    ]
}

DEFINITIONS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "collections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "fields": {
                        "type": "object",
                        "additionalProperties": _FIELD_SCHEMA,
                    },
                    "computed_fields": {
                        "type": "object",
                        "additionalProperties": {
                            "type": "object",
                            "properties": {
                                "signature": {"type": "string"},
                                "body": {"type": "string"},
                            },
                            "required": ["signature"],
                        },
                    },
                    "history_days": {"type": "integer", "minimum": 0},
                    "ttl_days": {"type": ["integer", "null"], "minimum": 0},
                },
                "required": ["name"],
            },
        }
    },
    "required": ["collections"],
}


def validate_definitions(data: Any) -> tuple[bool, str | None]:
    """Validate a definitions document against DEFINITIONS_SCHEMA.

    Returns:
        Tuple of (valid, error_message).
        - (True, None) if the document is valid
        - (False, "error details") if it is invalid
    """
    try:
        validator = Draft7Validator(DEFINITIONS_SCHEMA)
        errors = list(validator.iter_errors(data))
    except jsonschema.SchemaError as e:
        # Schema itself is invalid
        error_msg = f"Invalid definitions schema: {e.message}"
        logger.error(error_msg)
        return (False, error_msg)

    if not errors:
        return (True, None)

    # Format errors into a readable message
    error_msgs = []
    for error in errors:
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        error_msgs.append(f"  - {path}: {error.message}")

    return (False, "Invalid collection definitions:\n" + "\n".join(error_msgs))


def dangling_references(definitions: list[dict[str, Any]]) -> list[str]:
    """Describe reference fields pointing at collections that are not defined."""
    names = {d["name"] for d in definitions}
    problems = []
    for definition in definitions:
        for field_name, signature in field_signatures(definition).items():
            ref = parse_signature(signature)
            if ref is not None and ref.collection not in names:
                problems.append(
                    f"{definition['name']}.{field_name} references "
                    f"unknown collection '{ref.collection}'"
                )
    return problems


def load_definitions(path: str | Path) -> list[dict[str, Any]]:
    """Load and validate collection definitions from a YAML file.

    Raises:
        SchemaValidationError: If the file is unreadable or invalid.
    """
    path = Path(path).expanduser()
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SchemaValidationError(f"Cannot read definitions from {path}: {e}") from e

    valid, error = validate_definitions(data)
    if not valid:
        raise SchemaValidationError(error)

    definitions = data["collections"]
    for problem in dangling_references(definitions):
        logger.warning(problem)

    logger.info(f"Loaded {len(definitions)} collection definitions from {path}")
    return definitions
