"""JSON Schema validation and construction utilities."""

from typing import Any, Optional

from jsonschema import Draft7Validator


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def create_schema(
    properties: dict[str, dict[str, Any]],
    required: Optional[list[str]] = None
) -> dict[str, Any]:
    """
    Create an object schema from property schemas.

    Args:
        properties: Mapping of property name to its schema
        required: Names of required properties

    Returns:
        JSON Schema dictionary
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }
    if required:
        schema["required"] = list(required)
    return schema


def string_property(
    description: str,
    enum: Optional[list[str]] = None,
    default: Optional[str] = None
) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "string", "description": description}
    if enum is not None:
        prop["enum"] = enum
    if default is not None:
        prop["default"] = default
    return prop


def boolean_property(description: str, default: Optional[bool] = None) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "boolean", "description": description}
    if default is not None:
        prop["default"] = default
    return prop


def integer_property(
    description: str,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    default: Optional[int] = None
) -> dict[str, Any]:
    prop: dict[str, Any] = {"type": "integer", "description": description}
    if minimum is not None:
        prop["minimum"] = minimum
    if maximum is not None:
        prop["maximum"] = maximum
    if default is not None:
        prop["default"] = default
    return prop


def array_property(description: str, items: dict[str, Any]) -> dict[str, Any]:
    return {"type": "array", "description": description, "items": items}


def map_property(description: str, value_schema: dict[str, Any]) -> dict[str, Any]:
    """Object with arbitrary string keys whose values match ``value_schema``."""
    return {
        "type": "object",
        "description": description,
        "additionalProperties": value_schema,
    }
