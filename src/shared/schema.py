"""JSON Schema helpers for tool arguments."""

from typing import Any

from jsonschema import Draft7Validator


def validate_arguments(arguments: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate tool arguments against a JSON Schema.

    Args:
        arguments: The arguments supplied by the model
        schema: JSON Schema of the tool parameters

    Returns:
        List of error messages, empty when the arguments are valid
    """
    if not schema:
        return []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))

    return [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]


def build_parameters_schema(parameters: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Create a JSON Schema object from a list of parameter definitions.

    Each definition carries ``name``, ``type`` and optionally
    ``description``, ``enum``, ``default`` and ``required`` (default True).
    Parameters with a default are never required.
    """
    type_mapping = {
        "string": "string",
        "str": "string",
        "integer": "integer",
        "int": "integer",
        "number": "number",
        "float": "number",
        "boolean": "boolean",
        "bool": "boolean",
        "array": "array",
        "list": "array",
        "object": "object",
        "dict": "object",
    }

    properties: dict[str, Any] = {}
    for param in parameters:
        param_schema: dict[str, Any] = {
            "type": type_mapping.get(param.get("type", "string"), "string"),
        }
        if param.get("description"):
            param_schema["description"] = param["description"]
        if "enum" in param:
            param_schema["enum"] = param["enum"]
        if "default" in param:
            param_schema["default"] = param["default"]
        properties[param["name"]] = param_schema

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    required = [
        p["name"] for p in parameters
        if p.get("required", True) and "default" not in p
    ]
    if required:
        schema["required"] = required
    return schema
