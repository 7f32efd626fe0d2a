"""Function-call definitions for the planboard tools.

``tool_schemas.json`` lists one ``{"type": "function", "function": {...}}``
entry per ``POST /tool:<name>`` route. Handlers reject payload fields they do
not know, so every parameter block must be a closed object schema.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

TOOL_SCHEMAS_PATH = Path(__file__).with_name("tool_schemas.json")
TOOL_ROUTE_PREFIX = "/tool:"
JSON_TYPES = frozenset({"string", "integer", "number", "boolean", "array", "object"})


class ToolSchemaError(RuntimeError):
    """Raised when tool definitions are invalid or unavailable."""


def tool_route(name: str) -> str:
    return f"{TOOL_ROUTE_PREFIX}{name}"


def load_tool_definitions(path: Path | None = None) -> list[dict[str, Any]]:
    definitions = _read_definitions(path or TOOL_SCHEMAS_PATH)
    validate_tool_definitions(definitions)
    return definitions


def _read_definitions(schema_path: Path) -> list[Any]:
    try:
        data = json.loads(schema_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ToolSchemaError(f"Tool definition file not found: {schema_path}") from exc
    except OSError as exc:
        raise ToolSchemaError(f"Unable to read tool definitions: {schema_path}") from exc
    except json.JSONDecodeError as exc:
        raise ToolSchemaError(f"Tool definitions JSON is invalid: {exc}") from exc
    if not isinstance(data, list):
        raise ToolSchemaError("Tool definitions must be a JSON array.")
    return data


def validate_tool_definitions(definitions: list[Any]) -> None:
    seen: set[str] = set()
    for index, definition in enumerate(definitions):
        name = _function_name(index, definition)
        if name in seen:
            raise ToolSchemaError(f"Tool '{name}' is defined more than once.")
        seen.add(name)
        _check_parameters(name, definition["function"].get("parameters"))


def _function_name(index: int, definition: Any) -> str:
    if not isinstance(definition, dict) or definition.get("type") != "function":
        raise ToolSchemaError(f"Tool at index {index} must be a function definition.")
    function = definition.get("function")
    if not isinstance(function, dict):
        raise ToolSchemaError(f"Tool at index {index} is missing 'function' object.")
    name = function.get("name")
    if not isinstance(name, str) or not name.strip() or name != name.strip():
        raise ToolSchemaError(f"Tool at index {index} must define a trimmed, non-empty name.")
    return name


def _check_parameters(name: str, parameters: Any) -> None:
    if not isinstance(parameters, dict) or parameters.get("type") != "object":
        raise ToolSchemaError(f"Tool '{name}' parameters must be an object schema.")
    if parameters.get("additionalProperties") is not False:
        raise ToolSchemaError(f"Tool '{name}' parameters must set additionalProperties to false.")
    properties = parameters.get("properties", {})
    if not isinstance(properties, dict):
        raise ToolSchemaError(f"Tool '{name}' properties must be an object.")
    for field_name, schema in properties.items():
        field_type = schema.get("type") if isinstance(schema, dict) else None
        if field_type not in JSON_TYPES:
            raise ToolSchemaError(f"Tool '{name}' field '{field_name}' has no usable type.")
    for required in parameters.get("required", []):
        if required not in properties:
            raise ToolSchemaError(f"Tool '{name}' requires undeclared parameter '{required}'.")
