"""
Field lists derived from the operation embedded in a descriptor.

Two views exist: query/header parameters (`parameters[]`) and JSON request
body properties (`requestBody.content["application/json"].schema`). Field
ids carry the request position as a prefix ("query_", "header_", "body_"),
which is how the request assembler routes mapped values back.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from .descriptors import ApiDescriptor, try_decode_descriptor


FieldType = Literal["string", "number", "boolean", "array", "object"]
FieldRole = Literal["query_header", "body"]

BODY_METHODS = ("POST", "PUT", "PATCH")
NO_USE_SCENARIO = "no_use_scenario"

_TYPE_MAP: dict[str, FieldType] = {
    "string": "string",
    "number": "number",
    "integer": "number",
    "boolean": "boolean",
    "array": "array",
    "object": "object",
}


@dataclass
class FieldSpec:
    id: str
    display_name: str
    required: bool
    type: FieldType
    location: str

    default_match: bool = True
    display: bool = True
    can_be_used_to_match: bool = True


def map_schema_type(schema_type: Any) -> FieldType:
    return _TYPE_MAP.get(schema_type, "string") if isinstance(schema_type, str) else "string"


def json_body_schema(operation: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """The application/json schema of an operation's request body, if it has properties."""
    if not operation:
        return None
    request_body = operation.get("requestBody")
    if not isinstance(request_body, dict):
        return None
    content = request_body.get("content")
    if not isinstance(content, dict):
        return None
    json_content = content.get("application/json")
    if not isinstance(json_content, dict):
        return None
    schema = json_content.get("schema")
    if not isinstance(schema, dict) or not isinstance(schema.get("properties"), dict):
        return None
    return schema


def _required_first(fields: list[FieldSpec]) -> list[FieldSpec]:
    # sorted() is stable, so equally-required fields keep declaration order
    return sorted(fields, key=lambda f: not f.required)


def _parameter_fields(operation: dict[str, Any]) -> list[FieldSpec]:
    fields: list[FieldSpec] = []
    for param in operation.get("parameters") or []:
        if not isinstance(param, dict) or not param.get("name"):
            continue
        name = str(param["name"])
        location = str(param.get("in") or "")
        required = bool(param.get("required", False))
        tag = "[Q]" if location == "query" else "[H]"
        description = f" - {param['description']}" if param.get("description") else ""
        schema = param.get("schema") if isinstance(param.get("schema"), dict) else {}

        fields.append(
            FieldSpec(
                id=f"{location}_{name}",
                display_name=f"{name}{' *' if required else ''} {tag}{description}",
                required=required,
                type=map_schema_type(schema.get("type") or "string"),
                location=location,
            )
        )
    return fields


def _body_fields(operation: dict[str, Any]) -> list[FieldSpec]:
    schema = json_body_schema(operation)
    if schema is None:
        return []

    required_keys = schema.get("required") or []
    fields: list[FieldSpec] = []
    for key, prop in schema["properties"].items():
        prop = prop if isinstance(prop, dict) else {}
        required = key in required_keys
        description = f" - {prop['description']}" if prop.get("description") else ""
        fields.append(
            FieldSpec(
                id=f"body_{key}",
                display_name=f"{key}{' *' if required else ''}{description}",
                required=required,
                type=map_schema_type(prop.get("type") or "string"),
                location="body",
            )
        )
    return fields


def fields_for(descriptor: ApiDescriptor, method: str, role: FieldRole) -> list[FieldSpec]:
    """
    Fields for the first path of `descriptor` under `method`, required first.

    role="query_header" lists `parameters[]`; role="body" lists the JSON body
    properties, and only for POST/PUT/PATCH.
    """
    operation = descriptor.operation(method)
    if operation is None:
        return []

    if role == "query_header":
        return _required_first(_parameter_fields(operation))

    if (method or "").upper() not in BODY_METHODS:
        return []
    return _required_first(_body_fields(operation))


def parameters_fields(scenario: str, method: str, api_selection: str) -> list[FieldSpec]:
    """Query/header field view; only populated when no scenario template is used."""
    if scenario != NO_USE_SCENARIO or not method or not api_selection:
        return []
    descriptor = try_decode_descriptor(api_selection)
    if descriptor is None:
        return []
    return fields_for(descriptor, method, "query_header")


def body_fields(scenario: str, method: str, api_selection: str) -> list[FieldSpec]:
    if scenario != NO_USE_SCENARIO or (method or "").upper() not in BODY_METHODS or not api_selection:
        return []
    descriptor = try_decode_descriptor(api_selection)
    if descriptor is None:
        return []
    return fields_for(descriptor, method, "body")


# ----------------------------
# Default body (display only)
# ----------------------------

def _default_value(prop: dict[str, Any]) -> Any:
    kind = prop.get("type")
    example = prop.get("example")

    if kind == "string":
        return example or ""
    if kind in ("number", "integer"):
        return example or 0
    if kind == "boolean":
        return example if "example" in prop else False
    if kind == "array":
        return example or []
    if kind == "object":
        return example or {}
    return example if "example" in prop else None


def default_body(descriptor: ApiDescriptor, method: str) -> Optional[dict[str, Any]]:
    """
    Example JSON body built from the schema, or None if the operation has no
    JSON body properties. Not used to build requests.
    """
    schema = json_body_schema(descriptor.operation(method))
    if schema is None:
        return None
    return {
        key: _default_value(prop if isinstance(prop, dict) else {})
        for key, prop in schema["properties"].items()
    }
