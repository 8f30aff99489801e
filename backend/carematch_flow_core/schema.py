from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter


def _resolve_ref(ref: str, defs: dict[str, Any]) -> dict[str, Any]:
    key = ref.rsplit("/", 1)[-1]
    target = defs.get(key)
    if not isinstance(target, dict):
        raise KeyError(f"Unresolvable schema reference: {ref}")
    return target


def _convert(node: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    if "$ref" in node:
        merged = {**_resolve_ref(node["$ref"], defs), **{k: v for k, v in node.items() if k != "$ref"}}
        return _convert(merged, defs)

    for union_key in ("anyOf", "oneOf"):
        if union_key in node:
            options = [option for option in node[union_key] if option.get("type") != "null"]
            nullable = len(options) != len(node[union_key])
            converted = _convert(options[0], defs) if options else {"type": "STRING"}
            if nullable:
                converted["nullable"] = True
            if node.get("description") and "description" not in converted:
                converted["description"] = node["description"]
            return converted

    out: dict[str, Any] = {}
    raw_type = node.get("type")
    if isinstance(raw_type, list):
        non_null = [value for value in raw_type if value != "null"]
        if len(non_null) != len(raw_type):
            out["nullable"] = True
        raw_type = non_null[0] if non_null else "string"
    if "const" in node and "enum" not in node:
        node = {**node, "enum": [node["const"]]}
    if raw_type is None and "enum" in node:
        raw_type = "string"
    if raw_type is None and "properties" in node:
        raw_type = "object"
    if raw_type is None:
        raw_type = "string"

    out["type"] = str(raw_type).upper()
    if node.get("description"):
        out["description"] = node["description"]
    if "enum" in node:
        out["enum"] = [str(value) for value in node["enum"]]

    if raw_type == "array":
        items = node.get("items")
        if isinstance(items, list):
            items = items[0] if items else None
        if not items and isinstance(node.get("prefixItems"), list) and node["prefixItems"]:
            items = node["prefixItems"][0]
        out["items"] = _convert(items or {"type": "string"}, defs)
        if "maxItems" in node:
            out["maxItems"] = node["maxItems"]
    elif raw_type == "object":
        properties = node.get("properties") or {}
        out["properties"] = {name: _convert(value, defs) for name, value in properties.items()}
        required = [name for name in node.get("required", []) if name in properties]
        if required:
            out["required"] = required
    return out


def gemini_schema(type_: Any) -> dict[str, Any]:
    """Render a pydantic model (or any annotation) as a Gemini OpenAPI-subset schema.

    Gemini rejects ``$ref``, ``anyOf`` with null, ``title`` and ``default``, so
    references are inlined, optionals become ``nullable`` and the rest is dropped.
    """
    schema = TypeAdapter(type_).json_schema()
    defs = schema.get("$defs", {})
    return _convert(schema, defs)
