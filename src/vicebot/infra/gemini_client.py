"""Gemini model factory for intake agents."""

import copy

import google.generativeai as genai

from vicebot.app.config import get_settings

# JSON Schema keywords emitted by pydantic that the Gemini SDK refuses
_DROPPED_KEYWORDS = frozenset({
    "title", "default", "examples", "additionalProperties",
    "minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum",
    "minLength", "maxLength", "pattern", "minItems", "maxItems", "uniqueItems",
})

_configured_key: str | None = None


def _collapse_optional(node: dict) -> dict:
    """``anyOf: [X, {"type": "null"}]`` (pydantic Optional) -> X with nullable."""
    variants = node.get("anyOf")
    if not isinstance(variants, list):
        return node
    non_null = [v for v in variants if not (isinstance(v, dict) and v.get("type") == "null")]
    if len(non_null) != 1 or len(non_null) == len(variants):
        return node
    merged = {k: v for k, v in node.items() if k != "anyOf"}
    merged.update(non_null[0])
    merged["nullable"] = True
    return merged


def clean_schema(schema: dict) -> dict:
    """Make a pydantic JSON Schema acceptable as a Gemini ``response_schema``.

    ``$ref`` pointers are replaced by their ``$defs`` bodies, Optional
    unions become ``nullable`` and unsupported keywords are dropped. The
    input is left untouched.
    """
    schema = copy.deepcopy(schema)
    defs = schema.pop("$defs", None) or schema.pop("definitions", None) or {}

    def _walk(node):
        if isinstance(node, list):
            return [_walk(item) for item in node]
        if not isinstance(node, dict):
            return node
        if "$ref" in node:
            name = node["$ref"].rsplit("/", 1)[-1]
            if name not in defs:
                return node
            node = {**copy.deepcopy(defs[name]), **{k: v for k, v in node.items() if k != "$ref"}}
        node = _collapse_optional(node)
        return {
            key: (_walk(value) if key != "properties" else {p: _walk(s) for p, s in value.items()})
            for key, value in node.items()
            if key not in _DROPPED_KEYWORDS
        }

    return _walk(schema)


def _configure() -> None:
    """Configure the SDK once per API key."""
    global _configured_key
    key = get_settings().gemini_api_key
    if key != _configured_key:
        genai.configure(api_key=key)
        _configured_key = key


def get_model(
    model_name: str,
    temperature: float = 0.2,
    json_mode: bool = False,
    response_schema: dict | None = None,
    system_instruction: str | None = None,
):
    """Return a ``GenerativeModel`` set up for one intake agent call.

    ``response_schema`` only applies in ``json_mode``.
    """
    _configure()

    generation_config: dict = {"temperature": temperature}
    if json_mode:
        generation_config["response_mime_type"] = "application/json"
        if response_schema:
            generation_config["response_schema"] = clean_schema(response_schema)

    return genai.GenerativeModel(
        model_name=model_name,
        generation_config=generation_config,
        system_instruction=system_instruction,
    )
