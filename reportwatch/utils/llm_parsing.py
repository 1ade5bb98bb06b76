"""Utilities for parsing JSON from LLM responses."""

import json


def parse_llm_json(text: str) -> dict:
    """
    Parse a JSON object from an LLM response.

    Handles raw JSON, JSON wrapped in ```json ... ``` or ``` ... ``` fences,
    and a single object surrounded by prose.

    Raises:
        json.JSONDecodeError: If no valid JSON object can be extracted
        ValueError: If the JSON is valid but not an object
    """
    stripped = (text or "").strip()

    if "```json" in stripped:
        start = stripped.find("```json") + 7
        end = stripped.find("```", start)
        stripped = stripped[start:end if end != -1 else None].strip()
    elif "```" in stripped:
        start = stripped.find("```") + 3
        end = stripped.find("```", start)
        stripped = stripped[start:end if end != -1 else None].strip()
    elif not stripped.startswith("{"):
        first, last = stripped.find("{"), stripped.rfind("}")
        if first != -1 and last > first:
            stripped = stripped[first:last + 1]

    parsed = json.loads(stripped)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
