"""
Parsing of agent responses.

Model output is parsed in two steps: a strict ``json.loads`` of the response
(with markdown code fences removed), then a salvage pass that looks for the
first brace-balanced object embedded in surrounding prose. Only when both fail
is the response rejected.

Once parsed, every entry is validated against the fixed enums on its own and
invalid entries are dropped.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import ExtractionParseError
from ..models import (
    EntityCandidate,
    RelationshipCandidate,
    ExtractionResult,
    BacklogCandidate,
    WorkspaceFileCandidate,
    SynthesisResult,
)


ModelT = TypeVar("ModelT", bound=BaseModel)


def strip_code_fences(response: str) -> str:
    """Remove a markdown code block wrapped around the whole response."""
    response = response.strip()

    if response.startswith("```json"):
        response = response[7:]
    elif response.startswith("```"):
        response = response[3:]
    if response.endswith("```"):
        response = response[:-3]

    return response.strip()


def _balanced_object_end(text: str, start: int) -> Optional[int]:
    """Index of the brace closing the object opened at ``start``, if any."""
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index

    return None


def salvage_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find the first brace-balanced JSON object inside arbitrary text.

    Args:
        text: Text that may contain a JSON object among prose

    Returns:
        The decoded object, or None if no candidate decodes
    """
    start = text.find("{")
    while start != -1:
        end = _balanced_object_end(text, start)
        candidate = None
        if end is not None:
            try:
                candidate = json.loads(text[start:end + 1])
            except json.JSONDecodeError as e:
                logging.debug(f"Candidate object at offset {start} is not valid JSON: {e}")
        if isinstance(candidate, dict):
            return candidate
        start = text.find("{", start + 1)
    return None


def parse_json_response(response: str) -> Dict[str, Any]:
    """
    Decode an agent response into a JSON object.

    Args:
        response: Raw text returned by the model

    Returns:
        The decoded object

    Raises:
        ExtractionParseError: If no JSON object can be recovered
    """
    cleaned = strip_code_fences(response or "")

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logging.debug("Strict JSON parse failed, trying to salvage an embedded object")
        parsed = salvage_json_object(cleaned)
        if parsed is None:
            raise ExtractionParseError("Agent response does not contain a JSON object", response)

    if not isinstance(parsed, dict):
        raise ExtractionParseError(
            f"Expected a JSON object, got {type(parsed).__name__}", response
        )
    return parsed


def _section(payload: Dict[str, Any], key: str, response: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ExtractionParseError(f"'{key}' must be a list, got {type(value).__name__}", response)
    return value


def _validate_entries(entries: List[Any], model: Type[ModelT], label: str) -> List[ModelT]:
    valid = []
    for entry in entries:
        if not isinstance(entry, dict):
            logging.warning(f"Dropping {label}: not an object: {entry!r}")
            continue
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as e:
            logging.warning(f"Dropping invalid {label} {entry!r}: {e.error_count()} validation error(s)")
    return valid


def parse_extraction(response: str) -> ExtractionResult:
    """
    Parse the extraction agent's response.

    Entities with an unknown type, blank names, and relationships missing an
    endpoint or type are dropped.

    Raises:
        ExtractionParseError: If the response is not an object with list sections
    """
    payload = parse_json_response(response)

    return ExtractionResult(
        entities=_validate_entries(_section(payload, "entities", response), EntityCandidate, "entity"),
        relationships=_validate_entries(
            _section(payload, "relationships", response), RelationshipCandidate, "relationship"
        )
    )


def parse_synthesis(response: str) -> SynthesisResult:
    """
    Parse the synthesis agent's response.

    Backlog items with an unknown type or empty content and workspace files
    with an unknown room or missing fields are dropped.

    Raises:
        ExtractionParseError: If the response is not an object with list sections
    """
    payload = parse_json_response(response)

    summary = payload.get("summary")
    entities = _section(payload, "entities", response)

    return SynthesisResult(
        summary=summary.strip() if isinstance(summary, str) else "",
        entities=[entry for entry in entities if isinstance(entry, dict)],
        backlog_items=_validate_entries(
            _section(payload, "backlog_items", response), BacklogCandidate, "backlog item"
        ),
        workspace_files=_validate_entries(
            _section(payload, "workspace_files", response), WorkspaceFileCandidate, "workspace file"
        )
    )
