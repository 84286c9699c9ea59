# field_extractor.py
import logging
import re
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for 'no value at this path'. JSON null is a real value, so None cannot be used."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

# Containers searched, in order, when a filter expression is applied to an object response.
ARRAY_CONTAINER_FIELDS = ("data", "items", "results", "records")

FILTER_REGEX = re.compile(r"^\[([^=\]]+)=([^\]]*)\](?:\.(.+))?$")
BRACKET_INDEX_REGEX = re.compile(r"\[(\d+)\]")


def is_missing(value: Any) -> bool:
    return value is MISSING


def normalize_path(field_path: str) -> str:
    """'[0].id' -> '0.id', 'items[2].name' -> 'items.2.name'."""
    normalized = BRACKET_INDEX_REGEX.sub(r".\1", field_path.strip())
    return normalized.strip(".").replace("..", ".")


def extract_field(response: Any, field_path: str) -> Any:
    """
    Pulls a value out of a parsed response.

    Supports dot paths with numeric list indices ("0.id", "data.items.2.name")
    and the filter form "[field=value].path". Returns MISSING when nothing is
    found; never raises.
    """
    if not isinstance(field_path, str) or not field_path.strip():
        return MISSING

    filter_match = FILTER_REGEX.match(field_path.strip())
    if filter_match:
        filter_field, filter_value, extract_path = filter_match.groups()
        return _extract_from_filtered_array(response, filter_field.strip(), filter_value.strip(), extract_path)

    return _walk_path(response, normalize_path(field_path).split("."))


def _walk_path(value: Any, parts: List[str]) -> Any:
    current = value
    for part in parts:
        if isinstance(current, list):
            if not part.isdigit():
                return MISSING
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        elif isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        else:
            return MISSING
    return current


def _stringify(value: Any) -> str:
    # Renders scalars the way they read in JSON, so "[active=true]" matches a boolean true.
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _find_array(response: Any) -> Optional[list]:
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for container in ARRAY_CONTAINER_FIELDS:
            if isinstance(response.get(container), list):
                return response[container]
    return None


def _extract_from_filtered_array(response: Any, filter_field: str, filter_value: str, extract_path: Optional[str]) -> Any:
    array = _find_array(response)
    if array is None:
        logger.debug(f"Filter [{filter_field}={filter_value}]: no array found in response of type {type(response).__name__}.")
        return MISSING

    wanted = filter_value.lower()
    matches = [
        item for item in array
        if isinstance(item, dict) and filter_field in item and _stringify(item[filter_field]).lower() == wanted
    ]
    if not matches:
        return MISSING

    if extract_path:
        values = [extract_field(item, extract_path) for item in matches]
        values = [v for v in values if not is_missing(v)]
    else:
        values = matches

    if not values:
        return MISSING
    if len(values) == 1:
        return values[0]
    return values
