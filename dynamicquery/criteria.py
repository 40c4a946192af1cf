"""Translate a bound query template into a MongoDB filter.

The filter document is read field by field. Plain values become equality checks,
objects with an operator become a regex, range or set-membership check::

    {"name": {"$regex": "^A", "$options": "i"}}
    {"age": {"$gte": 18, "$lte": 30}}
    {"status": {"$in": ["ACTIVE", "PENDING"]}}

All fields are combined with AND, which is the implicit behavior of a MongoDB filter.
Unknown operators are rejected, instead of silently matching all documents.
"""

from __future__ import annotations

import logging

import orjson
import yaml

from dynamicquery.exceptions import MalformedFilterError

logger = logging.getLogger(__name__)

__all__ = ("build_criteria", "parse_template")

RANGE_OPERATORS = ("$gte", "$lte")


def parse_template(text: str):
    """Parse the bound template text.

    This is JSON, but ``String`` parameters are rendered as single-quoted literals.
    When strict parsing fails on such text, it's read again as a YAML flow document,
    which is a JSON superset that accepts single quotes.
    """
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as e:
        if "'" not in text:
            raise MalformedFilterError(f"Unable to parse query: {e}") from e

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedFilterError(f"Unable to parse query: {_yaml_problem(e)}") from e


def _yaml_problem(exc: yaml.YAMLError) -> str:
    problem = getattr(exc, "problem", None)
    mark = getattr(exc, "problem_mark", None)
    if problem and mark is not None:
        return f"{problem} (column {mark.column + 1})"
    return str(exc)


def build_criteria(filter_doc) -> dict:
    """Build the MongoDB filter for a parsed filter document."""
    if not isinstance(filter_doc, dict):
        raise MalformedFilterError(
            f"Query filter must be a JSON object, got {_json_type(filter_doc)}."
        )

    criteria = {}
    for field, value in filter_doc.items():
        if not isinstance(field, str):
            raise MalformedFilterError(f"Field name must be a string, got {field!r}.")
        elif field.startswith("$"):
            # Top-level operators (e.g. $where, $or) would not be a field comparison.
            raise MalformedFilterError(
                f"Unsupported filter operator {field} at the top level.", locator=field
            )
        elif isinstance(value, dict):
            criteria[field] = _build_complex_criteria(field, value)
        elif isinstance(value, (str, bool, int, float)) or value is None:
            criteria[field] = value
        else:
            raise MalformedFilterError(
                f"Unsupported value for field '{field}': {_json_type(value)}.", locator=field
            )

    logger.debug("Built criteria %r", criteria)
    return criteria


def _build_complex_criteria(field: str, value: dict) -> dict:
    """Handle the operators for a single field."""
    if "$regex" in value:
        return _build_regex(field, value)
    elif any(op in value for op in RANGE_OPERATORS):
        return _build_range(field, value)
    elif "$in" in value:
        return _build_in(field, value)
    else:
        names = ", ".join(value) or "{}"
        raise MalformedFilterError(
            f"Unsupported filter operator {names} for field '{field}'.", locator=field
        )


def _build_regex(field: str, value: dict) -> dict:
    _check_operators(field, value, ("$regex", "$options"))
    pattern = value["$regex"]
    if not isinstance(pattern, str):
        raise MalformedFilterError(f"$regex of field '{field}' must be a string.", locator=field)

    criteria = {"$regex": pattern}
    options = value.get("$options")
    if options:
        criteria["$options"] = str(options)
    return criteria


def _build_range(field: str, value: dict) -> dict:
    _check_operators(field, value, RANGE_OPERATORS)
    criteria = {}
    for op in RANGE_OPERATORS:
        if op in value:
            bound = value[op]
            if isinstance(bound, bool) or not isinstance(bound, (int, float, str)):
                raise MalformedFilterError(
                    f"{op} of field '{field}' must be a number or string.", locator=field
                )
            criteria[op] = bound
    return criteria


def _build_in(field: str, value: dict) -> dict:
    _check_operators(field, value, ("$in",))
    items = value["$in"]
    if not isinstance(items, list):
        raise MalformedFilterError(f"$in of field '{field}' must be an array.", locator=field)

    # Values are compared as text.
    return {"$in": [_as_text(item) for item in items]}


def _check_operators(field: str, value: dict, allowed: tuple[str, ...]):
    """Make sure operators are not silently ignored."""
    unknown = [name for name in value if name not in allowed]
    if unknown:
        raise MalformedFilterError(
            f"Unsupported filter operator {', '.join(unknown)} for field '{field}'.",
            locator=field,
        )


def _as_text(value) -> str:
    if isinstance(value, str):
        return value
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif value is None:
        return "null"
    elif isinstance(value, (list, dict)):
        return orjson.dumps(value).decode()
    else:
        return str(value)


def _json_type(value) -> str:
    if isinstance(value, list):
        return "array"
    elif isinstance(value, dict):
        return "object"
    elif isinstance(value, str):
        return "string"
    elif value is None:
        return "null"
    else:
        return type(value).__name__
