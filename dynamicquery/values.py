"""Parsing of scalar parameter values given as text (e.g. on the command line)."""

import re

RE_FLOAT = re.compile(r"\A-?[0-9]+(\.[0-9]+)\Z")
RE_INT = re.compile(r"\A-?[0-9]+\Z")


def auto_cast(value: str):
    """Automatically cast a value to a scalar.

    This recognizes integers, floats and the JSON notations ``true``, ``false`` and ``null``.
    Anything else stays a string.
    """
    if not isinstance(value, str):
        return value

    if RE_INT.match(value):
        return int(value)
    elif RE_FLOAT.match(value):
        return float(value)
    elif value == "true":
        return True
    elif value == "false":
        return False
    elif value == "null":
        return None

    return value


def parse_parameter(pair: str) -> tuple[str, object]:
    """Split a ``name=value`` pair, and cast the value."""
    name, sep, value = pair.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ValueError(f"Expected name=value format, got '{pair}'")
    return name, auto_cast(value)
