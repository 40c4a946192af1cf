"""Binding of parameters into query templates.

A template is JSON text that contains ``${name}`` placeholders, for example::

    {"university": "${university}", "age": {"$gte": ${minAge}}}

Each placeholder is replaced by the rendered parameter value.
The ``variableMappings`` type hints decide how a value is rendered:
``String`` values are wrapped in single quotes, everything else is inserted as-is.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

import orjson

from dynamicquery.exceptions import MissingParameterError
from dynamicquery.types import TypeHint

logger = logging.getLogger(__name__)

RE_PLACEHOLDER = re.compile(r"\$\{([^}]+?)\}")

__all__ = ("bind_parameters", "find_placeholders", "render_value")


def find_placeholders(template: str) -> list[str]:
    """Tell which parameter names the template references, in order of appearance."""
    return list(dict.fromkeys(RE_PLACEHOLDER.findall(template)))


def render_value(value, type_hint: str | None = None) -> str:
    """Render a parameter value as text for the template."""
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (list, tuple, dict)):
        text = orjson.dumps(value).decode()
    else:
        text = str(value)

    if type_hint == TypeHint.STRING:
        return f"'{text}'"
    else:
        return text


def bind_parameters(
    template: str, parameters: Mapping[str, object], type_hints: Mapping[str, str] | None = None
) -> str:
    """Replace all ``${name}`` placeholders in the template.

    All placeholders must have a value, otherwise :class:`MissingParameterError`
    is raised and nothing is substituted. A ``None`` value counts as missing.
    Substituted text is not scanned again, so values that contain ``${...}``
    are inserted literally.
    """
    type_hints = type_hints or {}
    for name in find_placeholders(template):
        if parameters.get(name) is None:
            raise MissingParameterError(f"Missing required parameter: {name}", locator=name)

    rendered = {}

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        try:
            return rendered[name]
        except KeyError:
            text = rendered[name] = render_value(parameters[name], type_hints.get(name))
            return text

    result = RE_PLACEHOLDER.sub(_replace, template)
    logger.debug("Bound template %r into %r", template, result)
    return result
