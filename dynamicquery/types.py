"""The data model of the query engine.

All definitions are immutable once they are created. The catalogue file is
deserialized into these structures directly at load time, so shape errors
surface once at startup instead of during execution.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from dynamicquery.exceptions import UnsupportedOperationError

__all__ = (
    "OperationKind",
    "TypeHint",
    "QueryDefinition",
    "MessageTables",
    "CatalogueFile",
)

EMPTY_MAPPING = MappingProxyType({})


class OperationKind(Enum):
    """The closed set of operations a query definition can perform."""

    FIND = "FIND"
    AGGREGATE = "AGGREGATE"
    COUNT = "COUNT"

    @classmethod
    def from_string(cls, value) -> OperationKind:
        """Parse the 'type' of a definition, case-insensitive."""
        if isinstance(value, OperationKind):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise UnsupportedOperationError(
                f"Unsupported query type: {value}", locator=str(value)
            ) from None

    def __repr__(self):
        # Make repr(definition) easier to copy-paste
        return f"{self.__class__.__name__}.{self.name}"


class TypeHint:
    """Names used in the ``variableMappings`` section."""

    #: Values are wrapped in single quotes, other hints (e.g. "Integer") insert the value as-is.
    STRING = "String"


def _freeze(mapping: Mapping | None) -> Mapping:
    return MappingProxyType(dict(mapping)) if mapping else EMPTY_MAPPING


@dataclass(frozen=True)
class QueryDefinition:
    """A named, parameterized query.

    The template is JSON text with ``${name}`` placeholders,
    which becomes a filter (FIND/COUNT) or a pipeline (AGGREGATE) after binding.
    """

    #: Name of the query, unique within its entity (catalogue) or globally (stored).
    name: str
    #: The JSON text with ``${name}`` placeholders.
    template: str
    #: What to do with the bound template.
    operation_kind: OperationKind
    #: The collection the operation runs against.
    target_collection: str
    #: Parameters that must be present for :meth:`QueryExecutor.validate_parameters`.
    required_parameters: tuple[str, ...] = ()
    #: Parameter values used when the caller doesn't provide them (stored queries).
    default_parameters: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)
    #: How parameters are rendered in the template, e.g. ``{"name": "String"}``.
    variable_type_hints: Mapping[str, str] = field(default_factory=lambda: EMPTY_MAPPING)

    #: The entity this definition is registered under (catalogue only).
    entity: str | None = None
    #: The identifier of the record (stored only).
    id: str | None = None

    #: Advisory metadata for an outer caching layer.
    cacheable: bool = False
    cache_timeout_seconds: int | None = 300

    #: Custom messages for the result envelope (stored only).
    success_message: str | None = None
    error_message: str | None = None

    def __post_init__(self):
        # Normalize input, so nested values are read-only as well.
        object.__setattr__(self, "operation_kind", OperationKind.from_string(self.operation_kind))
        object.__setattr__(self, "required_parameters", tuple(self.required_parameters or ()))
        object.__setattr__(self, "default_parameters", _freeze(self.default_parameters))
        object.__setattr__(self, "variable_type_hints", _freeze(self.variable_type_hints))

    @property
    def dotted_name(self) -> str:
        """The ``entity.operation`` name of a catalogue definition."""
        return f"{self.entity}.{self.name}" if self.entity else self.name

    @classmethod
    def from_mapping(
        cls, entity: str, operation: str, data: dict, type_hints: Mapping[str, str]
    ) -> QueryDefinition:
        """Parse a single ``queryMappings`` entry of the configuration file."""
        if not isinstance(data, dict):
            raise TypeError(f"{entity}.{operation}: expected an object, got {type(data).__name__}")

        try:
            template = data["query"]
            collection = data["collection"]
            kind = data["type"]
        except KeyError as e:
            raise ValueError(f"{entity}.{operation}: missing '{e.args[0]}' field") from None

        if not isinstance(template, str):
            raise TypeError(f"{entity}.{operation}: 'query' must be a JSON string")

        parameters = data.get("parameters")
        if parameters is None:
            parameters = []
        if not isinstance(parameters, list) or not all(isinstance(p, str) for p in parameters):
            raise TypeError(f"{entity}.{operation}: 'parameters' must be a list of names")

        return cls(
            name=operation,
            template=template,
            operation_kind=OperationKind.from_string(kind),
            target_collection=collection,
            required_parameters=tuple(parameters),
            variable_type_hints=type_hints,
            entity=entity,
        )

    def as_dict(self) -> dict:
        """Provide the definition in the same shape as the configuration file."""
        return {
            "query": self.template,
            "collection": self.target_collection,
            "type": self.operation_kind.value,
            "parameters": list(self.required_parameters),
        }


@dataclass(frozen=True)
class MessageTables:
    """The human-readable messages, keyed by short codes."""

    success: Mapping[str, str] = field(default_factory=lambda: EMPTY_MAPPING)
    error: Mapping[str, str] = field(default_factory=lambda: EMPTY_MAPPING)

    @classmethod
    def from_mapping(cls, data: dict | None) -> MessageTables:
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            raise TypeError("'messages' must be an object")
        return cls(
            success=_freeze(_string_table(data.get("success"), "messages.success")),
            error=_freeze(_string_table(data.get("error"), "messages.error")),
        )


@dataclass(frozen=True)
class CatalogueFile:
    """The typed structure of the query configuration resource."""

    messages: MessageTables
    #: entity -> operation -> definition
    query_mappings: Mapping[str, Mapping[str, QueryDefinition]]
    #: parameter name -> type hint
    variable_mappings: Mapping[str, str]
    #: Free-form documentation payload.
    sample_queries: Any = None

    @classmethod
    def from_mapping(cls, data: dict) -> CatalogueFile:
        """Deserialize the parsed JSON. This raises TypeError/ValueError for bad shapes."""
        if not isinstance(data, dict):
            raise TypeError("Configuration root must be an object")

        variable_mappings = _freeze(
            _string_table(data.get("variableMappings"), "variableMappings")
        )

        raw_mappings = data.get("queryMappings")
        if raw_mappings is None:
            raw_mappings = {}
        elif not isinstance(raw_mappings, dict):
            raise TypeError("'queryMappings' must be an object")

        query_mappings = {}
        for entity, operations in raw_mappings.items():
            if not isinstance(operations, dict):
                raise TypeError(f"queryMappings.{entity} must be an object")
            query_mappings[entity] = MappingProxyType(
                {
                    operation: QueryDefinition.from_mapping(
                        entity, operation, mapping, variable_mappings
                    )
                    for operation, mapping in operations.items()
                }
            )

        return cls(
            messages=MessageTables.from_mapping(data.get("messages")),
            query_mappings=MappingProxyType(query_mappings),
            variable_mappings=variable_mappings,
            sample_queries=data.get("sampleQueries"),
        )


def _string_table(value, path: str) -> dict[str, str]:
    """Validate a string -> string table, values are converted to text."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{path}' must be an object")
    return {str(key): str(text) for key, text in value.items()}
