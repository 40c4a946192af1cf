"""The catalogue of named queries, read from the configuration resource.

The resource is a JSON file with the sections ``messages``, ``queryMappings``,
``variableMappings`` and ``sampleQueries``. For example::

    {
      "queryMappings": {
        "user": {
          "findByUniversity": {
            "query": "{\\"university\\": \\"${university}\\"}",
            "collection": "user",
            "type": "FIND",
            "parameters": ["university"]
          }
        }
      }
    }

The catalogue is loaded once at startup (see :class:`~dynamicquery.apps.DynamicQueryConfig`)
and is read-only afterwards, so it can be shared between concurrent requests.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

import orjson
from django.core.exceptions import ImproperlyConfigured

from dynamicquery.exceptions import (
    DynamicQueryException,
    InvalidQueryNameError,
    UnknownQueryError,
)
from dynamicquery.types import CatalogueFile, QueryDefinition

logger = logging.getLogger(__name__)

__all__ = ("QueryCatalogue", "split_query_name")

#: Fallbacks for :meth:`QueryCatalogue.get_message`.
DEFAULT_MESSAGES = {
    "success": "Operation completed successfully",
    "error": "Operation failed",
}


def split_query_name(query_name: str) -> tuple[str, str]:
    """Split the ``entity.operation`` notation."""
    parts = query_name.split(".") if isinstance(query_name, str) else []
    if len(parts) != 2 or not all(parts):
        raise InvalidQueryNameError(
            f"Invalid query name format '{query_name}'. Expected: 'entity.operation'.",
            locator="queryName",
        )
    return parts[0], parts[1]


class QueryCatalogue:
    """The immutable table of named query definitions."""

    def __init__(self, catalogue_file: CatalogueFile, source: str | None = None):
        self.catalogue_file = catalogue_file
        self.source = source

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.source or '(in-memory)'}>"

    def __contains__(self, query_name: str) -> bool:
        try:
            self.resolve(query_name)
        except DynamicQueryException:
            return False
        else:
            return True

    @classmethod
    def load(cls, resource_path: str | Path) -> QueryCatalogue:
        """Read the configuration resource.
        Any error is fatal, as the server can't operate with a partial catalogue.
        """
        try:
            with open(resource_path, "rb") as fh:
                data = orjson.loads(fh.read())
        except OSError as e:
            raise ImproperlyConfigured(f"Failed to load query configuration: {e}") from e
        except orjson.JSONDecodeError as e:
            raise ImproperlyConfigured(
                f"Failed to parse query configuration {resource_path}: {e}"
            ) from e

        catalogue = cls.from_mapping(data, source=str(resource_path))
        logger.debug(
            "Loaded %d query mappings from %s",
            sum(len(operations) for operations in catalogue.query_mappings.values()),
            resource_path,
        )
        return catalogue

    @classmethod
    def from_mapping(cls, data: dict, source: str | None = None) -> QueryCatalogue:
        """Construct the catalogue from already parsed JSON data."""
        try:
            catalogue_file = CatalogueFile.from_mapping(data)
        except (TypeError, ValueError, DynamicQueryException) as e:
            raise ImproperlyConfigured(
                f"Invalid query configuration{f' in {source}' if source else ''}: {e}"
            ) from e

        return cls(catalogue_file, source=source)

    @property
    def query_mappings(self) -> Mapping[str, Mapping[str, QueryDefinition]]:
        """All definitions, as entity -> operation -> definition."""
        return self.catalogue_file.query_mappings

    @property
    def variable_mappings(self) -> Mapping[str, str]:
        """The type hints of all parameters."""
        return self.catalogue_file.variable_mappings

    @property
    def sample_queries(self):
        """The documentation payload of the configuration."""
        return self.catalogue_file.sample_queries

    def lookup(self, entity: str, operation: str) -> QueryDefinition:
        """Find the definition of an entity operation."""
        try:
            operations = self.query_mappings[entity]
        except KeyError:
            raise UnknownQueryError(f"Entity not found: {entity}", locator="entity") from None

        try:
            return operations[operation]
        except KeyError:
            raise UnknownQueryError(
                f"Operation not found: {operation} for entity: {entity}", locator="operation"
            ) from None

    def resolve(self, query_name: str) -> QueryDefinition:
        """Find the definition for an ``entity.operation`` name."""
        entity, operation = split_query_name(query_name)
        return self.lookup(entity, operation)

    def get_message(self, kind: str, key: str) -> str:
        """Find a configured message, e.g. ``get_message("success", "query_executed")``.
        This never fails, a generic text is returned for unknown keys.
        """
        table = getattr(self.catalogue_file.messages, kind) if kind in DEFAULT_MESSAGES else {}
        try:
            return table[key]
        except KeyError:
            return DEFAULT_MESSAGES.get(kind, DEFAULT_MESSAGES["error"])

    def get_success_message(self, key: str) -> str:
        return self.get_message("success", key)

    def get_error_message(self, key: str) -> str:
        return self.get_message("error", key)
