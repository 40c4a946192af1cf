"""Storage and registry for stored queries.

Stored queries have the same shape as the catalogue definitions,
but they are kept in the document store. This allows operators to add or change
queries without deploying a new configuration file.

Records are never removed: :meth:`StoredQueryRegistry.delete` marks them inactive,
and inactive queries can't be executed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from django.utils.timezone import now
from pymongo import ASCENDING
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from dynamicquery import conf
from dynamicquery.exceptions import (
    DynamicQueryException,
    InvalidQueryDefinitionError,
    QueryAlreadyExistsError,
    QueryNotFoundError,
    wrap_store_errors,
)
from dynamicquery.types import OperationKind, QueryDefinition

logger = logging.getLogger(__name__)

__all__ = ("StoredQuery", "StoredQueryRegistry")


@dataclass
class StoredQuery:
    """A query definition record, as it's kept in the document store."""

    #: Unique name of the query.
    name: str
    #: The JSON text with ``${name}`` placeholders.
    query: str
    #: FIND, AGGREGATE or COUNT
    query_type: str
    #: Target collection
    collection: str

    description: str | None = None
    #: Default values for the template parameters, caller values take precedence.
    parameters: dict[str, Any] = field(default_factory=dict)
    #: Type hints for the parameters, these override the catalogue ``variableMappings``.
    variable_mappings: dict[str, str] = field(default_factory=dict)
    success_message: str | None = None
    error_message: str | None = None
    #: Grouping, e.g. USER, UNIVERSITY, FACULTY, CART or GENERAL.
    category: str | None = None

    #: Advisory metadata for an outer caching layer.
    cacheable: bool = False
    cache_timeout_seconds: int | None = 300

    active: bool = True
    created_by: str | None = None
    last_modified_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    #: The document identifier, assigned by the store.
    id: str | None = None

    def __post_init__(self):
        self.query_type = OperationKind.from_string(self.query_type).value
        self.check_fields()

    def check_fields(self):
        """Make sure the record can be executed.
        This raises :class:`InvalidQueryDefinitionError` for values of the wrong type.
        """
        for name in ("name", "query", "collection"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise InvalidQueryDefinitionError(
                    f"Query definition requires a '{name}' text, got {type(value).__name__}.",
                    locator=name,
                )

        for name in ("parameters", "variable_mappings"):
            if not isinstance(getattr(self, name), dict):
                raise InvalidQueryDefinitionError(
                    f"Query definition field '{name}' must be an object.", locator=name
                )

    @classmethod
    def from_document(cls, doc: dict) -> StoredQuery:
        """Read the record from a MongoDB document."""
        known = {f.name for f in fields(cls)} - {"id"}
        values = {key: value for key, value in doc.items() if key in known}
        return cls(id=str(doc["_id"]), **values)

    @classmethod
    def from_dict(cls, data: Mapping) -> StoredQuery:
        """Read the record from external input (e.g. an import file).
        This raises :class:`InvalidQueryDefinitionError` for incomplete data.
        """
        if not isinstance(data, Mapping):
            raise InvalidQueryDefinitionError("Query definition must be an object.")

        for name in ("name", "query", "query_type", "collection"):
            if not data.get(name):
                raise InvalidQueryDefinitionError(
                    f"Query definition requires a '{name}' value.", locator=name
                )

        known = {f.name for f in fields(cls)} - {"id", "created_at", "updated_at"}
        unknown = set(data) - known
        if unknown:
            raise InvalidQueryDefinitionError(
                f"Unknown fields in query definition: {', '.join(sorted(unknown))}",
                locator=sorted(unknown)[0],
            )
        return cls(**data)

    def to_document(self) -> dict:
        """Provide the MongoDB document, without identifier."""
        doc = asdict(self)
        del doc["id"]
        return doc

    def to_definition(self, type_hints: Mapping[str, str] | None = None) -> QueryDefinition:
        """Provide the executable definition.
        The type hints of this record are applied on top of the given (global) hints.
        """
        return QueryDefinition(
            name=self.name,
            template=self.query,
            operation_kind=self.query_type,
            target_collection=self.collection,
            default_parameters=self.parameters,
            variable_type_hints={**(type_hints or {}), **self.variable_mappings},
            id=self.id,
            cacheable=self.cacheable,
            cache_timeout_seconds=self.cache_timeout_seconds,
            success_message=self.success_message,
            error_message=self.error_message,
        )


class StoredQueryRegistry:
    """CRUD access to the stored query definitions."""

    def __init__(self, collection: Collection, type_hints: Mapping[str, str] | None = None):
        self.collection = collection
        self.type_hints = type_hints or {}

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.collection.name}>"

    @classmethod
    def for_database(cls, database, type_hints: Mapping[str, str] | None = None):
        """Create the registry for the configured collection of a database."""
        return cls(database[conf.DYNAMICQUERY_STORED_QUERY_COLLECTION], type_hints=type_hints)

    def ensure_indexes(self):
        """Create the indexes that the registry relies on."""
        with wrap_store_errors(self.collection.name, "create_index"):
            self.collection.create_index([("name", ASCENDING)], unique=True)
            self.collection.create_index([("active", ASCENDING)])
            self.collection.create_index([("category", ASCENDING), ("active", ASCENDING)])
            self.collection.create_index([("query_type", ASCENDING), ("active", ASCENDING)])

    # -- reading

    def get(self, query_id: str) -> StoredQuery:
        """Find a stored query by identifier, regardless of its active state."""
        doc = self._find_one({"_id": self._object_id(query_id)}) if query_id else None
        if doc is None:
            raise QueryNotFoundError(f"Query not found with id: {query_id}", locator="queryId")
        return StoredQuery.from_document(doc)

    def get_by_name(self, name: str) -> StoredQuery:
        """Find a stored query by its unique name."""
        doc = self._find_one({"name": name})
        if doc is None:
            raise QueryNotFoundError(f"Query not found with name: {name}", locator="name")
        return StoredQuery.from_document(doc)

    def fetch_active_by_id(self, query_id: str) -> QueryDefinition:
        """Find the executable definition of an active stored query."""
        stored_query = self.get(query_id)
        if not stored_query.active:
            raise QueryNotFoundError(f"Query is not active: {query_id}", locator="queryId")
        return stored_query.to_definition(self.type_hints)

    def exists_by_name(self, name: str) -> bool:
        return self._find_one({"name": name}) is not None

    def list_active(self) -> list[StoredQuery]:
        return self._find({"active": True})

    def filter_active(
        self,
        category: str | None = None,
        query_type: str | None = None,
        collection: str | None = None,
        created_by: str | None = None,
        cacheable: bool | None = None,
    ) -> list[StoredQuery]:
        """Find active queries by one or more of their attributes."""
        return self._find(
            self._active_filter(category, query_type, collection, created_by, cacheable)
        )

    def search_by_name(self, text: str) -> list[StoredQuery]:
        """Find queries whose name contains the text, case-insensitive."""
        return self._find({"name": {"$regex": re.escape(text), "$options": "i"}})

    def search_by_description(self, text: str) -> list[StoredQuery]:
        """Find queries whose description contains the text, case-insensitive."""
        return self._find({"description": {"$regex": re.escape(text), "$options": "i"}})

    def count_active(self, **filters) -> int:
        query = self._active_filter(**filters)
        with wrap_store_errors(self.collection.name, "count"):
            return self.collection.count_documents(query)

    def get_stats(self) -> dict:
        """Summarize the active queries."""
        stats = {
            "totalActive": self.count_active(),
            "cacheable": self.count_active(cacheable=True),
            "byType": {
                kind.value: self.count_active(query_type=kind.value) for kind in OperationKind
            },
            "byCategory": {},
        }
        with wrap_store_errors(self.collection.name, "distinct"):
            categories = self.collection.distinct("category", {"active": True})
        for category in sorted(c for c in categories if c):
            stats["byCategory"][category] = self.count_active(category=category)
        return stats

    # -- writing

    def create(self, stored_query: StoredQuery) -> StoredQuery:
        """Register a new stored query."""
        if self.exists_by_name(stored_query.name):
            raise QueryAlreadyExistsError(
                f"Query already exists with name: {stored_query.name}", locator="name"
            )

        stored_query.active = True
        stored_query.created_at = stored_query.updated_at = now()
        try:
            with wrap_store_errors(self.collection.name, "insert"):
                result = self.collection.insert_one(stored_query.to_document())
        except DynamicQueryException as e:
            if isinstance(e.__cause__, DuplicateKeyError):
                # Lost a race with another insert of the same name.
                raise QueryAlreadyExistsError(
                    f"Query already exists with name: {stored_query.name}", locator="name"
                ) from e
            raise

        stored_query.id = str(result.inserted_id)
        logger.info("Created stored query %s (%s)", stored_query.name, stored_query.id)
        return stored_query

    def update(self, query_id: str, **changes) -> StoredQuery:
        """Change the given fields of a stored query.
        Fields that are ``None`` are left untouched.
        """
        stored_query = self.get(query_id)
        changes = {key: value for key, value in changes.items() if value is not None}

        writable = {f.name for f in fields(StoredQuery)} - {"id", "created_at", "updated_at"}
        unknown = set(changes) - writable
        if unknown:
            raise InvalidQueryDefinitionError(
                f"Unknown fields in query definition: {', '.join(sorted(unknown))}",
                locator=sorted(unknown)[0],
            )

        new_name = changes.get("name")
        if new_name and new_name != stored_query.name and self.exists_by_name(new_name):
            raise QueryAlreadyExistsError(
                f"Query already exists with name: {new_name}", locator="name"
            )

        if "query_type" in changes:
            changes["query_type"] = OperationKind.from_string(changes["query_type"]).value

        for key, value in changes.items():
            setattr(stored_query, key, value)
        stored_query.check_fields()
        stored_query.updated_at = now()

        self._save(stored_query)
        logger.info("Updated stored query %s (%s)", stored_query.name, stored_query.id)
        return stored_query

    def delete(self, query_id: str) -> StoredQuery:
        """Soft-delete a stored query, it can no longer be executed."""
        return self.deactivate(query_id)

    def activate(self, query_id: str) -> StoredQuery:
        return self._set_active(query_id, True)

    def deactivate(self, query_id: str) -> StoredQuery:
        return self._set_active(query_id, False)

    # -- internal

    def _set_active(self, query_id: str, active: bool) -> StoredQuery:
        stored_query = self.get(query_id)
        stored_query.active = active
        stored_query.updated_at = now()
        self._save(stored_query)
        logger.info(
            "%s stored query %s (%s)",
            "Activated" if active else "Deactivated",
            stored_query.name,
            stored_query.id,
        )
        return stored_query

    def _save(self, stored_query: StoredQuery):
        with wrap_store_errors(self.collection.name, "update"):
            self.collection.replace_one(
                {"_id": self._object_id(stored_query.id)}, stored_query.to_document()
            )

    def _find_one(self, query: dict) -> dict | None:
        with wrap_store_errors(self.collection.name, "find"):
            return self.collection.find_one(query)

    def _find(self, query: dict) -> list[StoredQuery]:
        with wrap_store_errors(self.collection.name, "find"):
            docs = list(self.collection.find(query).sort("name", ASCENDING))
        return [StoredQuery.from_document(doc) for doc in docs]

    @staticmethod
    def _active_filter(
        category=None, query_type=None, collection=None, created_by=None, cacheable=None
    ) -> dict:
        query = {"active": True}
        if category is not None:
            query["category"] = category
        if query_type is not None:
            query["query_type"] = OperationKind.from_string(query_type).value
        if collection is not None:
            query["collection"] = collection
        if created_by is not None:
            query["created_by"] = created_by
        if cacheable is not None:
            query["cacheable"] = cacheable
        return query

    @staticmethod
    def _object_id(query_id: str) -> ObjectId | str:
        try:
            return ObjectId(query_id)
        except (InvalidId, TypeError):
            # Not generated by MongoDB, can still be a custom string identifier.
            return query_id
