"""Execution of named queries.

The :class:`QueryExecutor` takes a query from the catalogue (by ``entity.operation`` name)
or from the stored query registry (by identifier), binds the parameters into the template,
and runs the resulting filter or pipeline against the document store.

Every call returns an :class:`~dynamicquery.results.ExecutionResult`.
Errors are never retried, and no fallback query is used when a lookup fails.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping

from django.apps import apps

from dynamicquery import db
from dynamicquery.binder import bind_parameters
from dynamicquery.catalogue import QueryCatalogue
from dynamicquery.criteria import build_criteria, parse_template
from dynamicquery.exceptions import (
    DynamicQueryException,
    MalformedFilterError,
    QueryNotFoundError,
)
from dynamicquery.registry import StoredQueryRegistry
from dynamicquery.results import ExecutionResult
from dynamicquery.store import DocumentStore, MongoDocumentStore
from dynamicquery.types import OperationKind, QueryDefinition

logger = logging.getLogger(__name__)

__all__ = ("QueryExecutor",)


class QueryExecutor:
    """Run catalogue and stored queries against the document store.

    The executor holds no state between calls, a single instance can be shared.
    """

    def __init__(
        self,
        catalogue: QueryCatalogue,
        store: DocumentStore,
        registry: StoredQueryRegistry | None = None,
    ):
        self.catalogue = catalogue
        self.store = store
        self.registry = registry

    @classmethod
    def from_settings(cls) -> QueryExecutor:
        """Create the executor for the loaded catalogue and the configured database."""
        catalogue = apps.get_app_config("dynamicquery").catalogue
        database = db.get_database()
        return cls(
            catalogue=catalogue,
            store=MongoDocumentStore(database),
            registry=StoredQueryRegistry.for_database(
                database, type_hints=catalogue.variable_mappings
            ),
        )

    def execute_by_name(
        self, query_name: str, parameters: Mapping | None = None
    ) -> ExecutionResult:
        """Execute a catalogue query, e.g. ``execute_by_name("user.findById", {"id": ...})``."""
        start = time.monotonic()
        try:
            definition = self.catalogue.resolve(query_name)
            data = self.run(definition, parameters or {})
        except DynamicQueryException as e:
            logger.warning("Query %s failed: %s: %s", query_name, e.code, e.text)
            return ExecutionResult.failure(
                e,
                detail=self.catalogue.get_error_message("execution_failed"),
                query_name=query_name,
                execution_duration_ms=_elapsed_ms(start),
            )

        return ExecutionResult(
            success=True,
            message=self.catalogue.get_success_message("query_executed"),
            data=data,
            query_name=query_name,
            execution_duration_ms=_elapsed_ms(start),
        )

    def execute_by_id(self, query_id: str, parameters: Mapping | None = None) -> ExecutionResult:
        """Execute a stored query.
        The caller parameters are applied on top of the stored default parameters.
        """
        start = time.monotonic()
        definition = None
        try:
            if self.registry is None:
                raise QueryNotFoundError(
                    f"Query not found: {query_id} (no stored queries available)",
                    locator="queryId",
                )
            definition = self.registry.fetch_active_by_id(query_id)
            merged = {**definition.default_parameters, **(parameters or {})}
            data = self.run(definition, merged)
        except DynamicQueryException as e:
            logger.warning("Stored query %s failed: %s: %s", query_id, e.code, e.text)
            return ExecutionResult.failure(
                e,
                detail=(
                    definition.error_message
                    if definition is not None and definition.error_message
                    else self.catalogue.get_error_message("execution_failed")
                ),
                query_name=definition.name if definition is not None else None,
                query_id=query_id,
                execution_duration_ms=_elapsed_ms(start),
            )

        return ExecutionResult(
            success=True,
            message=(
                definition.success_message
                or self.catalogue.get_success_message("query_executed")
            ),
            data=data,
            query_name=definition.name,
            query_id=query_id,
            execution_duration_ms=_elapsed_ms(start),
            metadata={
                "cacheable": definition.cacheable,
                "cacheTimeoutSeconds": definition.cache_timeout_seconds,
            },
        )

    def validate_parameters(self, query_name: str, parameters: Mapping | None) -> bool:
        """Tell whether all required parameters of a catalogue query are given.
        This never raises, any problem just returns ``False``.
        """
        try:
            definition = self.catalogue.resolve(query_name)
        except DynamicQueryException:
            return False

        parameters = parameters or {}
        return all(name in parameters for name in definition.required_parameters)

    def list_mappings(self) -> Mapping[str, Mapping[str, QueryDefinition]]:
        """Provide all catalogue definitions as entity -> operation -> definition."""
        return self.catalogue.query_mappings

    def get_sample_queries(self):
        """Provide the documentation examples of the catalogue."""
        return self.catalogue.sample_queries

    def run(self, definition: QueryDefinition, parameters: Mapping):
        """Bind the parameters and execute the definition.
        This raises the :class:`DynamicQueryException` subclasses on errors.
        """
        bound = bind_parameters(definition.template, parameters, definition.variable_type_hints)
        parsed = parse_template(bound)
        collection = definition.target_collection
        logger.debug(
            "Executing %s %s on %s: %s",
            definition.operation_kind.value,
            definition.dotted_name,
            collection,
            bound,
        )

        kind = definition.operation_kind
        if kind is OperationKind.FIND:
            return self.store.find(collection, build_criteria(parsed))
        elif kind is OperationKind.AGGREGATE:
            return self.store.aggregate(collection, self._build_pipeline(parsed))
        elif kind is OperationKind.COUNT:
            return self.store.count(collection, build_criteria(parsed))
        else:
            raise NotImplementedError(f"Unhandled operation kind: {kind!r}")

    def _build_pipeline(self, parsed) -> list[dict]:
        """Validate the aggregation pipeline."""
        if not isinstance(parsed, list):
            raise MalformedFilterError("Aggregation query must be a JSON array of stages.")

        for i, stage in enumerate(parsed):
            if not isinstance(stage, dict) or len(stage) != 1:
                raise MalformedFilterError(
                    f"Aggregation stage {i} must be an object with a single operator.",
                    locator=f"stage[{i}]",
                )
        return parsed


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
