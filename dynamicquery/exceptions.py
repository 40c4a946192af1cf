"""Exceptions for the dynamic query execution.

Each class maps to one error kind. The ``code`` of each exception
is reported to callers in the :class:`~dynamicquery.results.ExecutionResult`
so the outer layer can decide how to present it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from pymongo.errors import PyMongoError

from dynamicquery import conf

logger = logging.getLogger(__name__)


@contextmanager
def wrap_store_errors(collection: str, operation: str):
    """Perform a document-store operation,
    and translate any driver errors into a :class:`StoreOperationError`.
    """
    try:
        yield
    except PyMongoError as e:
        if not conf.DYNAMICQUERY_WRAP_STORE_ERRORS:
            raise
        logger.exception("Store %s on '%s' failed: %s", operation, collection, e)
        raise StoreOperationError(
            f"Store {operation} on '{collection}' failed: {e}", locator=collection
        ) from e


class DynamicQueryException(Exception):
    """Base class for all errors of the query engine."""

    code = None
    text_template = None

    def __init__(self, text=None, code=None, locator=None):
        text = text or self.text_template.format(code=self.code, locator=locator)
        if locator and len(text) < len(locator):
            raise ValueError(f"text/locator arguments are switched: {text!r}, locator={locator!r}")

        super().__init__(text)
        self.locator = locator
        self.text = text
        self.code = code or self.code or self.__class__.__name__

    def as_dict(self) -> dict:
        """Provide the structured form of the error."""
        return {"error": self.code, "message": self.text, "locator": self.locator}


class InvalidQueryNameError(DynamicQueryException):
    """The query name is not written as ``entity.operation``."""

    code = "InvalidQueryNameError"
    text_template = "Invalid query name format '{locator}'. Expected: 'entity.operation'."


class UnknownQueryError(DynamicQueryException):
    """The entity or operation does not exist in the catalogue."""

    code = "UnknownQueryError"
    text_template = "Query '{locator}' not found."


class QueryNotFoundError(DynamicQueryException):
    """A stored query does not exist, or is no longer active."""

    code = "QueryNotFoundError"
    text_template = "Query not found: {locator}"


class QueryAlreadyExistsError(DynamicQueryException):
    """A stored query with the same name is already registered."""

    code = "QueryAlreadyExistsError"
    text_template = "Query already exists with name: {locator}"


class InvalidQueryDefinitionError(DynamicQueryException):
    """A stored query definition misses required fields."""

    code = "InvalidQueryDefinitionError"
    text_template = "Invalid value for '{locator}' in query definition."


class MissingParameterError(DynamicQueryException):
    """A placeholder in the template has no value."""

    code = "MissingParameterError"
    text_template = "Missing required parameter: {locator}"


class MalformedFilterError(DynamicQueryException):
    """The bound template can't be parsed, or has an unsupported shape."""

    code = "MalformedFilterError"
    text_template = "The query template could not be parsed."


class UnsupportedOperationError(DynamicQueryException):
    """The operation kind is not one of FIND, AGGREGATE or COUNT."""

    code = "UnsupportedOperationError"
    text_template = "Unsupported query type: {locator}"


class StoreOperationError(DynamicQueryException):
    """The document store reported an error."""

    code = "StoreOperationError"
    text_template = "The document store could not process the query."
