"""The document store that queries are executed against.

The executor only needs three operations, which are defined by :class:`DocumentStore`.
The :class:`MongoDocumentStore` implements these using a PyMongo database.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pymongo.database import Database

from dynamicquery.exceptions import wrap_store_errors

logger = logging.getLogger(__name__)

__all__ = ("DocumentStore", "MongoDocumentStore")


class DocumentStore:
    """Basic interface of the document store.

    Each call is a single blocking operation. Connection pooling and timeouts
    are handled by the client, errors are raised as :class:`StoreOperationError`.
    """

    def find(self, collection: str, filter: dict) -> list[dict]:
        """Return all documents that match the filter."""
        raise NotImplementedError()

    def aggregate(self, collection: str, pipeline: Sequence[dict]) -> list[dict]:
        """Run the aggregation pipeline, and return the resulting documents."""
        raise NotImplementedError()

    def count(self, collection: str, filter: dict) -> int:
        """Count the documents that match the filter."""
        raise NotImplementedError()


class MongoDocumentStore(DocumentStore):
    """Execute the operations on a MongoDB database."""

    def __init__(self, database: Database):
        self.database = database

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.database.name}>"

    def find(self, collection: str, filter: dict) -> list[dict]:
        logger.debug("find() on %s: %r", collection, filter)
        with wrap_store_errors(collection, "find"):
            return list(self.database[collection].find(filter))

    def aggregate(self, collection: str, pipeline: Sequence[dict]) -> list[dict]:
        logger.debug("aggregate() on %s: %r", collection, pipeline)
        with wrap_store_errors(collection, "aggregate"):
            return list(self.database[collection].aggregate(list(pipeline)))

    def count(self, collection: str, filter: dict) -> int:
        logger.debug("count() on %s: %r", collection, filter)
        with wrap_store_errors(collection, "count"):
            return self.database[collection].count_documents(filter)
