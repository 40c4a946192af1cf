"""The uniform envelope for query results and failures."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import orjson
from bson import Decimal128, ObjectId
from django.utils.timezone import now

from dynamicquery.exceptions import DynamicQueryException

__all__ = ("ExecutionResult",)


@dataclass
class ExecutionResult:
    """Outcome of a single query execution.

    On success, ``data`` holds the documents (FIND/AGGREGATE) or the count (COUNT).
    On failure, ``error`` holds the error kind and ``message`` the reason.
    """

    success: bool
    message: str
    data: Any = None
    query_name: str | None = None
    query_id: str | None = None
    #: The error kind, e.g. ``UnknownQueryError``.
    error: str | None = None
    #: The generic (configured) error text, next to the specific message.
    detail: str | None = None
    execution_time: datetime = field(default_factory=now)
    execution_duration_ms: int | None = None
    #: Extra information for the caller, e.g. caching hints.
    metadata: dict = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        exc: DynamicQueryException,
        detail: str | None = None,
        query_name: str | None = None,
        query_id: str | None = None,
        **kwargs,
    ) -> ExecutionResult:
        """Create the result for a failed execution."""
        return cls(
            success=False,
            message=exc.text,
            error=exc.code,
            detail=detail,
            query_name=query_name,
            query_id=query_id,
            **kwargs,
        )

    @property
    def result_count(self) -> int:
        """Tell how many results are in the data."""
        if self.data is None:
            return 0
        elif isinstance(self.data, Sequence) and not isinstance(self.data, (str, bytes)):
            return len(self.data)
        else:
            return 1

    def as_dict(self) -> dict:
        """Provide the envelope as it's returned to clients."""
        result = {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "resultCount": self.result_count,
            "executionTime": self.execution_time,
            "executionDurationMs": self.execution_duration_ms,
        }
        if self.query_name is not None:
            result["queryName"] = self.query_name
        if self.query_id is not None:
            result["queryId"] = self.query_id
        if not self.success:
            result["error"] = self.error
            result["detail"] = self.detail
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    def as_json(self, indent=False) -> bytes:
        """Render the envelope as JSON."""
        return orjson.dumps(
            self.as_dict(),
            default=_json_default,
            option=orjson.OPT_INDENT_2 if indent else 0,
        )


def _json_default(value):
    """Render values of the document store that orjson doesn't know about."""
    if isinstance(value, ObjectId):
        return str(value)
    elif isinstance(value, Decimal128):
        return str(value.to_decimal())
    elif isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")
