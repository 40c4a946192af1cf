from __future__ import annotations

from pathlib import Path

import orjson

from dynamicquery.store import MongoDocumentStore

FILES_DIR = Path(__file__).parent.joinpath("files")


def read_json(content) -> dict | list:
    try:
        return orjson.loads(content)
    except orjson.JSONDecodeError as e:
        snippet = content[max(e.pos - 300, 0) : e.pos + 300]
        raise AssertionError(f"Parsing JSON failed: {e}\nNear: {snippet}") from None


class RecordingStore(MongoDocumentStore):
    """Document store that keeps track of the calls it receives."""

    def __init__(self, database):
        super().__init__(database)
        self.calls = []

    def find(self, collection, filter):
        self.calls.append(("find", collection, filter))
        return super().find(collection, filter)

    def aggregate(self, collection, pipeline):
        self.calls.append(("aggregate", collection, pipeline))
        return super().aggregate(collection, pipeline)

    def count(self, collection, filter):
        self.calls.append(("count", collection, filter))
        return super().count(collection, filter)
