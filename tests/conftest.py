from __future__ import annotations

import django
import mongomock
import pymongo
import pytest
from django.apps import apps

from dynamicquery import conf
from dynamicquery.catalogue import QueryCatalogue
from dynamicquery.executor import QueryExecutor
from dynamicquery.registry import StoredQuery, StoredQueryRegistry
from tests.utils import RecordingStore


def pytest_configure():
    print(f"Running with Django {django.__version__}, PyMongo {pymongo.version}")
    print(f"Using DYNAMICQUERY_CONFIG_FILE={conf.DYNAMICQUERY_CONFIG_FILE}")


@pytest.fixture()
def mongo_db():
    """An in-memory MongoDB database, fresh for each test."""
    client = mongomock.MongoClient()
    yield client["dynamicquery_tests"]
    client.drop_database("dynamicquery_tests")


@pytest.fixture()
def patched_database(monkeypatch, mongo_db):
    """Let the code that uses the configured database use the in-memory database instead."""
    monkeypatch.setattr("dynamicquery.db.get_database", lambda: mongo_db)
    return mongo_db


@pytest.fixture()
def catalogue() -> QueryCatalogue:
    """The catalogue that was loaded at startup, from tests/files/query-config.json"""
    return apps.get_app_config("dynamicquery").catalogue


@pytest.fixture()
def store(mongo_db) -> RecordingStore:
    return RecordingStore(mongo_db)


@pytest.fixture()
def registry(mongo_db, catalogue) -> StoredQueryRegistry:
    registry = StoredQueryRegistry.for_database(mongo_db, type_hints=catalogue.variable_mappings)
    registry.ensure_indexes()
    return registry


@pytest.fixture()
def executor(catalogue, store, registry) -> QueryExecutor:
    return QueryExecutor(catalogue=catalogue, store=store, registry=registry)


@pytest.fixture()
def users(mongo_db) -> list[dict]:
    """Insert some users to query."""
    docs = [
        {"userId": "u1", "name": "Ann", "age": 17, "university": "MIT", "active": True},
        {"userId": "u2", "name": "Bob", "age": 18, "university": "MIT", "active": True},
        {"userId": "u3", "name": "Carol", "age": 30, "university": "Oxford", "active": False},
        {"userId": "u4", "name": "anneke", "age": 31, "university": "Colombo", "active": True},
    ]
    mongo_db["user"].insert_many(docs)
    return docs


@pytest.fixture()
def carts(mongo_db) -> list[dict]:
    docs = [
        {"userId": "u1", "status": "ACTIVE", "totalAmount": 10},
        {"userId": "u1", "status": "CANCELLED", "totalAmount": 25},
        {"userId": "u2", "status": "ACTIVE", "totalAmount": 5},
    ]
    mongo_db["cart"].insert_many(docs)
    return docs


@pytest.fixture()
def stored_query(registry) -> StoredQuery:
    """A stored query with a default parameter."""
    return registry.create(
        StoredQuery(
            name="cartsByStatus",
            query='{"status": ${status}}',
            query_type="FIND",
            collection="cart",
            parameters={"status": "ACTIVE"},
            category="CART",
            cacheable=True,
            cache_timeout_seconds=60,
        )
    )
