"""Access to the MongoDB connection.

The client is created once per process. PyMongo keeps a connection pool
internally, so all requests share the same client.
"""

from __future__ import annotations

from functools import lru_cache

from django.core.signals import setting_changed
from django.dispatch import receiver
from pymongo import MongoClient
from pymongo.database import Database

from dynamicquery import conf

__all__ = ("get_client", "get_database")


@lru_cache
def get_client() -> MongoClient:
    """Provide the shared MongoDB client."""
    return MongoClient(conf.DYNAMICQUERY_MONGO_URI, **conf.DYNAMICQUERY_MONGO_CLIENT_OPTIONS)


def get_database() -> Database:
    """Provide the database that holds all collections."""
    return get_client()[conf.DYNAMICQUERY_MONGO_DATABASE]


@receiver(setting_changed)
def _on_settings_change(setting, **kwargs):
    if setting.startswith("DYNAMICQUERY_MONGO_"):
        get_client.cache_clear()
