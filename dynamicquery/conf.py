from pathlib import Path

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver

_originals = {}

# -- query catalogue

# The JSON resource that defines the named queries, messages and sample queries.
# This is read once at startup, changes require a restart.
DYNAMICQUERY_CONFIG_FILE = getattr(
    settings,
    "DYNAMICQUERY_CONFIG_FILE",
    str(Path(__file__).parent.joinpath("resources", "query-config.json")),
)

# -- document store

# Connection to the MongoDB server, and the database that holds all collections.
DYNAMICQUERY_MONGO_URI = getattr(settings, "DYNAMICQUERY_MONGO_URI", "mongodb://localhost:27017")
DYNAMICQUERY_MONGO_DATABASE = getattr(settings, "DYNAMICQUERY_MONGO_DATABASE", "dynamicquery")

# Extra keyword arguments for the MongoClient, e.g. maxPoolSize or serverSelectionTimeoutMS.
DYNAMICQUERY_MONGO_CLIENT_OPTIONS = getattr(settings, "DYNAMICQUERY_MONGO_CLIENT_OPTIONS", {})

# The collection that holds the stored query definitions.
DYNAMICQUERY_STORED_QUERY_COLLECTION = getattr(
    settings, "DYNAMICQUERY_STORED_QUERY_COLLECTION", "query"
)

# -- debugging

# Whether to wrap driver errors in a StoreOperationError, or raise the original exception
DYNAMICQUERY_WRAP_STORE_ERRORS = getattr(settings, "DYNAMICQUERY_WRAP_STORE_ERRORS", True)


@receiver(setting_changed)
def _on_settings_change(setting, value, enter, **kwargs):
    if not setting.startswith("DYNAMICQUERY_"):
        return

    conf_module = globals()
    if value is None and not enter:
        # override_settings().disable() returns what the django settings module had.
        # Revert to our defaults here instead.
        value = _originals.get(setting)
    else:
        # Track defaults of this file for reverting to them
        _originals.setdefault(setting, conf_module[setting])

    conf_module[setting] = value
