import logging

from django.apps import AppConfig

from dynamicquery import conf
from dynamicquery.catalogue import QueryCatalogue

logger = logging.getLogger(__name__)


class DynamicQueryConfig(AppConfig):
    """Loads the query catalogue when Django starts.

    A broken configuration raises ``ImproperlyConfigured`` here,
    so the process never serves requests with a partial catalogue.
    """

    name = "dynamicquery"
    verbose_name = "Dynamic queries"

    #: The catalogue, read once during startup.
    catalogue: QueryCatalogue = None

    def ready(self):
        self.catalogue = QueryCatalogue.load(conf.DYNAMICQUERY_CONFIG_FILE)
        logger.debug("Query catalogue ready: %r", self.catalogue)
