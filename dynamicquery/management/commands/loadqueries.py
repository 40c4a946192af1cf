"""Import stored query definitions into the document store."""

from __future__ import annotations

import orjson
from django.core.management import BaseCommand, CommandError, CommandParser

from dynamicquery import db
from dynamicquery.exceptions import DynamicQueryException
from dynamicquery.registry import StoredQuery, StoredQueryRegistry


class Command(BaseCommand):
    """Import a JSON file with stored query definitions."""

    help = (
        "Import stored queries from a JSON file that contains a list of definitions."
        " Each definition needs a name, query, query_type and collection. This can be done using:"
        "  manage.py loadqueries --update queries.json"
    )

    def add_arguments(self, parser: CommandParser):
        parser.add_argument(
            "--update",
            action="store_true",
            help="Update queries that already exist by name, instead of skipping them.",
        )
        parser.add_argument(
            "--created-by",
            metavar="NAME",
            help="Name to store as creator (or last modifier) of the queries.",
        )
        parser.add_argument("query-file", help="JSON file with a list of query definitions.")

    def handle(self, *args, **options):
        definitions = self._load_file(options["query-file"])
        if not definitions:
            self.stdout.write(self.style.NOTICE("No query definitions found"))
            return

        registry = self.get_registry()
        try:
            registry.ensure_indexes()
        except DynamicQueryException as e:
            raise CommandError(e.text) from e

        num_created = num_updated = 0
        for i, data in enumerate(definitions):
            try:
                stored_query = StoredQuery.from_dict(data)
            except DynamicQueryException as e:
                raise CommandError(f"Definition #{i}: {e.text}") from e

            try:
                if not registry.exists_by_name(stored_query.name):
                    stored_query.created_by = options["created_by"]
                    registry.create(stored_query)
                    num_created += 1
                elif options["update"]:
                    existing = registry.get_by_name(stored_query.name)
                    registry.update(
                        existing.id,
                        **self._get_changes(stored_query),
                        last_modified_by=options["created_by"],
                    )
                    num_updated += 1
                else:
                    self.stderr.write(
                        self.style.WARNING(
                            f"Query '{stored_query.name}' already exists, skipping."
                        )
                    )
            except DynamicQueryException as e:
                raise CommandError(f"Query '{stored_query.name}': {e.text}") from e

        self.stdout.write(f"Created {num_created} query(s), updated {num_updated} query(s)")

    def get_registry(self) -> StoredQueryRegistry:
        """Provide the registry of the configured database."""
        return StoredQueryRegistry.for_database(db.get_database())

    def _load_file(self, filename) -> list[dict]:
        """Parse and validate the JSON file."""
        try:
            with open(filename, "rb") as fh:
                data = orjson.loads(fh.read())
        except OSError as e:
            raise CommandError(str(e)) from e
        except orjson.JSONDecodeError as e:
            raise CommandError(f"Unable to parse JSON: {e}") from e

        if not isinstance(data, list):
            raise CommandError("Invalid query file, expected a list of definitions.")
        return data

    def _get_changes(self, stored_query: StoredQuery) -> dict:
        """Tell which fields an import should overwrite."""
        return {
            "description": stored_query.description,
            "query": stored_query.query,
            "query_type": stored_query.query_type,
            "collection": stored_query.collection,
            "parameters": stored_query.parameters,
            "variable_mappings": stored_query.variable_mappings,
            "success_message": stored_query.success_message,
            "error_message": stored_query.error_message,
            "category": stored_query.category,
            "cacheable": stored_query.cacheable,
            "cache_timeout_seconds": stored_query.cache_timeout_seconds,
        }
