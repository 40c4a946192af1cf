"""Execute a dynamic query from the command line."""

from __future__ import annotations

from argparse import ArgumentTypeError

from django.core.management import BaseCommand, CommandError, CommandParser

from dynamicquery.executor import QueryExecutor
from dynamicquery.values import parse_parameter


def _parse_parameter(value):
    try:
        return parse_parameter(value)
    except ValueError as e:
        raise ArgumentTypeError(str(e)) from e


class Command(BaseCommand):
    """Run a catalogue or stored query, and print the result as JSON."""

    help = (
        "Execute a query from the catalogue, or a stored query. This can be done using:"
        "  manage.py runquery user.findByUniversity -p university=MIT"
        "  manage.py runquery --id 65a1f... -p status=ACTIVE"
    )

    def add_arguments(self, parser: CommandParser):
        parser.add_argument(
            "-p",
            "--param",
            action="append",
            dest="parameters",
            type=_parse_parameter,
            default=[],
            metavar="NAME=VALUE",
            help="Query parameter, numbers and true/false/null are converted automatically.",
        )
        parser.add_argument(
            "--id",
            action="store_true",
            dest="by_id",
            help="Treat the query argument as the identifier of a stored query.",
        )
        parser.add_argument(
            "--validate",
            action="store_true",
            help="Only check whether all required parameters are given.",
        )
        parser.add_argument("query", help="Query name (entity.operation) or stored query id.")

    def handle(self, *args, **options):
        executor = self.get_executor()
        query = options["query"]
        parameters = dict(options["parameters"])

        if options["validate"]:
            if options["by_id"]:
                raise CommandError("--validate only applies to catalogue queries.")
            if not executor.validate_parameters(query, parameters):
                raise CommandError(f"Invalid or missing parameters for query: {query}")
            self.stdout.write(f"Parameters for {query} are valid")
            return

        if options["by_id"]:
            result = executor.execute_by_id(query, parameters)
        else:
            result = executor.execute_by_name(query, parameters)

        self.stdout.write(result.as_json(indent=True).decode())
        if not result.success:
            raise CommandError(f"{result.error}: {result.message}")

    def get_executor(self) -> QueryExecutor:
        return QueryExecutor.from_settings()
