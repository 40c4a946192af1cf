import pytest
from django.test import override_settings
from pymongo.errors import ServerSelectionTimeoutError

from dynamicquery.executor import QueryExecutor
from dynamicquery.registry import StoredQuery
from dynamicquery.store import MongoDocumentStore


class BrokenCollection:
    def find(self, filter):
        raise ServerSelectionTimeoutError("localhost:27017: [Errno 111] Connection refused")

    count_documents = find


class BrokenDatabase:
    """A database that can't be reached."""

    name = "broken"

    def __getitem__(self, name):
        return BrokenCollection()


def _names(result):
    return sorted(doc["name"] for doc in result.data)


class TestExecuteByName:
    """Prove that catalogue queries are executed."""

    def test_find(self, executor, store, users):
        """Scenario: a simple FIND with a text parameter."""
        result = executor.execute_by_name("user.findByUniversity", {"university": "MIT"})
        assert result.success, result.message
        assert store.calls == [("find", "user", {"university": "MIT"})]
        assert _names(result) == ["Ann", "Bob"]
        assert result.result_count == 2
        assert result.query_name == "user.findByUniversity"
        assert result.message == "Query executed successfully"
        assert result.error is None
        assert result.execution_duration_ms >= 0

    def test_find_no_matches(self, executor, users):
        result = executor.execute_by_name("user.findByUniversity", {"university": "Delft"})
        assert result.success
        assert result.data == []
        assert result.result_count == 0

    def test_find_no_parameters(self, executor, users):
        result = executor.execute_by_name("user.findActive")
        assert result.success
        assert _names(result) == ["Ann", "Bob", "anneke"]

    def test_count(self, executor, store, users):
        """Scenario: COUNT returns an integer, counted as a single result."""
        result = executor.execute_by_name("user.count", {})
        assert result.success
        assert result.data == 4
        assert result.result_count == 1
        assert store.calls == [("count", "user", {})]

    def test_unknown_entity(self, executor, store):
        """Scenario: an unknown query never reaches the store."""
        result = executor.execute_by_name("bogus.op", {})
        assert not result.success
        assert result.error == "UnknownQueryError"
        assert result.message == "Entity not found: bogus"
        assert result.detail == "Query execution failed"
        assert result.data is None
        assert store.calls == []

    def test_unknown_operation(self, executor, store):
        result = executor.execute_by_name("user.bogus", {})
        assert result.error == "UnknownQueryError"
        assert result.message == "Operation not found: bogus for entity: user"
        assert store.calls == []

    @pytest.mark.parametrize("query_name", ["user", "user.findById.extra", ".findById", ""])
    def test_invalid_name(self, executor, store, query_name):
        result = executor.execute_by_name(query_name, {})
        assert not result.success
        assert result.error == "InvalidQueryNameError"
        assert store.calls == []

    def test_age_range(self, executor, store, users):
        """Integer type hints produce numeric bounds, both bounds are inclusive."""
        result = executor.execute_by_name("user.findByAgeRange", {"minAge": 18, "maxAge": 30})
        assert result.success, result.message
        assert store.calls == [("find", "user", {"age": {"$gte": 18, "$lte": 30}})]
        assert _names(result) == ["Bob", "Carol"]

    def test_string_hint(self, executor, store, users):
        result = executor.execute_by_name("user.findByName", {"name": "Ann"})
        assert result.success, result.message
        assert store.calls == [("find", "user", {"name": "Ann"})]
        assert _names(result) == ["Ann"]

    def test_regex(self, executor, users):
        result = executor.execute_by_name("user.searchByName", {"pattern": "^an"})
        assert result.success, result.message
        assert _names(result) == ["Ann", "anneke"]

    def test_in(self, executor, store, users):
        result = executor.execute_by_name(
            "user.findByUniversities", {"universities": ["MIT", "Oxford"]}
        )
        assert result.success, result.message
        assert store.calls == [("find", "user", {"university": {"$in": ["MIT", "Oxford"]}})]
        assert _names(result) == ["Ann", "Bob", "Carol"]

    def test_aggregate(self, executor, store, users):
        result = executor.execute_by_name("user.countByUniversity", {})
        assert result.success, result.message
        assert store.calls[0][0] == "aggregate"
        assert result.data == [{"_id": "Colombo", "count": 1}, {"_id": "MIT", "count": 2}]
        assert result.result_count == 2

    def test_aggregate_not_a_pipeline(self, executor, store):
        result = executor.execute_by_name("user.brokenAggregate", {})
        assert not result.success
        assert result.error == "MalformedFilterError"
        assert result.message == "Aggregation query must be a JSON array of stages."
        assert store.calls == []

    def test_missing_parameter(self, executor, store):
        result = executor.execute_by_name("user.findById", {})
        assert not result.success
        assert result.error == "MissingParameterError"
        assert result.message == "Missing required parameter: id"
        assert store.calls == []

    def test_unknown_operator(self, executor, store, users):
        """An unknown operator must not silently match all documents."""
        result = executor.execute_by_name("user.findByBadOperator", {"minAge": 5})
        assert not result.success
        assert result.error == "MalformedFilterError"
        assert "$unknownOp" in result.message
        assert store.calls == []

    def test_broken_quoting(self, executor, store):
        """A parameter value that breaks the JSON text is reported, not executed."""
        result = executor.execute_by_name("user.findByName", {"name": "O'Brien"})
        assert not result.success
        assert result.error == "MalformedFilterError"
        assert store.calls == []

    def test_operator_injection(self, executor, store, users):
        """A text value can't add operators to the filter."""
        result = executor.execute_by_name(
            "user.findByUniversity", {"university": 'MIT", "$where": "true'}
        )
        assert not result.success
        assert result.error == "MalformedFilterError"
        assert "$where" in result.message
        assert store.calls == []

    def test_store_error(self, catalogue):
        executor = QueryExecutor(catalogue=catalogue, store=MongoDocumentStore(BrokenDatabase()))
        result = executor.execute_by_name("user.findByUniversity", {"university": "MIT"})
        assert not result.success
        assert result.error == "StoreOperationError"
        assert "Connection refused" in result.message

    def test_store_error_unwrapped(self, catalogue):
        """For debugging, the driver error can be raised as-is."""
        executor = QueryExecutor(catalogue=catalogue, store=MongoDocumentStore(BrokenDatabase()))
        with override_settings(DYNAMICQUERY_WRAP_STORE_ERRORS=False):
            with pytest.raises(ServerSelectionTimeoutError):
                executor.execute_by_name("user.count", {})

    def test_repeated_calls(self, executor, users):
        """The executor keeps no state between calls."""
        first = executor.execute_by_name("user.findByUniversity", {"university": "MIT"})
        second = executor.execute_by_name("user.findByUniversity", {"university": "MIT"})
        assert first.data == second.data


class TestExecuteById:
    """Prove that stored queries are executed."""

    def test_default_parameters(self, executor, store, carts, stored_query):
        result = executor.execute_by_id(stored_query.id)
        assert result.success, result.message
        assert store.calls == [("find", "cart", {"status": "ACTIVE"})]
        assert result.result_count == 2
        assert result.query_id == stored_query.id
        assert result.query_name == "cartsByStatus"
        assert result.metadata == {"cacheable": True, "cacheTimeoutSeconds": 60}

    def test_caller_parameters_win(self, executor, store, carts, stored_query):
        result = executor.execute_by_id(stored_query.id, {"status": "CANCELLED"})
        assert result.success, result.message
        assert store.calls == [("find", "cart", {"status": "CANCELLED"})]
        assert [doc["totalAmount"] for doc in result.data] == [25]

    def test_custom_messages(self, executor, registry, carts):
        stored_query = registry.create(
            StoredQuery(
                name="cartCount",
                query="{}",
                query_type="count",
                collection="cart",
                success_message="Carts counted",
                error_message="Counting carts failed",
            )
        )
        result = executor.execute_by_id(stored_query.id)
        assert result.success
        assert result.data == 3
        assert result.message == "Carts counted"

        registry.update(stored_query.id, query='{"status": ${status}}', query_type="FIND")
        result = executor.execute_by_id(stored_query.id)
        assert not result.success
        assert result.error == "MissingParameterError"
        assert result.detail == "Counting carts failed"

    def test_not_found(self, executor, store):
        result = executor.execute_by_id("65a1f0c2e4b0a1a2b3c4d5e6")
        assert not result.success
        assert result.error == "QueryNotFoundError"
        assert result.detail == "Query execution failed"
        assert result.query_id == "65a1f0c2e4b0a1a2b3c4d5e6"
        assert store.calls == []

    def test_malformed_id(self, executor, store):
        result = executor.execute_by_id("not-an-object-id")
        assert result.error == "QueryNotFoundError"
        assert store.calls == []

    def test_inactive(self, executor, registry, store, stored_query):
        registry.delete(stored_query.id)
        result = executor.execute_by_id(stored_query.id)
        assert not result.success
        assert result.error == "QueryNotFoundError"
        assert store.calls == []

    def test_invalid_record(self, executor, registry, store):
        """A record that was stored with a non-text template is reported as failure."""
        inserted = registry.collection.insert_one(
            {
                "name": "objectQuery",
                "query": {"status": "ACTIVE"},
                "query_type": "FIND",
                "collection": "cart",
                "active": True,
            }
        )
        result = executor.execute_by_id(str(inserted.inserted_id))
        assert not result.success
        assert result.error == "InvalidQueryDefinitionError"
        assert store.calls == []

    def test_no_registry(self, catalogue, store):
        executor = QueryExecutor(catalogue=catalogue, store=store)
        result = executor.execute_by_id("65a1f0c2e4b0a1a2b3c4d5e6")
        assert result.error == "QueryNotFoundError"


class TestValidateParameters:
    def test_valid(self, executor):
        assert executor.validate_parameters("user.findById", {"id": "u1"})
        assert executor.validate_parameters("user.findActive", {})
        assert executor.validate_parameters("user.findActive", None)

    def test_missing(self, executor):
        assert not executor.validate_parameters("user.findById", {})
        assert not executor.validate_parameters("user.findByAgeRange", {"minAge": 1})

    def test_extra_parameters(self, executor):
        assert executor.validate_parameters("user.findById", {"id": "u1", "extra": 1})

    @pytest.mark.parametrize("query_name", ["user", "bogus.op", "user.bogus"])
    def test_bad_name(self, executor, query_name):
        """Invalid names are reported as invalid, instead of raising an error."""
        assert not executor.validate_parameters(query_name, {})


def test_list_mappings(executor):
    mappings = executor.list_mappings()
    assert set(mappings) == {"user", "cart"}
    assert mappings["cart"]["findByStatus"].target_collection == "cart"


def test_get_sample_queries(executor):
    samples = executor.get_sample_queries()
    assert samples["findUserByUniversity"]["queryName"] == "user.findByUniversity"


def test_from_settings(patched_database, catalogue):
    executor = QueryExecutor.from_settings()
    assert executor.catalogue is catalogue
    assert executor.store.database is patched_database
    assert executor.registry.collection.name == "query"
