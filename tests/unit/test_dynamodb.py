"""Tests for update expressions and the UpdateItem request."""

import asyncio
import json

import pytest

from cloudkit.common.exceptions import (
    UnsupportedOperationError,
    ValidationError,
)
from cloudkit.dynamodb import (
    AttributeNameAliases,
    AttributeValueAliases,
    Change,
    DataOperation,
    DynamoDbClient,
    alias_path,
    build_update_expression,
)


@pytest.fixture
def names():
    return AttributeNameAliases()


@pytest.fixture
def values():
    return AttributeValueAliases()


class TestAliasTables:
    def test_same_name_same_token(self, names):
        assert names.alias("Title") == "#n0"
        assert names.alias("Count") == "#n1"
        assert names.alias("Title") == "#n0"
        assert len(names) == 2
        assert names.to_wire() == {"#n0": "Title", "#n1": "Count"}
        assert names.name_for("#n1") == "Count"
        assert names.token_for("Title") == "#n0"

    def test_same_value_same_token(self, values):
        assert values.alias("red") == ":v0"
        assert values.alias(5) == ":v1"
        assert values.alias("red") == ":v0"
        assert values.to_wire() == {":v0": {"S": "red"}, ":v1": {"N": "5"}}

    def test_equal_literals_of_different_types_differ(self, values):
        assert values.alias("5") != values.alias(5)

    def test_sets_serialize_as_set_types(self, values):
        token = values.alias({"a"})
        assert values.value_for(token) == {"SS": ["a"]}


class TestAliasPath:
    def test_dotted_and_indexed(self, names):
        assert alias_path("Pictures.RearView", names) == "#n0.#n1"
        assert alias_path("RelatedItems[2]", names) == "#n2[2]"
        assert alias_path("Pictures.FrontView", names) == "#n0.#n3"

    def test_invalid_path(self, names):
        with pytest.raises(ValidationError):
            alias_path("Bad..Path", names)


class TestBuildUpdateExpression:
    def test_clauses_in_fixed_order(self, names, values):
        changes = [
            Change.add("Count", 1),
            Change.remove("OldAttr"),
            Change.replace("Title", "New Title"),
        ]
        expression = build_update_expression(changes, names, values)
        lines = expression.split("\n")
        assert lines == ["SET #n2 = :v1", "REMOVE #n1", "ADD #n0 :v0"]
        assert names.to_wire() == {"#n0": "Count", "#n1": "OldAttr", "#n2": "Title"}
        assert values.to_wire() == {":v0": {"N": "1"}, ":v1": {"S": "New Title"}}

    def test_only_used_clauses_emitted(self, names, values):
        expression = build_update_expression(
            [Change.replace("Title", "t")], names, values
        )
        assert expression == "SET #n0 = :v0"
        assert not expression.endswith("\n")

    def test_entries_separated_within_clause(self, names, values):
        expression = build_update_expression(
            [Change.replace("A", "x"), Change.replace("B", "y"), Change.remove("C")],
            names,
            values,
        )
        assert expression == "SET #n0 = :v0, #n1 = :v1\nREMOVE #n2"

    def test_remove_with_value_is_set_delete(self, names, values):
        expression = build_update_expression(
            [Change.remove("Colors", {"red"}), Change.delete("Sizes", {"L"})],
            names,
            values,
        )
        assert expression == "DELETE #n0 :v0, #n1 :v1"

    def test_all_four_clauses(self, names, values):
        expression = build_update_expression(
            [
                Change.delete("Tags", {"old"}),
                Change.add("Views", 1),
                Change.remove("Draft"),
                Change.replace("Title", "t"),
            ],
            names,
            values,
        )
        keywords = [line.split(" ")[0] for line in expression.split("\n")]
        assert keywords == ["SET", "REMOVE", "ADD", "DELETE"]

    def test_same_value_shares_placeholder(self, names, values):
        expression = build_update_expression(
            [Change.replace("Title", "same"), Change.replace("Subtitle", "same")],
            names,
            values,
        )
        assert expression == "SET #n0 = :v0, #n1 = :v0"
        assert len(values) == 1

    def test_tables_reused_across_builds(self, names, values):
        build_update_expression([Change.replace("Title", "a")], names, values)
        expression = build_update_expression(
            [Change.replace("Title", "a"), Change.replace("Body", "b")], names, values
        )
        assert expression == "SET #n0 = :v0, #n1 = :v1"

    def test_unsupported_operation(self, names, values):
        with pytest.raises(UnsupportedOperationError, match="Unexpected change operation"):
            build_update_expression([Change("Title", "append", "x")], names, values)

    def test_float_value_is_carried_as_number(self, names, values):
        expression = build_update_expression([Change.replace("Price", 9.99)], names, values)
        assert expression == "SET #n0 = :v0"
        assert values.to_wire() == {":v0": {"N": "9.99"}}

    def test_unsupported_value_leaves_tables_untouched(self, names, values):
        changes = [Change.replace("Title", "ok"), Change.replace("Handler", object())]
        with pytest.raises(ValidationError, match="Unsupported attribute value"):
            build_update_expression(changes, names, values)
        assert len(names) == 0
        assert len(values) == 0

    def test_invalid_path_leaves_tables_untouched(self, names, values):
        with pytest.raises(ValidationError):
            build_update_expression(
                [Change.replace("Title", "t"), Change.replace("Bad..Path", 1)], names, values
            )
        assert len(names) == 0

    @pytest.mark.parametrize("operation", ["replace", "add", "delete"])
    def test_value_required(self, names, values, operation):
        with pytest.raises(ValidationError, match="requires a value"):
            build_update_expression([getattr(Change, operation)("Tags", None)], names, values)
        assert len(names) == 0

    def test_operation_enum_values(self):
        assert {op.name for op in DataOperation} == {"REPLACE", "REMOVE", "ADD", "DELETE"}


class TestDynamoDbClient:
    def test_update_item(self, transport):
        transport.reply(body=b'{"Attributes": {}}')
        client = DynamoDbClient(transport)

        result = asyncio.run(
            client.update_item(
                "Articles",
                {"Id": 7},
                [Change.replace("Title", "New Title"), Change.remove("OldAttr")],
                return_values="ALL_NEW",
            )
        )

        assert result == {"Attributes": {}}
        request = transport.requests[0]
        assert request["headers"]["x-amz-target"] == "DynamoDB_20120810.UpdateItem"
        assert request["headers"]["Content-Type"] == "application/x-amz-json-1.0"
        body = json.loads(request["body"])
        assert body == {
            "TableName": "Articles",
            "Key": {"Id": {"N": "7"}},
            "UpdateExpression": "SET #n0 = :v0\nREMOVE #n1",
            "ExpressionAttributeNames": {"#n0": "Title", "#n1": "OldAttr"},
            "ExpressionAttributeValues": {":v0": {"S": "New Title"}},
            "ReturnValues": "ALL_NEW",
        }

    def test_remove_only_omits_values(self):
        request = DynamoDbClient.update_item_request("T", {"Id": "1"}, [Change.remove("A")])
        assert request["ExpressionAttributeValues"] is None

    def test_requires_changes(self):
        with pytest.raises(ValidationError):
            DynamoDbClient.update_item_request("T", {"Id": "1"}, [])

    def test_binary_value_is_base64_on_the_wire(self, transport):
        transport.reply(body=b"{}")
        client = DynamoDbClient(transport)

        asyncio.run(client.update_item("T", {"Id": "1"}, [Change.replace("Blob", b"\x00\xff")]))

        body = json.loads(transport.requests[0]["body"])
        assert body["ExpressionAttributeValues"] == {":v0": {"B": "AP8="}}

    def test_float_key_value(self):
        request = DynamoDbClient.update_item_request(
            "T", {"Score": 1.5}, [Change.remove("A")]
        )
        assert request["Key"] == {"Score": {"N": "1.5"}}
