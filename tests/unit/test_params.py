"""Tests for query-protocol parameter sets and JSON bodies."""

import enum
import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from cloudkit.common.exceptions import ValidationError
from cloudkit.common.params import (
    ParameterSet,
    encode_json,
    format_timestamp,
    whole_seconds,
)


class Color(enum.Enum):
    RED = "Red"


class TestFormatting:
    def test_timestamp_utc_with_z(self):
        value = datetime(2024, 3, 5, 7, 8, 9, 999999, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-03-05T07:08:09Z"

    def test_timestamp_converted_to_utc(self):
        value = datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone(timedelta(hours=5)))
        assert format_timestamp(value) == "2024-03-05T07:00:00Z"

    def test_naive_timestamp_taken_as_utc(self):
        assert format_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00Z"

    def test_seconds_truncated(self):
        assert whole_seconds(timedelta(seconds=90, milliseconds=999)) == 90


class TestParameterSet:
    def test_action_first(self):
        params = ParameterSet("DescribeThings", version="2020-01-01")
        assert list(params.items()) == [
            ("Action", "DescribeThings"),
            ("Version", "2020-01-01"),
        ]

    def test_required_missing_raises(self):
        with pytest.raises(ValidationError, match="Namespace is required"):
            ParameterSet("Op").add_required("Namespace", None)

    def test_optional_absent_is_omitted(self):
        params = ParameterSet("Op").add_optional("Unit", None).add_optional("NextToken", "t")
        assert "Unit" not in params
        assert params["NextToken"] == "t"

    def test_optional_falsy_value_is_written(self):
        params = ParameterSet("Op").add_optional("MaxResults", 0)
        assert params["MaxResults"] == 0

    def test_enum_written_by_value(self):
        params = ParameterSet("Op").add_optional("Color", Color.RED)
        assert params["Color"] == "Red"

    def test_later_write_overwrites(self):
        params = ParameterSet("Op").add_optional("Key", "a").add_optional("Key", "b")
        assert params["Key"] == "b"
        assert list(params) == ["Action", "Key"]

    def test_object_list_members(self):
        items = [{"Name": f"n{i}", "Value": f"v{i}"} for i in range(1, 4)]
        params = ParameterSet("Op").add_list(
            "Dimensions.member.{n}", items, fields=("Name", "Value")
        )
        assert list(params)[1:] == [
            "Dimensions.member.1.Name",
            "Dimensions.member.1.Value",
            "Dimensions.member.2.Name",
            "Dimensions.member.2.Value",
            "Dimensions.member.3.Name",
            "Dimensions.member.3.Value",
        ]
        assert params["Dimensions.member.2.Value"] == "v2"

    def test_scalar_list_members(self):
        params = ParameterSet("Op").add_list("VpcId.{n}", ["vpc-a", "vpc-b"])
        assert params["VpcId.1"] == "vpc-a"
        assert params["VpcId.2"] == "vpc-b"

    def test_none_list_writes_nothing(self):
        params = ParameterSet("Op").add_list("Filter.{n}", None, fields=("Name",))
        assert list(params) == ["Action"]

    def test_timestamp_and_seconds_required(self):
        with pytest.raises(ValidationError):
            ParameterSet("Op").add_timestamp("StartTime", None)
        with pytest.raises(ValidationError):
            ParameterSet("Op").add_seconds("Period", None)


@pytest.fixture
def new_york_time(monkeypatch):
    """Run with a host timezone that is not UTC."""
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestEncodeJson:
    def test_null_fields_omitted(self):
        body = json.loads(
            encode_json({"StreamName": "s", "Limit": None, "Nested": {"A": None, "B": 1}})
        )
        assert body == {"StreamName": "s", "Nested": {"B": 1}}

    def test_enum_and_datetime(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        body = json.loads(encode_json({"Color": Color.RED, "At": when}))
        assert body == {"Color": "Red", "At": when.timestamp()}

    def test_compact(self):
        assert encode_json({"A": [1, 2]}) == '{"A":[1,2]}'

    def test_naive_datetime_is_utc(self, new_york_time):
        body = json.loads(encode_json({"Timestamp": datetime(2024, 1, 1)}))
        assert body == {"Timestamp": 1704067200.0}
        assert format_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00Z"

    def test_bytes_base64_encoded(self):
        assert json.loads(encode_json({"Blob": b"\x00\xff"})) == {"Blob": "AP8="}
