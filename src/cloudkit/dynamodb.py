"""Key-value store: update expressions and the UpdateItem request."""

import enum
import json
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from boto3.dynamodb.types import TypeSerializer

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.exceptions import UnsupportedOperationError, ValidationError
from cloudkit.common.retry import RetryPolicy
from cloudkit.common.transport import JsonServiceClient, Transport

DYNAMODB_ERRORS = ErrorClassifier(
    "dynamodb",
    (
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "InternalServerError",
        "RequestLimitExceeded",
    ),
)

TARGET_PREFIX = "DynamoDB_20120810"

_serializer = TypeSerializer()

# name or name[index], e.g. "RelatedItems[2]"
_PATH_SEGMENT = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")


class DataOperation(enum.Enum):
    REPLACE = "replace"
    REMOVE = "remove"
    ADD = "add"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """One mutation of a record attribute."""

    name: str
    operation: DataOperation
    value: Any = None

    @classmethod
    def replace(cls, name: str, value: Any) -> "Change":
        return cls(name, DataOperation.REPLACE, value)

    @classmethod
    def remove(cls, name: str, value: Any = None) -> "Change":
        return cls(name, DataOperation.REMOVE, value)

    @classmethod
    def add(cls, name: str, value: Any) -> "Change":
        return cls(name, DataOperation.ADD, value)

    @classmethod
    def delete(cls, name: str, value: Any) -> "Change":
        return cls(name, DataOperation.DELETE, value)


def to_attribute_value(value: Any) -> Dict[str, Any]:
    """Serialize a Python value to its typed wire form.

    Floats are carried as ``Decimal`` of their shortest repr, so ``9.99``
    becomes ``{"N": "9.99"}``.
    """
    try:
        return _serializer.serialize(_decimals(value))
    except TypeError as e:
        raise ValidationError(
            f"Unsupported attribute value: {e}",
            details={"type": type(value).__name__},
        ) from e


def _decimals(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _decimals(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_decimals(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_decimals(v) for v in value}
    return value


class AttributeNameAliases:
    """Caller-owned table of attribute name -> ``#n<i>`` placeholders.

    Insert-only: an alias, once coined, is never changed or removed.
    """

    prefix = "#n"

    def __init__(self):
        self._by_name: Dict[str, str] = {}
        self._by_token: Dict[str, str] = {}

    def alias(self, name: str) -> str:
        token = self._by_name.get(name)
        if token is None:
            token = f"{self.prefix}{len(self._by_name)}"
            self._by_name[name] = token
            self._by_token[token] = name
        return token

    def token_for(self, name: str) -> Optional[str]:
        return self._by_name.get(name)

    def name_for(self, token: str) -> Optional[str]:
        return self._by_token.get(token)

    def to_wire(self) -> Dict[str, str]:
        """ExpressionAttributeNames: placeholder -> attribute name."""
        return dict(self._by_token)

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name


class AttributeValueAliases:
    """Caller-owned table of value -> ``:v<i>`` placeholders.

    Values are stored in their wire form; equal values share one placeholder.
    """

    prefix = ":v"

    def __init__(self):
        self._by_key: Dict[str, str] = {}
        self._by_token: Dict[str, Dict[str, Any]] = {}

    def alias(self, value: Any) -> str:
        return self.alias_wire(to_attribute_value(value))

    def alias_wire(self, wire: Dict[str, Any]) -> str:
        key = json.dumps(wire, sort_keys=True, default=str)
        token = self._by_key.get(key)
        if token is None:
            token = f"{self.prefix}{len(self._by_key)}"
            self._by_key[key] = token
            self._by_token[token] = wire
        return token

    def value_for(self, token: str) -> Optional[Dict[str, Any]]:
        return self._by_token.get(token)

    def to_wire(self) -> Dict[str, Dict[str, Any]]:
        """ExpressionAttributeValues: placeholder -> typed attribute value."""
        return dict(self._by_token)

    def __len__(self) -> int:
        return len(self._by_key)


def _split_path(path: str) -> List[Tuple[str, str]]:
    segments = []
    for segment in path.split("."):
        match = _PATH_SEGMENT.match(segment)
        if match is None:
            raise ValidationError(
                f"Invalid attribute path '{path}'", details={"path": path}
            )
        segments.append((match.group(1), match.group(2)))
    return segments


def alias_path(path: str, names: AttributeNameAliases) -> str:
    """Alias every segment of a dotted path, keeping list indexes literal.

    ``Pictures.RearView`` -> ``#n0.#n1``; ``RelatedItems[2]`` -> ``#n2[2]``.
    """
    return ".".join(
        names.alias(name) + indexes for name, indexes in _split_path(path)
    )


_CLAUSE_ORDER = ("SET", "REMOVE", "ADD", "DELETE")


def _clause_for(change: Change) -> str:
    if change.operation is DataOperation.REMOVE:
        # With a value this removes elements from a set, not the attribute
        return "REMOVE" if change.value is None else "DELETE"
    if change.operation is DataOperation.DELETE:
        keyword = "DELETE"
    elif change.operation is DataOperation.ADD:
        keyword = "ADD"
    elif change.operation is DataOperation.REPLACE:
        keyword = "SET"
    else:
        raise UnsupportedOperationError(
            f"Unexpected change operation: {change.operation}",
            details={"name": change.name, "operation": str(change.operation)},
        )
    if change.value is None:
        raise ValidationError(
            f"{change.operation.name} of '{change.name}' requires a value",
            details={"name": change.name, "operation": change.operation.value},
        )
    return keyword


@dataclass(frozen=True)
class _PreparedChange:
    keyword: str
    path: str
    separator: str
    wire: Optional[Dict[str, Any]]


def _prepare(change: Change) -> _PreparedChange:
    keyword = _clause_for(change)
    _split_path(change.name)
    wire = None if change.value is None else to_attribute_value(change.value)
    separator = " = " if keyword == "SET" else " "
    return _PreparedChange(keyword, change.name, separator, wire)


def build_update_expression(
    changes: Iterable[Change],
    names: AttributeNameAliases,
    values: AttributeValueAliases,
) -> str:
    """Compose an update expression from ``changes``.

    Clauses are emitted in SET, REMOVE, ADD, DELETE order and only when at
    least one change maps to them. Names and values are written through the
    alias tables, which are filled in as a side effect. Every change is
    validated first, so a rejected batch leaves both tables untouched.
    """
    prepared = [_prepare(change) for change in changes]

    clauses: Dict[str, List[str]] = {}
    for item in prepared:
        text = alias_path(item.path, names)
        if item.wire is not None:
            text += item.separator + values.alias_wire(item.wire)
        clauses.setdefault(item.keyword, []).append(text)

    return "\n".join(
        f"{keyword} " + ", ".join(clauses[keyword])
        for keyword in _CLAUSE_ORDER
        if keyword in clauses
    )


class DynamoDbClient:
    """JSON-target client for item updates."""

    def __init__(
        self,
        transport: Transport,
        region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.client = JsonServiceClient(
            transport,
            endpoint=f"https://dynamodb.{region}.amazonaws.com/",
            target_prefix=TARGET_PREFIX,
            classifier=DYNAMODB_ERRORS,
            retry_policy=retry_policy,
        )
        self.client.content_type = "application/x-amz-json-1.0"

    @staticmethod
    def update_item_request(
        table_name: str,
        key: Mapping[str, Any],
        changes: Iterable[Change],
        return_values: Optional[str] = None,
    ) -> Dict[str, Any]:
        if table_name is None:
            raise ValidationError("table_name is required")
        if not key:
            raise ValidationError("key is required")

        changes = list(changes)
        if not changes:
            raise ValidationError("At least one change is required")

        names = AttributeNameAliases()
        values = AttributeValueAliases()
        expression = build_update_expression(changes, names, values)

        return {
            "TableName": table_name,
            "Key": {k: to_attribute_value(v) for k, v in key.items()},
            "UpdateExpression": expression,
            "ExpressionAttributeNames": names.to_wire(),
            "ExpressionAttributeValues": values.to_wire() or None,
            "ReturnValues": return_values,
        }

    async def update_item(
        self,
        table_name: str,
        key: Mapping[str, Any],
        changes: Iterable[Change],
        return_values: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = self.update_item_request(table_name, key, changes, return_values)
        return await self.client.send("UpdateItem", request)
