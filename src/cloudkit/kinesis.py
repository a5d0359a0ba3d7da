"""Stream ingestion over the JSON-target protocol."""

import base64
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Union

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.exceptions import ValidationError
from cloudkit.common.retry import RetryPolicy
from cloudkit.common.transport import JsonServiceClient, Transport

KINESIS_ERRORS = ErrorClassifier(
    "kinesis", ("ProvisionedThroughputExceededException", "InternalFailure")
)

TARGET_PREFIX = "Kinesis_20131202"


class ShardIteratorType(enum.Enum):
    AT_SEQUENCE_NUMBER = "AT_SEQUENCE_NUMBER"
    AFTER_SEQUENCE_NUMBER = "AFTER_SEQUENCE_NUMBER"
    AT_TIMESTAMP = "AT_TIMESTAMP"
    TRIM_HORIZON = "TRIM_HORIZON"
    LATEST = "LATEST"


@dataclass
class Record:
    stream_name: str
    data: Union[bytes, str]
    partition_key: str
    explicit_hash_key: Optional[str] = None
    sequence_number_for_ordering: Optional[str] = None

    def _data(self) -> str:
        raw = self.data.encode("utf-8") if isinstance(self.data, str) else self.data
        return base64.b64encode(raw).decode("ascii")

    def to_json(self) -> Dict[str, Any]:
        return {
            "StreamName": self.stream_name,
            "Data": self._data(),
            "PartitionKey": self.partition_key,
            "ExplicitHashKey": self.explicit_hash_key,
            "SequenceNumberForOrdering": self.sequence_number_for_ordering,
        }

    def to_entry(self) -> Dict[str, Any]:
        """Entry form used inside PutRecords, without the stream name."""
        return {
            "Data": self._data(),
            "PartitionKey": self.partition_key,
            "ExplicitHashKey": self.explicit_hash_key,
        }


class KinesisClient:
    def __init__(
        self,
        transport: Transport,
        region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.client = JsonServiceClient(
            transport,
            endpoint=f"https://kinesis.{region}.amazonaws.com/",
            target_prefix=TARGET_PREFIX,
            classifier=KINESIS_ERRORS,
            retry_policy=retry_policy,
        )

    async def put_record(self, record: Record) -> Dict[str, Any]:
        return await self.client.send("PutRecord", record.to_json())

    async def put_records(self, stream_name: str, records: Sequence[Record]) -> Dict[str, Any]:
        if not records:
            raise ValidationError("records may not be empty")
        return await self.client.send(
            "PutRecords",
            {
                "StreamName": stream_name,
                "Records": [r.to_entry() for r in records],
            },
        )

    async def describe_stream(
        self,
        stream_name: str,
        limit: Optional[int] = None,
        exclusive_start_shard_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.client.send(
            "DescribeStream",
            {
                "StreamName": stream_name,
                "Limit": limit,
                "ExclusiveStartShardId": exclusive_start_shard_id,
            },
        )

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: ShardIteratorType,
        starting_sequence_number: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return await self.client.send(
            "GetShardIterator",
            {
                "StreamName": stream_name,
                "ShardId": shard_id,
                "ShardIteratorType": iterator_type,
                "StartingSequenceNumber": starting_sequence_number,
                "Timestamp": timestamp,
            },
        )

    async def get_records(self, shard_iterator: str, limit: Optional[int] = None) -> Dict[str, Any]:
        return await self.client.send(
            "GetRecords", {"ShardIterator": shard_iterator, "Limit": limit}
        )

    async def merge_shards(
        self, stream_name: str, shard_to_merge: str, adjacent_shard_to_merge: str
    ) -> Dict[str, Any]:
        return await self.client.send(
            "MergeShards",
            {
                "StreamName": stream_name,
                "ShardToMerge": shard_to_merge,
                "AdjacentShardToMerge": adjacent_shard_to_merge,
            },
        )
