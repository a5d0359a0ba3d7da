"""Object storage bucket: listing, get/put, retried copy and multipart upload."""

import asyncio
import inspect
import io
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    BinaryIO,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Union,
)

import aioboto3

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.config import ClientConfig
from cloudkit.common.exceptions import BatchDeleteError, ValidationError
from cloudkit.common.logger import get_logger, log_with_context
from cloudkit.common.retry import RetryPolicy, call_with_retry

logger = get_logger(__name__)

S3_ERRORS = ErrorClassifier(
    "s3",
    ("SlowDown", "InternalError", "ServiceUnavailable", "RequestTimeout", "503"),
)

DEFAULT_RETRY_POLICY = RetryPolicy(initial_delay=0.1, max_delay=3.0, max_retries=5)

# Part numbers accepted by the service
MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000

# Headers that describe a stored object rather than configure a write
_SKIPPED_HEADERS = frozenset(
    {
        "Accept-Ranges",
        "Content-Length",
        "Date",
        "ETag",
        "Server",
        "Last-Modified",
        "x-amz-expiration",
        "x-amz-request-id",
        "x-amz-id-2",
    }
)

_HEADER_KWARGS = {
    "Content-Type": "ContentType",
    "Content-Encoding": "ContentEncoding",
    "Content-Disposition": "ContentDisposition",
    "Cache-Control": "CacheControl",
}

_META_PREFIX = "x-amz-meta-"

Data = Union[bytes, bytearray, BinaryIO]


@dataclass(frozen=True)
class ObjectLocation:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"


@dataclass(frozen=True)
class Upload:
    """An in-progress multipart upload."""

    bucket: str
    key: str
    upload_id: str


@dataclass(frozen=True)
class UploadBlock:
    """A successfully uploaded part."""

    number: int
    etag: str

    def to_part(self) -> Dict[str, Any]:
        return {"PartNumber": self.number, "ETag": self.etag}


@dataclass
class ListBucketOptions:
    prefix: Optional[str] = None
    delimiter: Optional[str] = None
    continuation_token: Optional[str] = None
    start_after: Optional[str] = None
    max_keys: int = 1000

    def to_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"MaxKeys": self.max_keys}
        if self.prefix is not None:
            kwargs["Prefix"] = self.prefix
        if self.delimiter is not None:
            kwargs["Delimiter"] = self.delimiter
        if self.continuation_token is not None:
            kwargs["ContinuationToken"] = self.continuation_token
        if self.start_after is not None:
            kwargs["StartAfter"] = self.start_after
        return kwargs


@dataclass
class ListBucketResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_continuation_token: Optional[str] = None
    is_truncated: bool = False


def metadata_kwargs(metadata: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    """Map header-style metadata onto boto3 keyword arguments.

    Standard content headers get their own argument, response-only headers are
    dropped, and everything else becomes user metadata.
    """
    kwargs: Dict[str, Any] = {}
    if not metadata:
        return kwargs

    user_metadata: Dict[str, str] = {}
    for name, value in metadata.items():
        if name in _SKIPPED_HEADERS:
            continue
        if name in _HEADER_KWARGS:
            kwargs[_HEADER_KWARGS[name]] = value
        elif name.lower().startswith(_META_PREFIX):
            user_metadata[name[len(_META_PREFIX):]] = value
        else:
            user_metadata[name] = value

    if user_metadata:
        kwargs["Metadata"] = user_metadata
    return kwargs


def _rewinder(data: Data):
    """Return a callable producing the part body for each attempt."""
    if isinstance(data, (bytes, bytearray)):
        return lambda: data

    if data.seekable():
        start = data.tell()

        def rewind():
            data.seek(start)
            return data

        return rewind

    # A one-shot stream can only be retried once it is buffered
    buffered = data.read()
    return lambda: buffered


def _check_body(data: Data) -> None:
    if isinstance(data, (bytes, bytearray)):
        if len(data) == 0:
            raise ValidationError("May not be empty", details={"parameter": "data"})
        return

    if data.seekable():
        position = data.tell()
        if position != 0:
            raise ValidationError(
                f"Stream position must be 0. Was {position}.",
                details={"parameter": "data"},
            )
        if data.seek(0, io.SEEK_END) == 0:
            raise ValidationError("May not be empty", details={"parameter": "data"})
        data.seek(0)


def _object_result(key: str, response: Mapping[str, Any], body: bytes) -> Dict[str, Any]:
    return {
        "Key": key,
        "Body": body,
        "ContentLength": response.get("ContentLength"),
        "ContentType": response.get("ContentType"),
        "ETag": response.get("ETag", ""),
        "Metadata": response.get("Metadata", {}),
    }


class S3Bucket:
    """Async facade over an S3 client bound to one bucket.

    ``client`` is normally an aioboto3 client (see ``connect``), whose calls
    are awaited directly. A plain boto3 client also works; its blocking calls
    are handed to the event loop's default executor.

    At most one completion or abort may be in flight per upload.
    """

    def __init__(
        self,
        bucket_name: str,
        client,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[ClientConfig] = None,
    ):
        if bucket_name is None:
            raise ValidationError("bucket_name is required")
        if client is None:
            raise ValidationError("client is required")

        self.bucket_name = bucket_name
        self.client = client
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self.config = config or ClientConfig()
        # upload ids with a completion or abort in flight
        self._finishing: Set[str] = set()

    @classmethod
    def from_config(cls, bucket_name: str, client, config: ClientConfig) -> "S3Bucket":
        return cls(
            bucket_name,
            client,
            retry_policy=RetryPolicy.from_config(config),
            config=config,
        )

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        bucket_name: str,
        config: Optional[ClientConfig] = None,
    ) -> AsyncIterator["S3Bucket"]:
        """Open an aioboto3 S3 client and yield a bucket bound to it."""
        config = config or ClientConfig.from_env()
        session = aioboto3.Session()
        async with session.client("s3", region_name=config.region) as client:
            yield cls.from_config(bucket_name, client, config)

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        if inspect.iscoroutinefunction(method):
            return await method(**kwargs)
        return await asyncio.to_thread(method, **kwargs)

    # Objects

    async def list(
        self,
        prefix: Optional[str] = None,
        continuation_token: Optional[str] = None,
        take: Optional[int] = None,
    ) -> ListBucketResult:
        options = ListBucketOptions(
            prefix=prefix,
            continuation_token=continuation_token,
            max_keys=take or self.config.list_page_size,
        )
        return await self.list_with_options(options)

    async def list_with_options(self, options: ListBucketOptions) -> ListBucketResult:
        response = await self._call(
            "list_objects_v2", Bucket=self.bucket_name, **options.to_kwargs()
        )
        items = [
            {
                "Key": obj["Key"],
                "Size": obj["Size"],
                "LastModified": obj["LastModified"].isoformat(),
                "ETag": obj["ETag"],
            }
            for obj in response.get("Contents", [])
        ]
        return ListBucketResult(
            items=items,
            next_continuation_token=response.get("NextContinuationToken"),
            is_truncated=response.get("IsTruncated", False),
        )

    async def get(self, name: str) -> Dict[str, Any]:
        return await self._read_object(Key=name)

    async def get_range(self, name: str, start: int, end: int) -> Dict[str, Any]:
        """Read bytes ``start`` through ``end`` inclusive."""
        if start < 0 or end < start:
            raise ValidationError(
                f"Invalid range {start}-{end}", details={"start": start, "end": end}
            )
        return await self._read_object(Key=name, Range=f"bytes={start}-{end}")

    async def _read_object(self, **kwargs) -> Dict[str, Any]:
        method = self.client.get_object
        if not inspect.iscoroutinefunction(method):
            return await asyncio.to_thread(self._read_object_sync, **kwargs)

        response = await method(Bucket=self.bucket_name, **kwargs)
        async with response["Body"] as stream:
            body = await stream.read()
        return _object_result(kwargs["Key"], response, body)

    def _read_object_sync(self, **kwargs) -> Dict[str, Any]:
        response = self.client.get_object(Bucket=self.bucket_name, **kwargs)
        return _object_result(kwargs["Key"], response, response["Body"].read())

    async def get_metadata(self, name: str) -> Dict[str, Any]:
        response = await self._call("head_object", Bucket=self.bucket_name, Key=name)
        return {
            "ContentLength": response["ContentLength"],
            "ContentType": response.get("ContentType"),
            "ETag": response.get("ETag", ""),
            "LastModified": response["LastModified"].isoformat(),
            "Metadata": response.get("Metadata", {}),
        }

    async def put(
        self,
        name: str,
        data: Data,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        if name is None:
            raise ValidationError("name is required")
        if data is None:
            raise ValidationError("data is required")
        _check_body(data)

        logger.info("Putting s3://%s/%s", self.bucket_name, name)
        return await self._call(
            "put_object",
            Bucket=self.bucket_name,
            Key=name,
            Body=data,
            **metadata_kwargs(metadata),
        )

    async def copy(
        self,
        name: str,
        source: ObjectLocation,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Server-side copy of ``source`` into this bucket, retried on transient errors."""
        kwargs: Dict[str, Any] = {
            "CopySource": {"Bucket": source.bucket, "Key": source.key},
            "Bucket": self.bucket_name,
            "Key": name,
        }
        if metadata:
            kwargs["MetadataDirective"] = "REPLACE"
            kwargs.update(metadata_kwargs(metadata))

        async def copy_once():
            return await self._call("copy_object", **kwargs)

        logger.info("Copying s3://%s -> s3://%s/%s", source, self.bucket_name, name)
        result = await call_with_retry(
            copy_once,
            S3_ERRORS,
            self.retry_policy,
            description=f"copy of '{source}' to '{name}'",
        )
        logger.info("Copy complete: s3://%s/%s", self.bucket_name, name)
        return result

    async def restore(self, name: str, days: int) -> Dict[str, Any]:
        """Start restoring an archived object for ``days`` days."""
        return await self._call(
            "restore_object",
            Bucket=self.bucket_name,
            Key=name,
            RestoreRequest={"Days": days},
        )

    async def delete(self, name: str, version: Optional[str] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"Bucket": self.bucket_name, "Key": name}
        if version is not None:
            kwargs["VersionId"] = version
        return await self._call("delete_object", **kwargs)

    async def delete_many(self, names: Sequence[str]) -> Dict[str, Any]:
        if not names:
            raise ValidationError("names may not be empty")

        response = await self._call(
            "delete_objects",
            Bucket=self.bucket_name,
            Delete={"Objects": [{"Key": n} for n in names], "Quiet": False},
        )
        errors = response.get("Errors", [])
        if errors:
            raise BatchDeleteError(
                errors[0].get("Message", "Batch delete failed"),
                details={"errors": errors},
            )
        deleted = response.get("Deleted", [])
        if len(deleted) != len(names):
            raise BatchDeleteError(
                f"Deleted {len(deleted)} of {len(names)} keys",
                details={"requested": len(names), "deleted": len(deleted)},
            )
        return response

    # Multipart uploads

    async def start_upload(
        self,
        name: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Upload:
        """Begin a multipart upload. Not retried; the caller owns that decision."""
        response = await self._call(
            "create_multipart_upload",
            Bucket=self.bucket_name,
            Key=name,
            **metadata_kwargs(metadata),
        )
        upload = Upload(
            bucket=response.get("Bucket", self.bucket_name),
            key=response.get("Key", name),
            upload_id=response["UploadId"],
        )
        log_with_context(
            logger,
            logging.INFO,
            "Multipart upload started",
            bucket=upload.bucket,
            key=upload.key,
            upload_id=upload.upload_id,
        )
        return upload

    async def upload_part(self, upload: Upload, number: int, data: Data) -> UploadBlock:
        """Upload one part.

        Parts of the same upload may be sent concurrently and in any order.
        Each call retries on its own, independent of other parts.
        """
        if not MIN_PART_NUMBER <= number <= MAX_PART_NUMBER:
            raise ValidationError(
                f"Part number must be between {MIN_PART_NUMBER} and "
                f"{MAX_PART_NUMBER}. Was {number}.",
                details={"part_number": number},
            )
        body = _rewinder(data)

        async def upload_once():
            return await self._call(
                "upload_part",
                Bucket=upload.bucket,
                Key=upload.key,
                UploadId=upload.upload_id,
                PartNumber=number,
                Body=body(),
            )

        response = await call_with_retry(
            upload_once,
            S3_ERRORS,
            self.retry_policy,
            description=f"part {number} of '{upload.key}'",
        )
        logger.info("Part %d complete for %s", number, upload.key)
        return UploadBlock(number=number, etag=response["ETag"])

    def _claim(self, upload: Upload, action: str) -> None:
        # check and insert with no await in between
        if upload.upload_id in self._finishing:
            raise ValidationError(
                f"Cannot {action} upload {upload.upload_id}: "
                "a completion or abort is already in progress",
                details={"upload_id": upload.upload_id, "action": action},
            )
        self._finishing.add(upload.upload_id)

    async def complete_upload(
        self,
        upload: Upload,
        blocks: Sequence[UploadBlock],
    ) -> Dict[str, Any]:
        """Assemble the uploaded parts in ascending part-number order.

        Does not abort on failure: the upload may still be resumable.
        """
        if not blocks:
            raise ValidationError(
                "At least one block is required to complete an upload",
                details={"upload_id": upload.upload_id},
            )

        ordered = sorted(blocks, key=lambda b: b.number)
        numbers = [b.number for b in ordered]
        if len(set(numbers)) != len(numbers):
            raise ValidationError(
                "Duplicate part numbers in completion list",
                details={"upload_id": upload.upload_id, "part_numbers": numbers},
            )

        async def complete_once():
            return await self._call(
                "complete_multipart_upload",
                Bucket=upload.bucket,
                Key=upload.key,
                UploadId=upload.upload_id,
                MultipartUpload={"Parts": [b.to_part() for b in ordered]},
            )

        self._claim(upload, "complete")
        try:
            result = await call_with_retry(
                complete_once,
                S3_ERRORS,
                self.retry_policy,
                description=f"completion of '{upload.key}'",
            )
        finally:
            self._finishing.discard(upload.upload_id)

        log_with_context(
            logger,
            logging.INFO,
            "Multipart upload complete",
            bucket=upload.bucket,
            key=upload.key,
            upload_id=upload.upload_id,
            parts=len(ordered),
        )
        return result

    async def abort_upload(self, upload: Upload) -> Dict[str, Any]:
        async def abort_once():
            return await self._call(
                "abort_multipart_upload",
                Bucket=upload.bucket,
                Key=upload.key,
                UploadId=upload.upload_id,
            )

        self._claim(upload, "abort")
        log_with_context(
            logger,
            logging.WARNING,
            "Aborting multipart upload",
            bucket=upload.bucket,
            key=upload.key,
            upload_id=upload.upload_id,
        )
        try:
            return await call_with_retry(
                abort_once,
                S3_ERRORS,
                self.retry_policy,
                description=f"abort of '{upload.key}'",
            )
        finally:
            self._finishing.discard(upload.upload_id)
