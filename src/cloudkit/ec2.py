"""Compute instances: Describe* requests over the query protocol."""

from dataclasses import dataclass, field
from typing import List, Optional

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.params import ParameterSet
from cloudkit.common.retry import RetryPolicy
from cloudkit.common.transport import QueryServiceClient, Transport, TransportResponse

EC2_ERRORS = ErrorClassifier(
    "ec2", ("RequestLimitExceeded", "InternalError", "Unavailable")
)

API_VERSION = "2016-11-15"


@dataclass(frozen=True)
class Filter:
    name: str
    value: str


@dataclass
class DescribeRequest:
    """Shared shape of the Describe* family: filters plus paging."""

    action = ""
    id_name = ""

    ids: List[str] = field(default_factory=list)
    filters: List[Filter] = field(default_factory=list)
    max_results: Optional[int] = None
    next_token: Optional[str] = None

    def to_params(self) -> ParameterSet:
        params = ParameterSet(self.action)
        params.add_list("Filter.{n}", self.filters, fields=("Name", "Value"))
        # e.g. InstanceId.1
        params.add_list(self.id_name + ".{n}", self.ids)
        params.add_optional("MaxResults", self.max_results)
        params.add_optional("NextToken", self.next_token)
        return params


class DescribeInstancesRequest(DescribeRequest):
    action = "DescribeInstances"
    id_name = "InstanceId"


class DescribeVolumesRequest(DescribeRequest):
    action = "DescribeVolumes"
    id_name = "VolumeId"


class DescribeImagesRequest(DescribeRequest):
    action = "DescribeImages"
    id_name = "ImageId"


class Ec2Client:
    def __init__(
        self,
        transport: Transport,
        region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.client = QueryServiceClient(
            transport,
            endpoint=f"https://ec2.{region}.amazonaws.com/",
            version=API_VERSION,
            classifier=EC2_ERRORS,
            retry_policy=retry_policy,
        )

    async def describe(self, request: DescribeRequest) -> TransportResponse:
        return await self.client.send(request.to_params())

    async def describe_instances(self, request: DescribeInstancesRequest) -> TransportResponse:
        return await self.describe(request)

    async def describe_volumes(self, request: DescribeVolumesRequest) -> TransportResponse:
        return await self.describe(request)

    async def describe_images(self, request: DescribeImagesRequest) -> TransportResponse:
        return await self.describe(request)
