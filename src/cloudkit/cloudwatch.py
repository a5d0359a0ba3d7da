"""Metrics service: GetMetricStatistics over the query protocol."""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.exceptions import ValidationError
from cloudkit.common.params import ParameterSet
from cloudkit.common.retry import RetryPolicy
from cloudkit.common.transport import QueryServiceClient, Transport, TransportResponse

CLOUDWATCH_ERRORS = ErrorClassifier(
    "cloudwatch", ("Throttling", "InternalFailure", "ServiceUnavailable")
)

API_VERSION = "2010-08-01"


class Statistic(enum.Enum):
    AVERAGE = "Average"
    SUM = "Sum"
    SAMPLE_COUNT = "SampleCount"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"


@dataclass(frozen=True)
class Dimension:
    name: str
    value: str


@dataclass
class GetMetricStatisticsRequest:
    namespace: str
    metric_name: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    # Granularity of returned data points; a multiple of 60 seconds
    period: timedelta = timedelta(seconds=60)
    unit: Optional[str] = None
    dimensions: Optional[List[Dimension]] = None
    statistics: Optional[List[Statistic]] = None

    def __post_init__(self):
        if self.namespace is None:
            raise ValidationError("namespace is required")
        if self.metric_name is None:
            raise ValidationError("metric_name is required")

    def to_params(self) -> ParameterSet:
        params = ParameterSet("GetMetricStatistics")
        params.add_required("Namespace", self.namespace)
        params.add_required("MetricName", self.metric_name)
        params.add_timestamp("StartTime", self.start_time)
        params.add_timestamp("EndTime", self.end_time)
        params.add_seconds("Period", self.period)
        params.add_optional("Unit", self.unit)
        params.add_list("Dimensions.member.{n}", self.dimensions, fields=("Name", "Value"))
        params.add_list("Statistics.member.{n}", self.statistics)
        return params


class CloudWatchClient:
    def __init__(
        self,
        transport: Transport,
        region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.client = QueryServiceClient(
            transport,
            endpoint=f"https://monitoring.{region}.amazonaws.com/",
            version=API_VERSION,
            classifier=CLOUDWATCH_ERRORS,
            retry_policy=retry_policy,
        )

    async def get_metric_statistics(
        self, request: GetMetricStatisticsRequest
    ) -> TransportResponse:
        return await self.client.send(request.to_params())
