"""Function invocation."""

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.exceptions import ValidationError
from cloudkit.common.retry import RetryPolicy, call_with_retry
from cloudkit.common.transport import Transport, TransportResponse, parse_error

LAMBDA_ERRORS = ErrorClassifier(
    "lambda", ("TooManyRequestsException", "ServiceException")
)

API_VERSION = "2015-03-31"


class InvocationType(enum.Enum):
    EVENT = "Event"
    REQUEST_RESPONSE = "RequestResponse"
    DRY_RUN = "DryRun"


class LogType(enum.Enum):
    NONE = "None"
    TAIL = "Tail"


@dataclass
class InvokeRequest:
    function_name: str
    payload: Optional[Any] = None
    invocation_type: Optional[InvocationType] = None
    log_type: Optional[LogType] = None

    def __post_init__(self):
        if not self.function_name:
            raise ValidationError("function_name is required")

    def body(self) -> Optional[str]:
        if self.payload is None:
            return None
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, separators=(",", ":"))

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.invocation_type is not None:
            headers["X-Amz-Invocation-Type"] = self.invocation_type.value
        if self.log_type is not None:
            headers["X-Amz-Log-Type"] = self.log_type.value
        return headers

    def path(self) -> str:
        return f"/{API_VERSION}/functions/{quote(self.function_name, safe='')}/invocations"


class LambdaClient:
    def __init__(
        self,
        transport: Transport,
        region: str = "us-east-1",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.transport = transport
        self.endpoint = f"https://lambda.{region}.amazonaws.com"
        self.retry_policy = retry_policy

    async def invoke(self, request: InvokeRequest) -> TransportResponse:
        async def invoke_once():
            response = await self.transport.execute(
                method="POST",
                uri=self.endpoint + request.path(),
                headers=request.headers(),
                body=request.body(),
            )
            if response.status >= 400:
                raise parse_error(response, "Invoke", LAMBDA_ERRORS)
            return response

        if self.retry_policy is None:
            return await invoke_once()
        return await call_with_retry(
            invoke_once,
            LAMBDA_ERRORS,
            self.retry_policy,
            description=f"invoke of '{request.function_name}'",
        )
