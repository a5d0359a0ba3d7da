"""Transport boundary and the two request protocols built on it.

HTTP execution and signing belong to the ``Transport`` implementation. The
clients here only build requests and interpret what comes back.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from cloudkit.common.classifier import ErrorClassifier
from cloudkit.common.exceptions import ProtocolError, ServiceError
from cloudkit.common.logger import get_logger
from cloudkit.common.params import ParameterSet, encode_json
from cloudkit.common.retry import RetryPolicy, call_with_retry

logger = get_logger(__name__)

Body = Union[bytes, str, Mapping[str, Any], None]


@dataclass
class TransportResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[bytes, str] = b""

    @property
    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body


class Transport(Protocol):
    async def execute(
        self,
        method: str,
        uri: str,
        headers: Mapping[str, str],
        body: Body,
    ) -> TransportResponse:
        ...


# Key spellings used by the different services for error code and message
_CODE_KEYS = ("__type", "type", "Type", "code", "Code", "ErrorCode")
_MESSAGE_KEYS = ("message", "Message", "ErrorMessage")


_ERROR_TYPE_HEADER = "x-amzn-errortype"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    return next((v for k, v in headers.items() if k.lower() == name), None)


def parse_error(
    response: TransportResponse,
    operation_name: str,
    classifier: ErrorClassifier,
) -> ServiceError:
    """Decode an error payload into a ServiceError.

    ``__type`` values like ``com.amazon.coral.service#ThrottlingException``
    are reduced to the part after ``#``. An ``x-amzn-ErrorType`` header wins
    over the body; with neither, the HTTP status is used as the code.
    """
    message = ""
    try:
        payload = json.loads(response.text) if response.body else {}
    except ValueError:
        payload = {}
        message = response.text

    code = _header(response.headers, _ERROR_TYPE_HEADER)
    if isinstance(payload, dict):
        if code is None:
            code = next((payload[k] for k in _CODE_KEYS if payload.get(k)), None)
        message = next(
            (payload[k] for k in _MESSAGE_KEYS if payload.get(k)), message
        )

    if code is None:
        code = str(response.status)
    code = str(code).split("#")[-1].split(":")[0]

    return ServiceError(
        code=code,
        message=message,
        operation_name=operation_name,
        classifier=classifier,
        status_code=response.status,
    )


class ServiceClient:
    """Common plumbing: optional retry around each request."""

    def __init__(
        self,
        transport: Transport,
        endpoint: str,
        classifier: ErrorClassifier,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.transport = transport
        self.endpoint = endpoint
        self.classifier = classifier
        self.retry_policy = retry_policy

    async def _execute(self, operation_name: str, send) -> Any:
        if self.retry_policy is None:
            return await send()
        return await call_with_retry(
            send,
            self.classifier,
            self.retry_policy,
            description=f"{self.classifier.service}.{operation_name}",
        )


class JsonServiceClient(ServiceClient):
    """JSON-target protocol: POST a JSON body, name the action in a header."""

    content_type = "application/x-amz-json-1.1"

    def __init__(self, transport: Transport, endpoint: str, target_prefix: str,
                 classifier: ErrorClassifier,
                 retry_policy: Optional[RetryPolicy] = None):
        super().__init__(transport, endpoint, classifier, retry_policy)
        self.target_prefix = target_prefix

    def build_request(self, action: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "method": "POST",
            "uri": self.endpoint,
            "headers": {
                "x-amz-target": f"{self.target_prefix}.{action}",
                "Content-Type": self.content_type,
            },
            "body": encode_json(body),
        }

    async def send(self, action: str, body: Dict[str, Any]) -> Dict[str, Any]:
        request = self.build_request(action, body)

        async def send_once():
            logger.debug("Sending %s to %s", request["headers"]["x-amz-target"],
                         self.endpoint)
            response = await self.transport.execute(**request)
            if response.status >= 400:
                raise parse_error(response, action, self.classifier)
            return _parse_json(response, action)

        return await self._execute(action, send_once)


def _parse_json(response: TransportResponse, action: str) -> Dict[str, Any]:
    if not response.body:
        return {}
    try:
        result = json.loads(response.text)
    except ValueError as e:
        raise ProtocolError(
            f"{action} returned a body that is not JSON",
            details={"action": action, "status": response.status},
        ) from e
    if not isinstance(result, dict):
        raise ProtocolError(
            f"{action} returned {type(result).__name__}, expected an object",
            details={"action": action, "status": response.status},
        )
    return result


class QueryServiceClient(ServiceClient):
    """Query protocol: POST a flat parameter set; the transport form-encodes it."""

    def __init__(self, transport: Transport, endpoint: str, version: str,
                 classifier: ErrorClassifier,
                 retry_policy: Optional[RetryPolicy] = None):
        super().__init__(transport, endpoint, classifier, retry_policy)
        self.version = version

    def build_request(self, params: ParameterSet) -> Dict[str, Any]:
        body = dict(params)
        body.setdefault("Version", self.version)
        return {
            "method": "POST",
            "uri": self.endpoint,
            "headers": {
                "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
            },
            "body": body,
        }

    async def send(self, params: ParameterSet) -> TransportResponse:
        request = self.build_request(params)
        action = params["Action"]

        async def send_once():
            logger.debug("Sending %s to %s", action, self.endpoint)
            response = await self.transport.execute(**request)
            if response.status >= 400:
                raise parse_error(response, action, self.classifier)
            return response

        return await self._execute(action, send_once)
