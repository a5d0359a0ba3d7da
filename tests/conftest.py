"""Shared fixtures for client tests."""

import os
import sys

import boto3
import pytest
from moto import mock_aws

# Allow running the suite from a checkout without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from cloudkit.common.transport import TransportResponse  # noqa: E402


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Set AWS and client environment variables for testing."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")

    monkeypatch.setenv("CLOUDKIT_REGION", "us-east-1")
    monkeypatch.setenv("CLOUDKIT_RETRY_INITIAL_DELAY", "0.1")
    monkeypatch.setenv("CLOUDKIT_RETRY_MAX_DELAY", "3.0")
    monkeypatch.setenv("CLOUDKIT_MAX_RETRIES", "5")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")


class FakeTransport:
    """Records requests and replays queued responses or errors in order."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def queue(self, *responses):
        self.responses.extend(responses)
        return self

    def reply(self, status=200, body=b"", headers=None):
        return self.queue(TransportResponse(status=status, headers=headers or {}, body=body))

    async def execute(self, method, uri, headers, body):
        self.requests.append(
            {"method": method, "uri": uri, "headers": dict(headers), "body": body}
        )
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def s3_client():
    """Create a moto-mocked S3 client with a test bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="test-bucket")
        client.create_bucket(Bucket="source-bucket")
        for i in range(3):
            client.put_object(
                Bucket="source-bucket",
                Key=f"data/file{i}.txt",
                Body=f"content-{i}" * 50,
            )
        yield client
