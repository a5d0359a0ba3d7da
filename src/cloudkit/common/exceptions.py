"""Exception hierarchy shared by every service client."""

from botocore.exceptions import ClientError


class CloudClientError(Exception):
    """Base exception for all client-side failures."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(CloudClientError):
    """Malformed or missing input. Raised before any request is sent."""
    pass


class UnsupportedOperationError(ValidationError):
    """A change carries an operation kind the update expression cannot express."""
    pass


class ProtocolError(CloudClientError):
    """Response body could not be parsed into the expected shape."""
    pass


class RetriesExhaustedError(CloudClientError):
    """A transient failure persisted through every allowed retry."""

    def __init__(self, message: str, attempts: int, last_error: Exception):
        super().__init__(
            message,
            details={"attempts": attempts, "last_error": str(last_error)},
        )
        self.attempts = attempts
        self.last_error = last_error


class ServiceError(ClientError):
    """A provider error decoded from a JSON or query error payload.

    Carries the owning service's classifier so callers can ask whether the
    error is worth retrying without knowing which service produced it.
    """

    def __init__(self, code: str, message: str, operation_name: str, classifier,
                 status_code: int | None = None):
        response = {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status_code},
        }
        super().__init__(response, operation_name)
        self.code = code
        self.error_message = message
        self.status_code = status_code
        self.classifier = classifier

    @property
    def is_transient(self) -> bool:
        return self.classifier.is_transient(self.code)

    def __reduce__(self):
        return (
            self.__class__,
            (self.code, self.error_message, self.operation_name,
             self.classifier, self.status_code),
        )


class BatchDeleteError(CloudClientError):
    """One or more keys of a batch delete were not removed."""
    pass
