"""Transient failure classification by provider error code."""

from typing import FrozenSet, Iterable, Optional

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

# Code assigned to timeouts raised by the transport itself
TIMEOUT_ERROR_CODE = "RequestTimeout"


class ErrorClassifier:
    """Decides whether a provider error code is worth retrying.

    Each service owns one instance with its own allow-list. Anything not on
    the list, including a missing code, is treated as non-transient.
    """

    def __init__(self, service: str, transient_codes: Iterable[str]):
        self.service = service
        self.transient_codes: FrozenSet[str] = frozenset(transient_codes)

    def is_transient(self, code: Optional[str]) -> bool:
        if not code:
            return False
        return code in self.transient_codes

    def classify(self, error: BaseException) -> bool:
        return self.is_transient(error_code_of(error))

    def __repr__(self) -> str:
        return f"ErrorClassifier({self.service!r}, {sorted(self.transient_codes)!r})"


def error_code_of(error: BaseException) -> Optional[str]:
    """Extract the provider error code carried by an exception."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code") or None
    if isinstance(error, (TimeoutError, ConnectTimeoutError, ReadTimeoutError)):
        return TIMEOUT_ERROR_CODE
    return None
