"""Client configuration loaded from environment variables."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ClientConfig:
    """Settings shared by every service client."""

    region: str = "us-east-1"

    # Retry settings (seconds)
    retry_initial_delay: float = 0.1
    retry_max_delay: float = 3.0
    max_retries: int = 5

    # Object storage
    multipart_part_size: int = 100 * 1024 * 1024  # 100 MB
    list_page_size: int = 1000

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables."""
        return cls(
            region=os.environ.get("CLOUDKIT_REGION", "us-east-1"),
            retry_initial_delay=float(
                os.environ.get("CLOUDKIT_RETRY_INITIAL_DELAY", "0.1")
            ),
            retry_max_delay=float(os.environ.get("CLOUDKIT_RETRY_MAX_DELAY", "3.0")),
            max_retries=int(os.environ.get("CLOUDKIT_MAX_RETRIES", "5")),
            multipart_part_size=int(
                os.environ.get("CLOUDKIT_MULTIPART_PART_SIZE", str(100 * 1024 * 1024))
            ),
            list_page_size=int(os.environ.get("CLOUDKIT_LIST_PAGE_SIZE", "1000")),
        )
