"""Retry decisions for plugins that retry their own outbound calls.

The scheduler never retries a node; a plugin that talks to a flaky service
can use this policy inside its own execute call.
"""

import logging
from typing import Optional, Tuple
from shared.exceptions import NodeError
from shared.constants import (
    MAX_RETRY_ATTEMPTS,
    INITIAL_RETRY_DELAY_SECONDS,
    MAX_RETRY_DELAY_SECONDS,
)


class RetryPolicy:
    """Decides when to retry a failed call and calculates backoff delays"""

    def __init__(
        self,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        initial_delay: float = INITIAL_RETRY_DELAY_SECONDS,
        max_delay: float = MAX_RETRY_DELAY_SECONDS,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def should_retry(self, error: NodeError, retry_count: int, node_id: str = "") -> Tuple[bool, Optional[float]]:
        """Returns (retry?, delay) for a call that has already been retried retry_count times"""
        if not error.is_retryable:
            logging.info(
                "Call error is not retryable",
                extra={"node_id": node_id, "error_type": error.error_type}
            )
            return False, None

        if retry_count >= self.max_attempts:
            logging.warning(
                "Maximum retry attempts reached",
                extra={
                    "node_id": node_id,
                    "retry_count": retry_count,
                    "max_attempts": self.max_attempts
                }
            )
            return False, None

        delay = self.backoff_delay(retry_count, error)

        logging.info(
            "Call will be retried",
            extra={
                "node_id": node_id,
                "retry_attempt": retry_count + 1,
                "delay_seconds": delay
            }
        )
        return True, delay

    def backoff_delay(self, retry_count: int, error: NodeError) -> float:
        """Exponential backoff with Retry-After header support"""
        if error.retry_after_seconds:
            # Honor Retry-After header (e.g., from 429 responses)
            return min(error.retry_after_seconds, self.max_delay)

        # Exponential backoff: 1s, 2s, 4s, 8s, ...
        return min(self.initial_delay * (2 ** retry_count), self.max_delay)
