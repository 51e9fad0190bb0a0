"""Per-caller request limiting over a sliding window."""
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from pdfchat.db import Database

logger = structlog.get_logger()


def rate_limit_key(user_id: Optional[str], user_ip: Optional[str]) -> str:
    """Key callers by user id when known, otherwise by IP address."""
    if user_id:
        return f"user_{user_id}"
    return f"ip_{user_ip or 'unknown'}"


@dataclass
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    count: int
    reset_at: float


class RateLimiter:
    """Windowed request counter backed by the database.

    The window starts at the first accepted request and the counter is only
    incremented for accepted requests.
    """

    def __init__(
        self,
        db: Database,
        max_requests: int = 60,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, key: str) -> RateLimitDecision:
        """Accept and count a request, or reject it without counting.

        Args:
            key: Caller key from rate_limit_key()

        Returns:
            RateLimitDecision
        """
        allowed, count, reset_at = self.db.consume_rate_limit(
            key,
            self.max_requests,
            self.window_seconds,
            self.clock(),
        )

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                limit_key=key,
                count=count,
                max_requests=self.max_requests,
                reset_at=reset_at,
            )

        return RateLimitDecision(allowed=allowed, count=count, reset_at=reset_at)
