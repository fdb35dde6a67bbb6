from datetime import datetime, timedelta
from typing import Optional
import logging
from lib.database import Database, utcnow
from lib.error_handler import AppError

logger = logging.getLogger(__name__)

class RateLimiter:
    """
    Sliding one-hour window over the inbound rows of the message log.
    Nothing is kept in memory; the count is recomputed on every request.
    """

    def __init__(self, database: Database, max_requests: int = 30, window: timedelta = timedelta(hours=1)):
        self.database = database
        self.MAX_REQUESTS = max_requests  # per user per hour
        self.window = window

    def check_limit(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """Return True if the user has exceeded the rate limit"""
        since = (now or utcnow()) - self.window
        try:
            count = self.database.count_recent_inbound(user_id, since)
        except AppError as e:
            # Throttling is advisory; an unreadable log lets the message through
            logger.error(f"Rate limit check failed for {user_id}: {e.message}")
            return False
        if count > self.MAX_REQUESTS:
            logger.warning(f"User {user_id} over rate limit: {count} inbound messages in window")
            return True
        return False
