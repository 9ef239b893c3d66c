"""
Per-origin admission quota for the realtime endpoint.

Moving one-minute window keyed by client network origin. Handshakes and
inbound operations both consume the quota. Backed by the same ``limits``
moving-window strategy slowapi uses for the HTTP endpoints.
"""

import logging

from limits import RateLimitItemPerMinute
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)


class AdmissionQuota:
    def __init__(self, per_minute: int = 50):
        self.per_minute = per_minute
        self._item = RateLimitItemPerMinute(per_minute)
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)

    def admit(self, origin: str) -> bool:
        """Consume one unit for ``origin``. False once the window is exhausted."""
        allowed = self._limiter.hit(self._item, origin)
        if not allowed:
            logger.warning(f"[BROADCAST] Admission quota exhausted for {origin} ({self.per_minute}/min)")
        return allowed

    def remaining(self, origin: str) -> int:
        return self._limiter.get_window_stats(self._item, origin).remaining

    def reset(self) -> None:
        self._storage.reset()
