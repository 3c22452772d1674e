import threading
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Callable, Optional, Protocol

from ember.config import settings
from ember.errors import AdmissionRejectedError
from ember.logging import logger


class AdmissionCounter(Protocol):
    """Decides whether a profile may start another capture. Raises AdmissionRejectedError if not."""

    def admit(self, profile_id: uuid.UUID) -> None:
        ...


class InMemoryAdmissionCounter:
    """Per-profile daily capture limit, counted in process memory."""

    def __init__(
        self,
        daily_limit: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.daily_limit = settings.DAILY_CAPTURE_LIMIT if daily_limit is None else daily_limit
        self._clock = clock
        self._counts: dict[tuple[uuid.UUID, date], int] = defaultdict(int)
        self._lock = threading.Lock()

    def admit(self, profile_id: uuid.UUID) -> None:
        key = (profile_id, self._clock().date())
        with self._lock:
            if self._counts[key] >= self.daily_limit:
                logger.warning(f"Profile {profile_id} hit the daily capture limit ({self.daily_limit})")
                raise AdmissionRejectedError(f"Daily capture limit of {self.daily_limit} reached")
            self._counts[key] += 1

    def remaining(self, profile_id: uuid.UUID) -> int:
        key = (profile_id, self._clock().date())
        with self._lock:
            return max(0, self.daily_limit - self._counts.get(key, 0))
