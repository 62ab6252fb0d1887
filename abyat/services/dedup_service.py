import time
from collections import OrderedDict
from typing import Callable, Optional

from abyat.logging_config import get_logger

logger = get_logger("dedup_service")


class MessageDeduplicator:
    """Remembers recently seen inbound message ids.

    Entries expire after ``ttl_seconds``; at most ``max_entries`` are kept,
    oldest evicted first.
    """

    def __init__(self, ttl_seconds: float = 3600, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._seen: OrderedDict[str, tuple[float, Optional[str]]] = OrderedDict()

    def prune(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        removed = 0
        while self._seen:
            _, (seen_at, _) = next(iter(self._seen.items()))
            if seen_at >= cutoff:
                break
            self._seen.popitem(last=False)
            removed += 1
        return removed

    def is_duplicate(self, message_id: Optional[str], user_id: Optional[str] = None) -> bool:
        """Record ``message_id`` and report whether it was already seen."""
        if not message_id:
            return False

        self.prune()
        if message_id in self._seen:
            logger.info(
                "Duplicate message ignored",
                extra={"context": {"message_id": message_id, "user_id": user_id}},
            )
            return True

        self._seen[message_id] = (self._clock(), user_id)
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)
        return False

    def forget_user(self, user_id: str) -> int:
        stale = [message_id for message_id, (_, owner) in self._seen.items() if owner == user_id]
        for message_id in stale:
            del self._seen[message_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._seen
