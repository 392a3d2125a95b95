import logging
import time
from typing import Callable, Dict, Iterator

from jobs.models import ProcessedTweet

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROCESSED = 1000


class ProcessedTweets:
    """Bounded memory of tweet ids the bot has already picked up.

    Holds at most `max_size` ids; when the bound is exceeded the entries with
    the oldest `timestamp` are evicted first. Owned by a single TwitterBot.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_PROCESSED, clock: Callable[[], float] = time.time) -> None:
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, ProcessedTweet] = {}

    def __contains__(self, tweet_id: object) -> bool:
        return tweet_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def mark(self, tweet_id: str) -> None:
        self._entries[tweet_id] = ProcessedTweet(id=tweet_id, timestamp=self._clock())
        self._cleanup()

    def _cleanup(self) -> None:
        excess = len(self._entries) - self.max_size
        if excess <= 0:
            return
        oldest = sorted(self._entries.values(), key=lambda entry: entry.timestamp)[:excess]
        for entry in oldest:
            del self._entries[entry.id]
        logger.debug("Cleaned up processed tweets removed=%d remaining=%d", len(oldest), len(self._entries))
