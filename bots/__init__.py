# Platform bots feeding the shared job queue
from .dedup import ProcessedTweets
from .telegram_bot import TelegramBot
from .text import split_long_tweet, split_message, strip_mentions
from .twitter_bot import TwitterBot
from .twitter_client import RateLimitExceeded, TwitterClient

__all__ = [
    "TelegramBot",
    "TwitterBot",
    "TwitterClient",
    "RateLimitExceeded",
    "ProcessedTweets",
    "split_long_tweet",
    "split_message",
    "strip_mentions",
]
