"""Mention-polling Twitter bot.

Every `poll_interval` seconds the bot fetches mentions newer than its cursor,
answers them oldest first through the shared queue and replies in a thread.
Tweet ids are remembered in a bounded ProcessedTweets set before the agent is
called, so an overlapping or repeated poll never answers a tweet twice.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import threading
import time
from typing import Any, Callable, Dict, List, Optional, cast

from filelock import FileLock

from core import init_logging, load_config
from jobs.models import JobRecord, JobResult, Platform
from jobs.waiter import PENDING, CompletionWaiter, WaitOutcome
from worker.worker import build_backend, build_pool

from .dedup import ProcessedTweets
from .text import TWEET_MAX_LENGTH, split_long_tweet, strip_mentions
from .twitter_client import Mention, TwitterClient

logger = logging.getLogger(__name__)

EMPTY_QUESTION_TEXT = "Hi! I'm here to answer your questions. Please ask me something!"
ERROR_TEXT = "I'm sorry, I encountered an error processing your request. Please try again later."
TIMEOUT_TEXT = "Your request is taking longer than expected. Please try again in a little while."
UNEXPECTED_ERROR_TEXT = "Oops! Something went wrong. Please try again later."

REPLY_DELAY = 2.0
MENTION_DELAY = 5.0


class TwitterBot:
    def __init__(
        self,
        client: TwitterClient,
        waiter: CompletionWaiter,
        bot_username: str,
        timeout: float = 120.0,
        poll_interval: float = 60.0,
        reply_delay: float = REPLY_DELAY,
        mention_delay: float = MENTION_DELAY,
        state_file: Optional[str] = None,
        processed: Optional[ProcessedTweets] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.waiter = waiter
        self.bot_username = bot_username
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.reply_delay = reply_delay
        self.mention_delay = mention_delay
        self.state_file = state_file
        self.processed = processed if processed is not None else ProcessedTweets()
        self._sleep = sleep
        self._user_id: Optional[str] = None
        self._stop = threading.Event()
        self.last_mention_id: Optional[str] = self._load_cursor()

    # -- cursor persistence -------------------------------------------------

    def _load_cursor(self) -> Optional[str]:
        if not self.state_file:
            return None
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                state = cast(Dict[str, Any], json.load(f))
        except (FileNotFoundError, ValueError):
            return None
        cursor = state.get("last_mention_id")
        return str(cursor) if cursor else None

    def _save_cursor(self) -> None:
        if not self.state_file:
            return
        d = os.path.dirname(self.state_file)
        if d:
            os.makedirs(d, exist_ok=True)
        with FileLock(self.state_file + ".lock"):
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump({"last_mention_id": self.last_mention_id}, f, indent=2)

    # -- adapter operations -------------------------------------------------

    @property
    def user_id(self) -> str:
        if self._user_id is None:
            self._user_id = self.client.me()["id"]
        return self._user_id

    def build_job(self, mention: Mention) -> Optional[JobRecord]:
        question = strip_mentions(mention["text"])
        if not question:
            return None
        return JobRecord(
            platform=Platform.TWITTER,
            user_id=mention["author_id"] or "unknown",
            user_name=mention["author_username"],
            message=question,
            message_id=mention["id"],
            metadata={"originalTweet": dict(mention)},
        )

    def deliver(self, mention: Mention, outcome: WaitOutcome) -> List[str]:
        tweet_id = mention["id"]
        user_name = mention["author_username"]
        if outcome is PENDING:
            logger.warning("Mention processing timeout tweet_id=%s", tweet_id)
            return self.reply_to_tweet(tweet_id, TIMEOUT_TEXT, user_name)
        result = cast(JobResult, outcome)
        if result.success and result.response:
            ids = self.reply_to_tweet(tweet_id, result.response, user_name)
            logger.info(
                "Successfully processed and replied to mention tweet_id=%s processing_time=%.3f",
                tweet_id,
                result.processing_time,
            )
            return ids
        logger.error("Error processing mention tweet_id=%s error=%s", tweet_id, result.error)
        return self.reply_to_tweet(tweet_id, ERROR_TEXT, user_name)

    def reply_to_tweet(self, tweet_id: str, response: str, username: str) -> List[str]:
        """Reply to `tweet_id`, threading as many tweets as `response` needs.

        Returns the ids of the posted tweets in order.
        """
        mention = f"@{username} "
        tweets = split_long_tweet(response, TWEET_MAX_LENGTH - len(mention))
        reply_to_id = tweet_id
        posted: List[str] = []
        for i, tweet_text in enumerate(tweets):
            # Mention the user in the first tweet
            full_text = mention + tweet_text if i == 0 else tweet_text
            logger.info(
                "Sending tweet reply_to_id=%s tweet=%d/%d length=%d",
                reply_to_id,
                i + 1,
                len(tweets),
                len(full_text),
            )
            reply_to_id = self.client.tweet(full_text, in_reply_to=reply_to_id)
            posted.append(reply_to_id)
            if i < len(tweets) - 1:
                self._sleep(self.reply_delay)
        logger.info("Successfully replied to tweet original_tweet_id=%s replies=%d", tweet_id, len(posted))
        return posted

    def process_mention(self, mention: Mention) -> None:
        tweet_id = mention["id"]
        if tweet_id in self.processed:
            logger.debug("Tweet already processed, skipping tweet_id=%s", tweet_id)
            return
        if mention["author_id"] == self.user_id:
            logger.debug("Skipping own tweet tweet_id=%s", tweet_id)
            self.processed.mark(tweet_id)
            return

        user_name = mention["author_username"]
        logger.info("Processing mention tweet_id=%s user_id=%s user_name=%s", tweet_id, mention["author_id"], user_name)
        # before the agent call, so an overlapping poll cannot pick it up again
        self.processed.mark(tweet_id)

        try:
            job = self.build_job(mention)
            if job is None:
                logger.warning("Empty question after removing mentions tweet_id=%s", tweet_id)
                self.reply_to_tweet(tweet_id, EMPTY_QUESTION_TEXT, user_name)
                return
            outcome = self.waiter.submit_and_wait(job, self.timeout)
            self.deliver(mention, outcome)
        except Exception as e:
            logger.error("Error handling mention tweet_id=%s: %s", tweet_id, e)
            try:
                self.reply_to_tweet(tweet_id, UNEXPECTED_ERROR_TEXT, user_name)
            except Exception as reply_error:
                logger.error("Failed to send error reply tweet_id=%s: %s", tweet_id, reply_error)

    def poll_mentions(self) -> int:
        """Run one polling cycle; returns how many mentions were fetched."""
        try:
            logger.debug("Polling for mentions...")
            mentions = self.client.mentions(self.user_id, since_id=self.last_mention_id)
        except Exception as e:
            logger.error("Error polling mentions: %s", e)
            return 0

        if not mentions:
            logger.debug("No new mentions found")
            return 0

        logger.info("Found new mentions count=%d", len(mentions))
        # the API returns newest first
        for mention in reversed(mentions):
            self.process_mention(mention)
            self._sleep(self.mention_delay)

        self.last_mention_id = mentions[0]["id"]
        try:
            self._save_cursor()
        except OSError as e:
            logger.error("Failed to persist mention cursor: %s", e)
        return len(mentions)

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        me = self.client.me()
        self._user_id = me["id"]
        logger.info("Twitter bot authenticated id=%s username=%s", me["id"], me["username"])

    def run_forever(self) -> None:
        self.start()
        logger.info("Starting mention polling interval=%.0fs", self.poll_interval)
        while not self._stop.is_set():
            self.poll_mentions()
            self._stop.wait(self.poll_interval)
        logger.info("Twitter bot stopped")

    def stop(self) -> None:
        logger.info("Stopping Twitter bot...")
        self._stop.set()


def main() -> None:
    config = load_config()
    init_logging(config.log_level)
    logger.info("Starting Twitter bot service...")

    if not config.twitter.bearer_token:
        raise RuntimeError("TWITTER_BEARER_TOKEN environment variable is required")

    backend = build_backend(config)
    pool = build_pool(config, backend)
    pool.start()

    client = TwitterClient(config.twitter.bearer_token)
    bot = TwitterBot(
        client,
        CompletionWaiter(backend),
        config.twitter.bot_username,
        timeout=config.twitter.timeout,
        poll_interval=config.twitter.poll_interval,
        state_file=config.twitter.state_file,
    )

    def shutdown(signum, frame) -> None:
        logger.info("Shutting down...")
        bot.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, shutdown)

    try:
        bot.run_forever()
    finally:
        pool.stop()
        backend.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
