import json

from bots.text import strip_mentions
from bots.twitter_bot import (
    EMPTY_QUESTION_TEXT,
    ERROR_TEXT,
    TIMEOUT_TEXT,
    UNEXPECTED_ERROR_TEXT,
    TwitterBot,
)
from jobs.models import JobResult
from jobs.waiter import PENDING


def mention(tweet_id, text="@ask_bot what is starknet?", author_id="100", username="alice"):
    return {
        "id": tweet_id,
        "text": text,
        "author_id": author_id,
        "author_username": username,
        "created_at": "2025-01-01T00:00:00Z",
    }


class FakeClient:
    def __init__(self, mentions=None, fail_tweets=False):
        self._mentions = mentions or []
        self.fail_tweets = fail_tweets
        self.since_ids = []
        self.tweets = []

    def me(self):
        return {"id": "999", "username": "ask_bot", "name": "Ask Bot"}

    def mentions(self, user_id, since_id=None, max_results=10):
        self.since_ids.append(since_id)
        return list(self._mentions)

    def tweet(self, text, in_reply_to=None):
        if self.fail_tweets:
            raise RuntimeError("tweet failed")
        new_id = f"r{len(self.tweets) + 1}"
        self.tweets.append({"id": new_id, "text": text, "in_reply_to": in_reply_to})
        return new_id


class FakeWaiter:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome if outcome is not None else JobResult.ok("Starknet is an L2.", 0.1)
        self.error = error
        self.jobs = []

    def submit_and_wait(self, job, timeout):
        self.jobs.append((job, timeout))
        if self.error is not None:
            raise self.error
        return self.outcome


def make_bot(client, waiter, **kwargs):
    return TwitterBot(client, waiter, "ask_bot", sleep=lambda s: None, **kwargs)


def test_strip_mentions_removes_handles():
    assert strip_mentions("@ask_bot  @friend hello?") == "hello?"
    assert strip_mentions("@ask_bot") == ""


def test_mentions_are_processed_oldest_first_and_cursor_advances():
    client = FakeClient([mention("3"), mention("2")])
    waiter = FakeWaiter()
    bot = make_bot(client, waiter)

    assert bot.poll_mentions() == 2
    assert [job.message_id for job, _ in waiter.jobs] == ["2", "3"]
    assert bot.last_mention_id == "3"

    bot.poll_mentions()
    assert client.since_ids == [None, "3"]


def test_job_built_from_mention():
    waiter = FakeWaiter()
    bot = make_bot(FakeClient([mention("5")]), waiter)
    bot.poll_mentions()

    job, timeout = waiter.jobs[0]
    assert job.job_key == "twitter-5"
    assert job.message == "what is starknet?"
    assert job.user_name == "alice"
    assert job.metadata["originalTweet"]["id"] == "5"
    assert timeout == 120.0


def test_duplicate_ids_in_one_cycle_create_one_job():
    client = FakeClient([mention("5"), mention("5")])
    waiter = FakeWaiter()
    make_bot(client, waiter).poll_mentions()

    assert len(waiter.jobs) == 1
    assert len(client.tweets) == 1


def test_own_tweet_is_skipped_and_remembered():
    client = FakeClient([mention("7", author_id="999")])
    waiter = FakeWaiter()
    bot = make_bot(client, waiter)
    bot.poll_mentions()

    assert waiter.jobs == []
    assert client.tweets == []
    assert "7" in bot.processed


def test_empty_question_gets_prompt_and_no_job():
    client = FakeClient([mention("8", text="@ask_bot")])
    waiter = FakeWaiter()
    make_bot(client, waiter).poll_mentions()

    assert waiter.jobs == []
    assert client.tweets[0]["text"] == f"@alice {EMPTY_QUESTION_TEXT}"
    assert client.tweets[0]["in_reply_to"] == "8"


def test_answer_is_threaded_when_long():
    answer = "Starknet scales Ethereum with validity proofs. " * 15
    client = FakeClient([mention("9")])
    make_bot(client, FakeWaiter(JobResult.ok(answer, 0.2))).poll_mentions()

    tweets = client.tweets
    assert len(tweets) > 1
    assert tweets[0]["text"].startswith("@alice 1/")
    assert tweets[0]["in_reply_to"] == "9"
    for prev, cur in zip(tweets, tweets[1:]):
        assert cur["in_reply_to"] == prev["id"]
    assert all(len(t["text"]) <= 280 for t in tweets)


def test_failure_and_pending_get_distinct_texts():
    failed = FakeClient([mention("10")])
    make_bot(failed, FakeWaiter(JobResult.failure("boom", 0.1))).poll_mentions()
    pending = FakeClient([mention("11")])
    make_bot(pending, FakeWaiter(PENDING)).poll_mentions()

    assert failed.tweets[0]["text"] == f"@alice {ERROR_TEXT}"
    assert pending.tweets[0]["text"] == f"@alice {TIMEOUT_TEXT}"


def test_error_in_one_mention_does_not_stop_the_cycle():
    client = FakeClient([mention("13"), mention("12")])

    class FlakyWaiter(FakeWaiter):
        def submit_and_wait(self, job, timeout):
            self.jobs.append((job, timeout))
            if job.message_id == "12":
                raise RuntimeError("redis down")
            return self.outcome

    waiter = FlakyWaiter()
    bot = make_bot(client, waiter)
    bot.poll_mentions()

    assert [job.message_id for job, _ in waiter.jobs] == ["12", "13"]
    assert client.tweets[0]["text"] == f"@alice {UNEXPECTED_ERROR_TEXT}"
    assert client.tweets[1]["text"] == "@alice Starknet is an L2."
    assert bot.last_mention_id == "13"


def test_failed_error_reply_is_swallowed():
    client = FakeClient([mention("14")], fail_tweets=True)
    bot = make_bot(client, FakeWaiter())

    assert bot.poll_mentions() == 1
    assert "14" in bot.processed


def test_polling_error_is_logged_not_raised():
    class BrokenClient(FakeClient):
        def mentions(self, user_id, since_id=None, max_results=10):
            raise RuntimeError("network down")

    bot = make_bot(BrokenClient(), FakeWaiter())
    assert bot.poll_mentions() == 0
    assert bot.last_mention_id is None


def test_cursor_is_persisted(tmp_path):
    state_file = str(tmp_path / "state" / "twitter.json")
    bot = make_bot(FakeClient([mention("21")]), FakeWaiter(), state_file=state_file)
    bot.poll_mentions()

    with open(state_file, encoding="utf-8") as f:
        assert json.load(f) == {"last_mention_id": "21"}
    again = make_bot(FakeClient(), FakeWaiter(), state_file=state_file)
    assert again.last_mention_id == "21"
