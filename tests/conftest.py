import fakeredis
import pytest

from jobs.models import JobRecord, Platform
from jobs.queue import QueueBackend, QueueOptions


def make_job(message_id: str = "1", message: str = "hi", platform: Platform = Platform.TELEGRAM) -> JobRecord:
    return JobRecord(
        platform=platform,
        user_id="u-1",
        user_name="alice",
        message=message,
        message_id=message_id,
        metadata={"chatId": 99},
    )


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def backend(fake_redis):
    # tiny backoff so retry tests don't sleep for seconds
    return QueueBackend(fake_redis, name="test-requests", options=QueueOptions(backoff_delay=0.01))
