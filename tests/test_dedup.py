from itertools import count

from bots.dedup import ProcessedTweets


def test_dedup_bound_evicts_oldest_first():
    ticks = count()
    processed = ProcessedTweets(max_size=1000, clock=lambda: float(next(ticks)))
    for i in range(1000 + 25):
        processed.mark(str(i))

    assert len(processed) == 1000
    assert all(str(i) not in processed for i in range(25))
    assert "25" in processed
    assert "1024" in processed


def test_remarking_refreshes_timestamp():
    ticks = count()
    processed = ProcessedTweets(max_size=2, clock=lambda: float(next(ticks)))
    processed.mark("a")
    processed.mark("b")
    processed.mark("a")
    processed.mark("c")

    assert set(processed) == {"a", "c"}
