import re

from bots.text import split_long_tweet, split_message


def _bodies(tweets):
    return [re.sub(r"^\d+/\d+\n\n", "", t) for t in tweets]


def _squash(text):
    return "".join(text.split())


def test_short_text_is_single_unmarked_tweet():
    assert split_long_tweet("  Starknet is a validity rollup.  ") == ["Starknet is a validity rollup."]


def test_long_text_splits_on_sentences_with_markers():
    sentence = "This sentence is about forty-five chars long. "
    text = sentence * 20
    tweets = split_long_tweet(text)

    assert len(tweets) > 1
    assert all(len(t) <= 280 for t in tweets)
    total = len(tweets)
    for i, tweet in enumerate(tweets, start=1):
        assert tweet.startswith(f"{i}/{total}\n\n")
    for body in _bodies(tweets):
        assert body.endswith(".")
    assert _squash("".join(_bodies(tweets))) == _squash(text)


def test_text_without_punctuation_keeps_tail():
    text = ("word " * 120) + "tail"
    tweets = split_long_tweet(text)

    assert all(len(t) <= 280 for t in tweets)
    assert _bodies(tweets)[-1].endswith("tail")
    assert _squash("".join(_bodies(tweets))) == _squash(text)


def test_huge_word_is_cut():
    text = "x" * 700
    tweets = split_long_tweet(text)
    assert all(len(t) <= 280 for t in tweets)
    assert "".join(_bodies(tweets)) == text


def test_split_message_respects_limit():
    text = "Hello there! " * 500
    chunks = split_message(text, 4096)
    assert len(chunks) == 2
    assert all(len(c) <= 4096 for c in chunks)
