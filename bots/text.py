"""Cleaning up incoming text and splitting long answers into platform-sized messages."""

import re
from typing import List

TWEET_MAX_LENGTH = 280
TELEGRAM_MAX_LENGTH = 4096

# room reserved for the "i/n\n\n" thread marker
THREAD_MARKER_ROOM = 10

MENTION_RE = re.compile(r"@\w+")

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*|[.!?]+")
_WORD_RE = re.compile(r"\S+\s*|\s+")


def strip_mentions(text: str) -> str:
    """Drop @handles so only the question itself reaches the agent."""
    return MENTION_RE.sub("", text).strip()


def _pieces(text: str, budget: int) -> List[str]:
    """Cut `text` into pieces no longer than `budget`, preferring sentence, then word boundaries.

    The pieces concatenate back to `text` exactly.
    """
    pieces: List[str] = []
    for sentence in _SENTENCE_RE.findall(text):
        if len(sentence) <= budget:
            pieces.append(sentence)
            continue
        for word in _WORD_RE.findall(sentence):
            if len(word) <= budget:
                pieces.append(word)
            else:
                pieces.extend(word[i : i + budget] for i in range(0, len(word), budget))
    return pieces


def split_message(text: str, max_length: int) -> List[str]:
    """Greedily pack `text` into chunks of at most `max_length` characters."""
    text = text.strip()
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    current = ""
    for piece in _pieces(text, max_length):
        if len(current) + len(piece) <= max_length:
            current += piece
            continue
        if current.strip():
            chunks.append(current.strip())
        current = piece
    if current.strip():
        chunks.append(current.strip())
    return chunks


def split_long_tweet(text: str, max_length: int = TWEET_MAX_LENGTH) -> List[str]:
    """Split `text` into a tweet thread.

    Every returned tweet fits in `max_length` including its "i/n" marker;
    a text that fits in one tweet comes back unchanged and unmarked.
    """
    text = text.strip()
    if len(text) <= max_length:
        return [text]

    tweets = split_message(text, max_length - THREAD_MARKER_ROOM)
    if len(tweets) == 1:
        return tweets
    total = len(tweets)
    return [f"{i}/{total}\n\n{tweet}" for i, tweet in enumerate(tweets, start=1)]
