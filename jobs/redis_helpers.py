from typing import List, Optional, Union, cast

import redis


def to_text(value: Union[bytes, str]) -> str:
    """Decode a redis reply; clients built without decode_responses return bytes."""
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return value


def zrangebyscore(
    r: redis.Redis, name: str, min_score: float, max_score: float
) -> List[Union[bytes, str]]:
    """Return a list of members (bytes or str) whose score is between min_score and max_score.

    This wrapper coerces the possibly-ambiguous redis return into a concrete list type for callers.
    """
    raw_any = r.zrangebyscore(name, min_score, max_score)
    if isinstance(raw_any, (list, tuple)):
        return cast(List[Union[bytes, str]], list(raw_any))
    return []


def zrange(r: redis.Redis, name: str, start: int, end: int) -> List[Union[bytes, str]]:
    raw_any = r.zrange(name, start, end)
    if isinstance(raw_any, (list, tuple)):
        return cast(List[Union[bytes, str]], list(raw_any))
    return []


def blmove(
    r: redis.Redis, source: str, destination: str, timeout: float
) -> Optional[Union[bytes, str]]:
    """Blocking move of the head of `source` to the tail of `destination`.

    Returns the moved member or None on timeout. A timeout of 0 would block
    forever in redis, so it is clamped to a small positive value.
    """
    timeout = max(float(timeout), 0.01)
    raw_any = r.blmove(source, destination, timeout, "LEFT", "RIGHT")
    if raw_any is None:
        return None
    return cast(Union[bytes, str], raw_any)


def zrem(r: redis.Redis, name: str, value: Union[bytes, str]) -> int:
    # r.zrem may be typed as returning Awaitable; cast to int for analyzer
    raw_res = r.zrem(name, value)
    return int(cast(int, raw_res))


def zcard(r: redis.Redis, name: str) -> int:
    raw_res = r.zcard(name)
    return int(cast(int, raw_res))


def llen(r: redis.Redis, name: str) -> int:
    raw_res = r.llen(name)
    return int(cast(int, raw_res))


def hget(r: redis.Redis, name: str, key: str) -> Optional[str]:
    raw_res = r.hget(name, key)
    if raw_res is None:
        return None
    return to_text(cast(Union[bytes, str], raw_res))

