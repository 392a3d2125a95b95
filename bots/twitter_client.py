from __future__ import annotations

import email.utils
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypedDict, cast

import requests
from filelock import FileLock

logger = logging.getLogger(__name__)

API_BASE = "https://api.twitter.com/2"

# Minimal, local-only rate-limit/backoff persistence file.
STATE_FILE = "runs/twitter_client_state.json"


class Mention(TypedDict):
    id: str
    text: str
    author_id: str
    author_username: str
    created_at: str


class TwitterUser(TypedDict):
    id: str
    username: str
    name: str


class RateLimitExceeded(Exception):
    def __init__(self, retry_after: int) -> None:
        super().__init__(f"rate limited; retry after {retry_after}s")
        self.retry_after = retry_after


class TwitterApiError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"twitter api error {status_code}: {detail}")
        self.status_code = status_code


def parse_retry_after(headers: Any) -> Optional[int]:
    """Seconds to wait according to a 429 response, or None if the headers don't say."""
    ra = headers.get("Retry-After")
    if ra is not None:
        try:
            return int(ra)
        except ValueError:
            try:
                # HTTP-date format
                parsed = email.utils.parsedate_to_datetime(ra)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return int((parsed - datetime.now(timezone.utc)).total_seconds())
            except (TypeError, ValueError, AttributeError):
                return None
    reset = headers.get("x-rate-limit-reset")
    if reset is not None:
        try:
            return int(reset) - int(time.time())
        except ValueError:
            return None
    return None


class TwitterClient:
    """Small Twitter API v2 client for the mention bot.

    Authenticates with a user-context bearer token. A 429 response raises
    RateLimitExceeded and persists `blocked_until` so that later calls (from
    this or another process) fail fast until the window has passed.
    """

    def __init__(
        self,
        bearer_token: str,
        state_file: str = STATE_FILE,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        self.bearer_token = bearer_token
        self.state_file = state_file
        self.session = session or requests.Session()
        self.timeout = timeout
        self._state: Dict[str, Any] = self._load_state()

    def _load_state(self) -> Dict[str, Any]:
        if not os.path.exists(self.state_file):
            return {}
        try:
            with FileLock(self.state_file + ".lock"):
                with open(self.state_file, "r", encoding="utf-8") as f:
                    return cast(Dict[str, Any], json.load(f))
        except (OSError, ValueError) as e:
            logger.warning("Could not read rate-limit state %s: %s", self.state_file, e)
            return {}

    def _save_state(self) -> None:
        d = os.path.dirname(self.state_file)
        if d:
            os.makedirs(d, exist_ok=True)
        lock = FileLock(self.state_file + ".lock")
        with lock:
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump(self._state, f, indent=2)

    def _refresh_state(self) -> None:
        # another client may have hit the limit since we last looked
        state = self._load_state()
        state["blocked_until"] = max(
            int(state.get("blocked_until") or 0), int(self._state.get("blocked_until") or 0)
        )
        self._state = state

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        self._refresh_state()
        blocked_until = cast(int, self._state.get("blocked_until", 0))
        now = int(time.time())
        if blocked_until and blocked_until > now:
            # tell caller to retry after remaining seconds
            raise RateLimitExceeded(blocked_until - now)

        headers = {"Authorization": f"Bearer {self.bearer_token}"}
        resp = self.session.request(method, API_BASE + path, headers=headers, timeout=self.timeout, **kwargs)
        if resp.status_code == 429:
            retry_after = parse_retry_after(resp.headers)
            if retry_after is None or retry_after <= 0:
                retry_after = 60
            self._state["blocked_until"] = int(time.time()) + retry_after
            try:
                self._save_state()
            except OSError as e:
                logger.warning("Could not persist rate-limit state %s: %s", self.state_file, e)
            raise RateLimitExceeded(retry_after)
        if resp.status_code >= 400:
            raise TwitterApiError(resp.status_code, resp.text[:200])
        return cast(Dict[str, Any], resp.json())

    def me(self) -> TwitterUser:
        data = self._request("GET", "/users/me").get("data") or {}
        return {
            "id": str(data.get("id", "")),
            "username": str(data.get("username", "")),
            "name": str(data.get("name", "")),
        }

    def mentions(self, user_id: str, since_id: Optional[str] = None, max_results: int = 10) -> List[Mention]:
        """Mentions of `user_id` newer than `since_id`, newest first (API order)."""
        params: Dict[str, Any] = {
            "max_results": max_results,
            "tweet.fields": "author_id,created_at,conversation_id",
            "expansions": "author_id",
            "user.fields": "username",
        }
        if since_id:
            params["since_id"] = since_id
        data = self._request("GET", f"/users/{user_id}/mentions", params=params)

        # Build a map of users from includes for easy lookup
        users_map: Dict[str, Dict[str, Any]] = {}
        includes = data.get("includes") or {}
        for u in includes.get("users", []):
            users_map[str(u.get("id"))] = u

        results: List[Mention] = []
        for t in data.get("data") or []:
            author_id = str(t.get("author_id") or "")
            user = users_map.get(author_id, {})
            results.append(
                {
                    "id": str(t.get("id")),
                    "text": str(t.get("text") or ""),
                    "author_id": author_id,
                    "author_username": str(user.get("username") or "unknown"),
                    "created_at": str(t.get("created_at", "")),
                }
            )
        return results

    def tweet(self, text: str, in_reply_to: Optional[str] = None) -> str:
        """Post `text`, optionally as a reply; returns the new tweet id."""
        body: Dict[str, Any] = {"text": text}
        if in_reply_to:
            body["reply"] = {"in_reply_to_tweet_id": in_reply_to}
        data = self._request("POST", "/tweets", json=body)
        return str((data.get("data") or {}).get("id", ""))


__all__ = ["TwitterClient", "RateLimitExceeded", "TwitterApiError", "Mention", "TwitterUser", "parse_retry_after"]
