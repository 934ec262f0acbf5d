from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .errors import ContentNotFoundError, is_retryable_twitter_error
from .logger import get_logger
from .models import TweetData
from .retry import with_retry

logger = get_logger(__name__)

TWEET_PARAMS = {
    "expansions": "author_id,attachments.media_keys",
    "tweet.fields": "created_at,text,author_id",
    "user.fields": "username",
    "media.fields": "url,preview_image_url",
}


def tweet_from_response(tweet_id: str, body: Dict[str, Any]) -> TweetData:
    data = body.get("data")
    if not data:
        raise ContentNotFoundError(f"Tweet {tweet_id} not found or not accessible")
    includes = body.get("includes") or {}
    users = includes.get("users") or []
    author = users[0] if users else {}
    media_urls = [
        url
        for url in (item.get("url") or item.get("preview_image_url") for item in includes.get("media") or [])
        if url
    ]
    return TweetData(
        id=str(data.get("id", tweet_id)),
        text=data.get("text", ""),
        author_id=data.get("author_id") or author.get("id", ""),
        author_username=author.get("username", ""),
        created_at=data.get("created_at"),
        media_urls=media_urls,
    )


class XClient:
    """Read-only X API v2 client for single posts."""

    def __init__(
        self,
        bearer_token: str,
        *,
        base_url: str = "https://api.twitter.com/2",
        client: Optional[httpx.AsyncClient] = None,
        attempts: int = 5,
        base_delay: float = 2.0,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {bearer_token}"},
            timeout=httpx.Timeout(15.0),
        )
        self.attempts = attempts
        self.base_delay = base_delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_tweet(self, tweet_id: str) -> Dict[str, Any]:
        response = await self._client.get(f"/tweets/{tweet_id}", params=TWEET_PARAMS)
        if response.status_code == 404:
            raise ContentNotFoundError(f"Tweet {tweet_id} not found or not accessible")
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}: {response.text}", request=response.request, response=response
            )
        return response.json()

    async def fetch(self, tweet_id: str) -> TweetData:
        logger.info("fetching tweet", tweet_id=tweet_id)
        body = await with_retry(
            lambda: self._get_tweet(tweet_id),
            "fetchTweet",
            attempts=self.attempts,
            base_delay=self.base_delay,
            should_retry=is_retryable_twitter_error,
        )
        tweet = tweet_from_response(tweet_id, body)
        logger.info(
            "tweet fetched",
            tweet_id=tweet_id,
            author=tweet.author_username,
            text_length=len(tweet.text),
            media_count=len(tweet.media_urls),
        )
        return tweet
