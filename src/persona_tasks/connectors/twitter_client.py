# src/persona_tasks/connectors/twitter_client.py

from __future__ import annotations

import asyncio
import io
import logging
import mimetypes

import tweepy

logger = logging.getLogger(__name__)


class TweepyTwitterClient:
    """
    Twitter adapter for one agent (OAuth 1.0a user context).

    tweepy is synchronous, so every call runs in a worker thread to keep the event loop free.
    Tweets go through the v2 Client; media upload still needs the v1.1 API.
    """

    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        access_token: str,
        access_token_secret: str,
    ) -> None:
        if not all((consumer_key, consumer_secret, access_token, access_token_secret)):
            raise RuntimeError("Twitter credentials are incomplete (app key/secret + access token/secret)")

        self._client = tweepy.Client(
            consumer_key=consumer_key,
            consumer_secret=consumer_secret,
            access_token=access_token,
            access_token_secret=access_token_secret,
        )
        auth = tweepy.OAuth1UserHandler(consumer_key, consumer_secret, access_token, access_token_secret)
        self._api = tweepy.API(auth)

    async def tweet(
        self,
        text: str,
        *,
        reply_to_id: str | None = None,
        media_ids: list[str] | None = None,
    ) -> str | None:
        def _send() -> str | None:
            resp = self._client.create_tweet(
                text=text,
                in_reply_to_tweet_id=reply_to_id,
                media_ids=media_ids or None,
            )
            data = getattr(resp, "data", None) or {}
            return str(data.get("id")) if data.get("id") is not None else None

        tweet_id = await asyncio.to_thread(_send)
        logger.debug("Tweet sent id=%s reply_to=%s", tweet_id, reply_to_id)
        return tweet_id

    async def upload_media(self, data: bytes, mime_type: str) -> str:
        ext = mimetypes.guess_extension(mime_type or "") or ".png"

        def _upload() -> str:
            media = self._api.media_upload(filename=f"image{ext}", file=io.BytesIO(data))
            return str(media.media_id_string)

        return await asyncio.to_thread(_upload)

    async def user_lookup(self, user_id: str) -> str | None:
        def _lookup() -> str | None:
            resp = self._client.get_user(id=user_id, user_auth=True)
            user = getattr(resp, "data", None)
            return getattr(user, "username", None) if user is not None else None

        return await asyncio.to_thread(_lookup)
