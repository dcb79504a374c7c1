"""
X (Twitter) API v2 client for mentions and thread publishing.

Reads use the app bearer token; posting uses an OAuth 2.0 user-context
access token. For replies the client walks up the conversation chain so the
enricher sees what the user is pointing at; quoted posts are hydrated from
the response expansions.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from signalbot.config import Config
from signalbot.models import Author, ConversationMessage, Engagement, RawMention
from signalbot.utils import request_json, retry_with_backoff, safe_int

# Configure module logger
logger = logging.getLogger(__name__)

TWEET_FIELDS = "created_at,public_metrics,entities,conversation_id,referenced_tweets,author_id"
USER_FIELDS = "public_metrics,created_at"
EXPANSIONS = "author_id,referenced_tweets.id,referenced_tweets.id.author_id"

MAX_CONTEXT_DEPTH = 5
MAX_RESULTS = 100


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an API timestamp ("2024-01-15T10:30:45.000Z") to naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _engagement(tweet: dict) -> Engagement:
    metrics = tweet.get("public_metrics") or {}
    return Engagement(
        likes=safe_int(metrics.get("like_count")),
        reshares=safe_int(metrics.get("retweet_count")),
        replies=safe_int(metrics.get("reply_count")),
        quote_shares=safe_int(metrics.get("quote_count")),
    )


def _urls(tweet: dict) -> tuple[str, ...]:
    entities = tweet.get("entities") or {}
    return tuple(
        u.get("expanded_url") or u.get("url")
        for u in entities.get("urls") or []
        if u.get("expanded_url") or u.get("url")
    )


def _reference(tweet: dict, ref_type: str) -> Optional[str]:
    for ref in tweet.get("referenced_tweets") or []:
        if ref.get("type") == ref_type:
            return ref.get("id")
    return None


def _to_message(tweet: dict, author: Optional[dict]) -> ConversationMessage:
    author = author or {}
    return ConversationMessage(
        message_id=str(tweet.get("id")),
        text=tweet.get("text") or "",
        author_handle=author.get("username") or "unknown",
        author_followers=safe_int((author.get("public_metrics") or {}).get("followers_count")),
        urls=_urls(tweet),
        engagement=_engagement(tweet),
        timestamp=parse_timestamp(tweet.get("created_at")),
    )


class TwitterClient:
    """Mention source and thread publisher."""

    def __init__(
        self,
        user_id: Optional[str] = None,
        bearer_token: Optional[str] = None,
        user_access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.user_id = user_id or Config.TWITTER_USER_ID
        self.bearer_token = bearer_token or Config.TWITTER_BEARER_TOKEN
        self.user_access_token = user_access_token or Config.TWITTER_USER_ACCESS_TOKEN
        self.base_url = (base_url or Config.TWITTER_API_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT

        if not self.user_id or not self.bearer_token:
            raise ValueError("TWITTER_USER_ID and TWITTER_BEARER_TOKEN must be configured")

    @retry_with_backoff(max_retries=3, initial_delay=2.0)
    def _get(self, path: str, params: dict) -> Any:
        return request_json(
            "GET",
            f"{self.base_url}{path}",
            timeout=self.timeout,
            params=params,
            headers={"Authorization": f"Bearer {self.bearer_token}"},
        )

    @retry_with_backoff(max_retries=2, initial_delay=2.0)
    def _post_tweet(self, payload: dict) -> Any:
        return request_json(
            "POST",
            f"{self.base_url}/tweets",
            timeout=self.timeout,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.user_access_token}",
                "Content-Type": "application/json",
            },
        )

    def fetch_mentions(self, since_id: Optional[str] = None, now: Optional[datetime] = None) -> list[RawMention]:
        """
        Fetch mentions newer than `since_id`, newest first.

        Args:
            since_id: Cursor from the previous fetch, or None for the latest page
            now: Reference time for account age

        Returns:
            Parsed mentions with conversation context and quoted posts attached

        Raises:
            requests.RequestException: If the timeline request fails after retries
        """
        now = now or datetime.utcnow()
        params = {
            "tweet.fields": TWEET_FIELDS,
            "user.fields": USER_FIELDS,
            "expansions": EXPANSIONS,
            "max_results": MAX_RESULTS,
        }
        if since_id:
            params["since_id"] = since_id

        data = self._get(f"/users/{self.user_id}/mentions", params) or {}
        includes = data.get("includes") or {}
        users = {u.get("id"): u for u in includes.get("users") or []}
        included_tweets = {t.get("id"): t for t in includes.get("tweets") or []}

        mentions: list[RawMention] = []
        for tweet in data.get("data") or []:
            try:
                mentions.append(self._to_mention(tweet, users, included_tweets, now))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed mention {tweet.get('id')}: {e}")

        logger.info(f"Fetched {len(mentions)} mentions (since_id={since_id})")
        return mentions

    def _to_mention(
        self,
        tweet: dict,
        users: dict,
        included_tweets: dict,
        now: datetime
    ) -> RawMention:
        author_data = users.get(tweet.get("author_id")) or {}
        created_at = parse_timestamp(author_data.get("created_at")) or now
        account_age_days = max(0, (now - created_at).days)

        author = Author(
            id=str(tweet.get("author_id") or ""),
            handle=author_data.get("username") or "unknown",
            followers=safe_int((author_data.get("public_metrics") or {}).get("followers_count")),
            account_age_days=account_age_days,
        )

        quoted_message = None
        quoted_id = _reference(tweet, "quoted")
        if quoted_id and quoted_id in included_tweets:
            quoted = included_tweets[quoted_id]
            quoted_message = _to_message(quoted, users.get(quoted.get("author_id")))

        replied_to_id = _reference(tweet, "replied_to")
        context: tuple[ConversationMessage, ...] = ()
        if replied_to_id:
            context = tuple(self.fetch_conversation_chain(replied_to_id))

        return RawMention(
            mention_id=str(tweet["id"]),
            text=tweet.get("text") or "",
            author=author,
            urls=_urls(tweet),
            engagement=_engagement(tweet),
            timestamp=parse_timestamp(tweet.get("created_at")) or now,
            in_reply_to_id=replied_to_id,
            conversation_context=context,
            quoted_message=quoted_message,
        )

    def fetch_conversation_chain(self, message_id: str) -> list[ConversationMessage]:
        """
        Walk up a reply chain starting at `message_id`.

        Returns:
            Up to MAX_CONTEXT_DEPTH messages ordered root first, immediate
            parent last. Stops at the first post that cannot be fetched.
        """
        chain: list[ConversationMessage] = []
        current_id: Optional[str] = message_id

        for _ in range(MAX_CONTEXT_DEPTH):
            if not current_id:
                break
            try:
                data = self._get(
                    f"/tweets/{current_id}",
                    {
                        "tweet.fields": TWEET_FIELDS,
                        "user.fields": USER_FIELDS,
                        "expansions": "author_id",
                    },
                ) or {}
            except Exception as e:
                # Deleted, protected or rate limited
                logger.warning(f"Could not fetch parent {current_id}, stopping chain walk: {e}")
                break

            tweet = data.get("data")
            if not tweet:
                break
            authors = (data.get("includes") or {}).get("users") or []
            chain.insert(0, _to_message(tweet, authors[0] if authors else None))
            current_id = _reference(tweet, "replied_to")

        return chain

    def post_thread(self, texts: list[str]) -> list[str]:
        """
        Post texts as a reply chain.

        Returns:
            Ids of the posted messages in order

        Raises:
            requests.RequestException: If a post fails after retries
        """
        ids: list[str] = []
        reply_to: Optional[str] = None

        for text in texts:
            payload: dict = {"text": text}
            if reply_to:
                payload["reply"] = {"in_reply_to_tweet_id": reply_to}
            data = self._post_tweet(payload) or {}
            posted_id = str((data.get("data") or {}).get("id"))
            ids.append(posted_id)
            reply_to = posted_id

        logger.info(f"Posted thread of {len(ids)} messages")
        return ids
