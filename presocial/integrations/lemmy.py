"""
Lemmy API client.

This module provides an async client for the Lemmy v3 HTTP API and converts
its post, comment and community views into the service's normalised shapes.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from presocial.core.comment_tree import parse_comment_path
from presocial.models.dtos import SocialComment, SocialCommunity, SocialPost

logger = logging.getLogger(__name__)

ATTRIBUTION_SITE = "https://presocial.presuite.eu"
EXCERPT_LENGTH = 200


class LemmyAPIError(Exception):
    """Raised when the Lemmy instance cannot serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class LemmyClient:
    """
    Async client for a Lemmy instance.

    Read operations other than search degrade to ``None``/``[]`` on failure;
    search raises :class:`LemmyAPIError` so the route can report it.
    """

    def __init__(
        self,
        instance_url: str = "https://lemmy.world",
        bot_username: Optional[str] = None,
        bot_password: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the Lemmy client.

        Args:
            instance_url: Base URL of the Lemmy instance
            bot_username: Optional bot account used for posting comments
            bot_password: Password for the bot account
            timeout: Request timeout in seconds
            max_retries: Retries for timeouts and 5xx responses
            retry_delay: Base delay between retries in seconds
            client: Pre-built HTTP client (mainly for tests)
        """
        self.instance_url = instance_url.rstrip("/")
        self.bot_username = bot_username
        self.bot_password = bot_password
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.auth_token: Optional[str] = None

        self.client = client or httpx.AsyncClient(
            base_url=f"{self.instance_url}/api/v3",
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
        )

        logger.info(f"Lemmy client initialized for instance: {self.instance_url}")

    @classmethod
    def from_settings(cls, settings) -> "LemmyClient":
        return cls(
            instance_url=settings.LEMMY_INSTANCE_URL,
            bot_username=settings.LEMMY_BOT_USERNAME,
            bot_password=settings.LEMMY_BOT_PASSWORD,
            timeout=settings.LEMMY_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Lemmy client closed")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.auth_token}"} if self.auth_token else {}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make a request with retries on timeouts and server errors.

        Raises:
            LemmyAPIError: If the request fails after all retries
        """
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Lemmy {method} {endpoint} (attempt {attempt + 1})")
                response = await self.client.request(
                    method,
                    endpoint,
                    params=params,
                    json=json_data,
                    headers=self._auth_headers(),
                )

                if response.status_code == 200:
                    return response.json()
                if response.status_code >= 500 and attempt < self.max_retries:
                    logger.warning(f"Lemmy server error {response.status_code} on {endpoint}, retrying")
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                    continue
                raise LemmyAPIError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    response.status_code,
                )

            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    logger.warning(f"Lemmy request to {endpoint} failed, retrying: {e}")
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                    continue
                raise LemmyAPIError(f"Request failed after {self.max_retries} retries: {e}") from e

        raise LemmyAPIError(f"Request failed after {self.max_retries} retries")

    async def authenticate(self) -> bool:
        """Log in with the bot account. Returns False when not configured or rejected."""
        if not self.bot_username or not self.bot_password:
            return False

        try:
            data = await self._request(
                "POST",
                "/user/login",
                json_data={"username_or_email": self.bot_username, "password": self.bot_password},
            )
        except LemmyAPIError as e:
            logger.error(f"Lemmy authentication failed: {e}")
            return False

        token = data.get("jwt")
        if token:
            self.auth_token = token
            return True
        return False

    async def search_posts(
        self,
        query: str,
        limit: int = 10,
        page: int = 1,
        sort: str = "TopAll",
        community_id: Optional[int] = None,
        community_name: Optional[str] = None,
    ) -> List[SocialPost]:
        """
        Search for posts matching ``query``.

        Raises:
            LemmyAPIError: If the search fails
        """
        try:
            data = await self._request(
                "GET",
                "/search",
                params={
                    "q": query,
                    "type_": "Posts",
                    "sort": sort,
                    "limit": limit,
                    "page": page,
                    "community_id": community_id,
                    "community_name": community_name,
                },
            )
            return [self.transform_post(view) for view in data.get("posts", [])]
        except LemmyAPIError as e:
            logger.error(f"Lemmy search failed: {e}")
            raise LemmyAPIError("Failed to search community posts", e.status_code) from e

    async def get_post(self, post_id: int) -> Optional[SocialPost]:
        try:
            data = await self._request("GET", "/post", params={"id": post_id})
            return self.transform_post(data["post_view"])
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy get post {post_id} failed: {e}")
            return None

    async def get_comments(self, post_id: int, limit: int = 20, max_depth: int = 3) -> List[SocialComment]:
        """Top comments of a post, flat, limited to ``max_depth`` nesting levels."""
        try:
            data = await self._request(
                "GET",
                "/comment/list",
                params={"post_id": post_id, "sort": "Top", "limit": limit, "max_depth": max_depth},
            )
            return [self.transform_comment(view) for view in data.get("comments", [])]
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy get comments for post {post_id} failed: {e}")
            return []

    async def list_communities(self, query: Optional[str] = None, limit: int = 10) -> List[SocialCommunity]:
        """Communities matching ``query``, or the top communities when no query is given."""
        try:
            if query:
                data = await self._request(
                    "GET",
                    "/search",
                    params={"q": query, "type_": "Communities", "sort": "TopAll", "limit": limit},
                )
            else:
                data = await self._request(
                    "GET",
                    "/community/list",
                    params={"type_": "All", "sort": "TopAll", "limit": limit},
                )
            return [self.transform_community(view) for view in data.get("communities", [])]
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy list communities failed: {e}")
            return []

    async def get_trending(self, limit: int = 10) -> List[SocialPost]:
        try:
            data = await self._request("GET", "/post/list", params={"sort": "Hot", "type_": "All", "limit": limit})
            return [self.transform_post(view) for view in data.get("posts", [])]
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy get trending failed: {e}")
            return []

    async def create_comment(
        self,
        post_id: int,
        content: str,
        parent_id: Optional[int] = None,
        attributed_user: Optional[str] = None,
    ) -> Optional[SocialComment]:
        """
        Post a comment through the bot account.

        Args:
            post_id: The post to comment on
            content: Comment body (markdown)
            parent_id: Optional parent comment id for replies
            attributed_user: Display name appended as attribution

        Returns:
            The created comment, or None if posting failed
        """
        if not self.auth_token and not await self.authenticate():
            logger.warning("Cannot comment on Lemmy: not authenticated")
            return None

        if attributed_user:
            content = f"{content}\n\n---\n*Posted via [PreSocial]({ATTRIBUTION_SITE}) by {attributed_user}*"

        payload: Dict[str, Any] = {"post_id": post_id, "content": content}
        if parent_id is not None:
            payload["parent_id"] = parent_id

        try:
            data = await self._request("POST", "/comment", json_data=payload)
            return self.transform_comment(data["comment_view"])
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy create comment failed: {e}")
            return None

    async def get_instance_info(self) -> Optional[Dict[str, str]]:
        """Name and version of the instance, or None when unreachable."""
        try:
            data = await self._request("GET", "/site")
            return {"version": data["version"], "name": data["site_view"]["site"]["name"]}
        except (LemmyAPIError, KeyError) as e:
            logger.error(f"Lemmy get instance info failed: {e}")
            return None

    def transform_post(self, view: Dict[str, Any]) -> SocialPost:
        post, counts = view["post"], view.get("counts", {})
        community, creator = view["community"], view["creator"]
        body = post.get("body")
        return SocialPost(
            id=post["id"],
            title=post["name"],
            url=post.get("ap_id") or f"{self.instance_url}/post/{post['id']}",
            body=body,
            score=counts.get("score", 0),
            upvotes=counts.get("upvotes", 0),
            downvotes=counts.get("downvotes", 0),
            comment_count=counts.get("comments", 0),
            community=community["name"],
            community_id=community["id"],
            community_icon=community.get("icon"),
            author=creator["name"],
            timestamp=post["published"],
            thumbnail=post.get("thumbnail_url"),
            excerpt=body[:EXCERPT_LENGTH] if body else None,
            nsfw=bool(post.get("nsfw") or community.get("nsfw")),
        )

    def transform_comment(self, view: Dict[str, Any]) -> SocialComment:
        comment, counts, creator = view["comment"], view.get("counts", {}), view["creator"]
        parent_id, depth = parse_comment_path(comment["path"])
        return SocialComment(
            id=comment["id"],
            content=comment["content"],
            score=counts.get("score", 0),
            author=creator["name"],
            timestamp=comment["published"],
            parent_id=parent_id,
            depth=depth,
        )

    def transform_community(self, view: Dict[str, Any]) -> SocialCommunity:
        community, counts = view["community"], view.get("counts", {})
        return SocialCommunity(
            id=community["id"],
            name=community["name"],
            title=community.get("title") or community["name"],
            description=community.get("description"),
            icon=community.get("icon"),
            banner=community.get("banner"),
            subscribers=counts.get("subscribers", 0),
            posts=counts.get("posts", 0),
            url=community.get("actor_id") or f"{self.instance_url}/c/{community['name']}",
            nsfw=bool(community.get("nsfw")),
        )
