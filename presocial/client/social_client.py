"""
HTTP client for the PreSocial API.

This module provides an async client for the service's public endpoints,
used by the optimistic vote/bookmark state to confirm changes and to rebuild
that state after sign-in.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from presocial.core.comment_tree import build_comment_tree, truncate_depth
from presocial.models.dtos import (
    BookmarkResponse,
    BookmarksResponse,
    CommentNode,
    CommunitiesResponse,
    PostResponse,
    SavedPost,
    SavedPostData,
    SearchResponse,
    TrendingResponse,
    Vote,
    VoteAction,
    VoteResponse,
    VotesResponse,
)

logger = logging.getLogger(__name__)

# Reply nesting shown below each top-level comment
COMMENT_DISPLAY_DEPTH = 6


class APIError(Exception):
    """Custom exception for API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class SocialClient:
    """
    Async HTTP client for the ``/api/social`` endpoints.

    Non-200 responses raise :class:`APIError` carrying the server's ``error``
    message; transport failures raise :class:`APIError` with ``Network error``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3002/api/social",
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Base URL of the social API, including the ``/api/social`` prefix
            token: Bearer token for authenticated endpoints
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (mainly for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        try:
            response = await self.client.request(
                method,
                f"{self.base_url}{endpoint}",
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Request to {endpoint} failed: {e}")
            raise APIError("Network error") from e

        if response.status_code != 200:
            try:
                message = response.json().get("error") or response.json().get("detail")
            except ValueError:
                message = None
            raise APIError(message or f"HTTP {response.status_code}", response.status_code)

        return response.json()

    async def search(
        self,
        query: str,
        limit: int = 10,
        page: int = 1,
        sort: str = "TopAll",
        community: Optional[str] = None,
    ) -> SearchResponse:
        data = await self._request(
            "GET",
            "/search",
            params={"q": query, "limit": limit, "page": page, "sort": sort, "community": community},
        )
        return SearchResponse.model_validate(data)

    async def get_post(self, post_id: int) -> PostResponse:
        return PostResponse.model_validate(await self._request("GET", f"/post/{post_id}"))

    async def get_comment_tree(self, post_id: int, max_depth: int = COMMENT_DISPLAY_DEPTH) -> List[CommentNode]:
        """Comments of a post as a score-ordered reply tree, cut off below ``max_depth``."""
        response = await self.get_post(post_id)
        return truncate_depth(build_comment_tree(response.comments), max_depth)

    async def list_communities(self, query: Optional[str] = None, limit: int = 10) -> CommunitiesResponse:
        data = await self._request("GET", "/communities", params={"q": query, "limit": limit})
        return CommunitiesResponse.model_validate(data)

    async def get_trending(self, limit: int = 10) -> TrendingResponse:
        return TrendingResponse.model_validate(await self._request("GET", "/trending", params={"limit": limit}))

    async def vote(self, post_id: int, vote: VoteAction) -> VoteResponse:
        data = await self._request("POST", "/vote", json_data={"postId": post_id, "vote": vote})
        return VoteResponse.model_validate(data)

    async def get_votes(self) -> Dict[int, Vote]:
        return VotesResponse.model_validate(await self._request("GET", "/votes")).votes

    async def toggle_bookmark(self, post_id: int, post: Optional[SavedPostData] = None) -> BookmarkResponse:
        body: Dict[str, Any] = {"postId": post_id}
        if post is not None:
            body["post"] = post.model_dump(by_alias=True, exclude_none=True)
        return BookmarkResponse.model_validate(await self._request("POST", "/bookmark", json_data=body))

    async def get_bookmarks(self) -> List[SavedPost]:
        return BookmarksResponse.model_validate(await self._request("GET", "/bookmarks")).bookmarks
