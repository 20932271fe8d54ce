"""
Pydantic Data Transfer Objects (DTOs) for the PreSocial service.

These models are used for API request/response validation, for the
vote/bookmark storage files and for the client library. Field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Vote = Literal["up", "down"]
VoteAction = Literal["up", "down", "none"]
SearchSort = Literal["TopAll", "TopYear", "TopMonth", "TopWeek", "TopDay", "Hot", "New"]


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting either spelling."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SocialPost(CamelModel):
    """A normalised upstream post."""
    id: int
    title: str
    url: str
    body: Optional[str] = None
    score: int = 0
    upvotes: int = 0
    downvotes: int = 0
    comment_count: int = 0
    community: str
    community_id: int
    community_icon: Optional[str] = None
    author: str
    timestamp: str
    thumbnail: Optional[str] = None
    excerpt: Optional[str] = None
    nsfw: bool = False


class SocialComment(CamelModel):
    """
    A flat comment as returned by the upstream API.

    ``parent_id`` and ``depth`` are derived from the comment's ancestry path.
    """
    id: int
    content: str
    score: int = 0
    author: str
    timestamp: str
    parent_id: Optional[int] = None
    depth: int = 0


class CommentNode(SocialComment):
    """A comment with its nested, score-ordered replies."""
    replies: List[CommentNode] = Field(default_factory=list)


class SocialCommunity(CamelModel):
    """A normalised upstream community."""
    id: int
    name: str
    title: str
    description: Optional[str] = None
    icon: Optional[str] = None
    banner: Optional[str] = None
    subscribers: int = 0
    posts: int = 0
    url: str = ""
    nsfw: bool = False


class SearchMeta(CamelModel):
    total_results: int
    cached: bool = False
    cache_age: Optional[int] = None
    processing_time: int = 0


class SearchResponse(CamelModel):
    query: str
    posts: List[SocialPost]
    communities: List[SocialCommunity]
    meta: SearchMeta


class PostResponse(CamelModel):
    post: SocialPost
    comments: List[SocialComment]
    community: SocialCommunity


class TrendingResponse(CamelModel):
    trending: List[SocialPost]
    updated_at: str


class CommunitiesResponse(CamelModel):
    communities: List[SocialCommunity]


class SavedPostData(CamelModel):
    """Post fields copied into a bookmark at save time."""
    id: int
    title: str
    url: str
    score: int
    comment_count: int = 0
    community: str
    author: str
    timestamp: str
    thumbnail: Optional[str] = None
    excerpt: Optional[str] = None


class SavedPost(SavedPostData):
    """
    A bookmarked post snapshot.

    The snapshot is never refreshed from upstream after it was saved.
    """
    saved_at: str


class VoteRequest(CamelModel):
    post_id: int = Field(gt=0)
    vote: VoteAction


class VoteResponse(CamelModel):
    success: bool = True
    post_id: int
    vote: Optional[Vote] = None
    previous_vote: Optional[Vote] = None
    score_change: int = 0


class VotesResponse(CamelModel):
    votes: Dict[int, Vote]


class BookmarkRequest(CamelModel):
    post_id: int = Field(gt=0)
    post: Optional[SavedPostData] = None


class BookmarkResponse(CamelModel):
    success: bool = True
    post_id: int
    saved: bool


class BookmarksResponse(CamelModel):
    bookmarks: List[SavedPost]
    count: int


class BookmarkStatusResponse(CamelModel):
    post_id: int
    saved: bool


class CommentRequest(CamelModel):
    post_id: int = Field(gt=0)
    content: str = Field(min_length=1, max_length=10000)
    parent_id: Optional[int] = Field(default=None, gt=0)


class CommentResponse(CamelModel):
    success: bool = True
    comment: SocialComment


class CommentStatusResponse(CamelModel):
    enabled: bool
    bot_account: Optional[str] = None


class AuthUser(BaseModel):
    """Identity resolved from a bearer token."""
    id: str
    email: str
    name: Optional[str] = None
    org_id: Optional[str] = None
