"""
Models package for the PreSocial service.

This package contains the Pydantic DTOs shared by the API, the storage
layer and the client library.
"""

from .dtos import (
    AuthUser,
    BookmarkRequest,
    BookmarkResponse,
    BookmarksResponse,
    BookmarkStatusResponse,
    CommentNode,
    CommentRequest,
    CommentResponse,
    CommentStatusResponse,
    CommunitiesResponse,
    PostResponse,
    SavedPost,
    SavedPostData,
    SearchMeta,
    SearchResponse,
    SearchSort,
    SocialComment,
    SocialCommunity,
    SocialPost,
    TrendingResponse,
    Vote,
    VoteAction,
    VoteRequest,
    VoteResponse,
    VotesResponse,
)

__all__ = [
    "AuthUser",
    "BookmarkRequest",
    "BookmarkResponse",
    "BookmarksResponse",
    "BookmarkStatusResponse",
    "CommentNode",
    "CommentRequest",
    "CommentResponse",
    "CommentStatusResponse",
    "CommunitiesResponse",
    "PostResponse",
    "SavedPost",
    "SavedPostData",
    "SearchMeta",
    "SearchResponse",
    "SearchSort",
    "SocialComment",
    "SocialCommunity",
    "SocialPost",
    "TrendingResponse",
    "Vote",
    "VoteAction",
    "VoteRequest",
    "VoteResponse",
    "VotesResponse",
]
