"""
Social API endpoints.

Read endpoints proxy the Lemmy instance through the cache with NSFW content
filtered out. Vote and bookmark endpoints record per-user state in the
persistent ledger; comments are posted upstream through the bot account.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import JSONResponse

from presocial.client.reconciler import score_delta
from presocial.core.cache import CacheStore, CacheTTL
from presocial.core.key_codec import derive_search_key
from presocial.core.ledger import DirtyLedger
from presocial.integrations.lemmy import LemmyAPIError, LemmyClient
from presocial.models.dtos import (
    AuthUser,
    BookmarkRequest,
    BookmarkResponse,
    BookmarksResponse,
    BookmarkStatusResponse,
    CommentRequest,
    CommentResponse,
    CommentStatusResponse,
    CommunitiesResponse,
    PostResponse,
    SavedPost,
    SearchMeta,
    SearchResponse,
    SearchSort,
    SocialCommunity,
    TrendingResponse,
    VoteRequest,
    VoteResponse,
    VotesResponse,
)
from presocial.api.dependencies import get_cache, get_cache_ttl, get_ledger, get_lemmy, require_user

router = APIRouter()
logger = logging.getLogger(__name__)

POST_COMMENT_LIMIT = 30
SEARCH_COMMUNITY_LIMIT = 5


def _now_millis() -> int:
    return int(time.time() * 1000)


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


def _display_name(user: AuthUser) -> str:
    if user.name:
        return user.name
    if user.email:
        return user.email.split("@")[0]
    return "PreSocial User"


@router.get("/search", response_model=SearchResponse, response_model_by_alias=True)
async def search(
    q: str = Query(..., min_length=1, max_length=500),
    limit: int = Query(10, ge=1, le=50),
    page: int = Query(1, ge=1, le=100),
    sort: SearchSort = Query("TopAll"),
    community: Optional[str] = Query(None),
    cache: CacheStore = Depends(get_cache),
    ttl: CacheTTL = Depends(get_cache_ttl),
    lemmy: LemmyClient = Depends(get_lemmy),
):
    """
    Search community discussions relevant to ``q``.

    Communities are only searched when no community filter is given.
    """
    started = _now_millis()
    cache_key = derive_search_key(q, {"limit": limit, "page": page, "sort": sort, "community": community})

    cached = await cache.get(cache_key)
    if cached is not None:
        response = dict(cached["response"])
        response["meta"] = {
            **response["meta"],
            "cached": True,
            "cacheAge": max(0, (_now_millis() - cached["cachedAt"]) // 1000),
        }
        return response

    try:
        posts = await lemmy.search_posts(q, limit=limit, page=page, sort=sort, community_name=community)
    except LemmyAPIError as e:
        logger.error(f"Search error for {q!r}: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to search community discussions", "message": e.message},
        )
    communities = [] if community else await lemmy.list_communities(q, SEARCH_COMMUNITY_LIMIT)

    safe_posts = [post for post in posts if not post.nsfw]
    response = SearchResponse(
        query=q,
        posts=safe_posts,
        communities=[c for c in communities if not c.nsfw],
        meta=SearchMeta(
            total_results=len(safe_posts),
            cached=False,
            processing_time=_now_millis() - started,
        ),
    )

    payload = _dump(response)
    await cache.set(cache_key, {"response": payload, "cachedAt": _now_millis()}, ttl.search)
    return payload


@router.get("/post/{post_id}", response_model=PostResponse, response_model_by_alias=True)
async def get_post(
    post_id: int = Path(..., gt=0),
    cache: CacheStore = Depends(get_cache),
    ttl: CacheTTL = Depends(get_cache_ttl),
    lemmy: LemmyClient = Depends(get_lemmy),
):
    """A post with its top comments and community."""
    cache_key = f"post:{post_id}"
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    post = await lemmy.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")

    comments = await lemmy.get_comments(post_id, limit=POST_COMMENT_LIMIT)
    communities = await lemmy.list_communities(post.community, 1)
    community = communities[0] if communities else SocialCommunity(
        id=post.community_id,
        name=post.community,
        title=post.community,
    )

    payload = _dump(PostResponse(post=post, comments=comments, community=community))
    await cache.set(cache_key, payload, ttl.post)
    return payload


@router.get("/communities", response_model=CommunitiesResponse, response_model_by_alias=True)
async def list_communities(
    q: Optional[str] = Query(None),
    limit: int = Query(10, ge=1),
    cache: CacheStore = Depends(get_cache),
    ttl: CacheTTL = Depends(get_cache_ttl),
    lemmy: LemmyClient = Depends(get_lemmy),
):
    limit = min(limit, 50)
    cache_key = f"communities:{q}" if q else "communities:all"
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    communities = await lemmy.list_communities(q, limit)
    payload = _dump(CommunitiesResponse(communities=[c for c in communities if not c.nsfw]))
    await cache.set(cache_key, payload, ttl.communities)
    return payload


@router.get("/trending", response_model=TrendingResponse, response_model_by_alias=True)
async def get_trending(
    limit: int = Query(10, ge=1),
    cache: CacheStore = Depends(get_cache),
    ttl: CacheTTL = Depends(get_cache_ttl),
    lemmy: LemmyClient = Depends(get_lemmy),
):
    limit = min(limit, 20)
    cache_key = f"trending:{limit}"
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    trending = await lemmy.get_trending(limit)
    payload = _dump(TrendingResponse(
        trending=[post for post in trending if not post.nsfw],
        updated_at=datetime.now(timezone.utc).isoformat(),
    ))
    await cache.set(cache_key, payload, ttl.trending)
    return payload


@router.post("/vote", response_model=VoteResponse, response_model_by_alias=True)
async def vote(
    request: VoteRequest,
    user: AuthUser = Depends(require_user),
    ledger: DirtyLedger = Depends(get_ledger),
) -> VoteResponse:
    """
    Record a vote on a post.

    ``none`` retracts the current vote. ``scoreChange`` is the change in the
    post's displayed score caused by this request.
    """
    new_vote = None if request.vote == "none" else request.vote
    async with ledger.lock_for(user.id, request.post_id):
        previous = ledger.set_vote(user.id, request.post_id, new_vote)

    return VoteResponse(
        post_id=request.post_id,
        vote=new_vote,
        previous_vote=previous,
        score_change=score_delta(previous, new_vote),
    )


@router.get("/votes", response_model=VotesResponse, response_model_by_alias=True)
async def get_votes(
    user: AuthUser = Depends(require_user),
    ledger: DirtyLedger = Depends(get_ledger),
) -> VotesResponse:
    return VotesResponse(votes=ledger.get_votes(user.id))


@router.post("/bookmark", response_model=BookmarkResponse, response_model_by_alias=True)
async def toggle_bookmark(
    request: BookmarkRequest,
    user: AuthUser = Depends(require_user),
    ledger: DirtyLedger = Depends(get_ledger),
) -> BookmarkResponse:
    """
    Save or unsave a post.

    Saving needs the post data, which is stored as a snapshot.
    """
    async with ledger.lock_for(user.id, request.post_id):
        if ledger.is_bookmarked(user.id, request.post_id):
            ledger.remove_bookmark(user.id, request.post_id)
            return BookmarkResponse(post_id=request.post_id, saved=False)

        if request.post is None:
            raise HTTPException(status_code=400, detail="Post data required to save")

        saved = SavedPost(
            **request.post.model_dump(exclude={"id"}),
            id=request.post_id,
            saved_at=datetime.now(timezone.utc).isoformat(),
        )
        ledger.add_bookmark(user.id, saved)
        return BookmarkResponse(post_id=request.post_id, saved=True)


@router.get("/bookmarks", response_model=BookmarksResponse, response_model_by_alias=True)
async def get_bookmarks(
    user: AuthUser = Depends(require_user),
    ledger: DirtyLedger = Depends(get_ledger),
) -> BookmarksResponse:
    bookmarks = ledger.get_bookmarks(user.id)
    return BookmarksResponse(bookmarks=bookmarks, count=len(bookmarks))


@router.get("/bookmark/{post_id}", response_model=BookmarkStatusResponse, response_model_by_alias=True)
async def get_bookmark_status(
    post_id: int = Path(...),
    user: AuthUser = Depends(require_user),
    ledger: DirtyLedger = Depends(get_ledger),
) -> BookmarkStatusResponse:
    return BookmarkStatusResponse(post_id=post_id, saved=ledger.is_bookmarked(user.id, post_id))


@router.post("/comment", response_model=CommentResponse, response_model_by_alias=True)
async def create_comment(
    request: CommentRequest,
    user: AuthUser = Depends(require_user),
    lemmy: LemmyClient = Depends(get_lemmy),
):
    """Post a comment upstream through the bot account, attributed to the user."""
    if not lemmy.bot_username:
        return JSONResponse(
            status_code=503,
            content={"error": "Comment posting is not configured", "message": "Lemmy bot account not set up"},
        )

    comment = await lemmy.create_comment(
        request.post_id,
        request.content,
        parent_id=request.parent_id,
        attributed_user=_display_name(user),
    )
    if comment is None:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to post comment", "message": "Could not create comment on Lemmy"},
        )

    return CommentResponse(comment=comment)


@router.get("/comment/status", response_model=CommentStatusResponse, response_model_by_alias=True)
async def comment_status(lemmy: LemmyClient = Depends(get_lemmy)) -> CommentStatusResponse:
    return CommentStatusResponse(enabled=bool(lemmy.bot_username), bot_account=lemmy.bot_username or None)


@router.get("/health")
async def social_health(lemmy: LemmyClient = Depends(get_lemmy)):
    """Upstream instance status; 503 when the instance cannot be reached."""
    timestamp = datetime.now(timezone.utc).isoformat()
    info = await lemmy.get_instance_info()

    if info is None:
        return JSONResponse(
            status_code=503,
            content={
                "status": "degraded",
                "service": "presocial",
                "timestamp": timestamp,
                "lemmy": {"connected": False},
            },
        )

    return {
        "status": "healthy",
        "service": "presocial",
        "timestamp": timestamp,
        "lemmy": {"connected": True, "instance": info["name"], "version": info["version"]},
    }
