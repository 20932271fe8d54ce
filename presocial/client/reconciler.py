"""
Optimistic vote and bookmark state for API clients.

Changes are applied locally first, then confirmed with the server. A failed
confirmation restores the affected post's state exactly as it was before the
change. Changes to the same post are serialised so that a second toggle
always starts from the settled outcome of the first.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel

from presocial.client.social_client import SocialClient
from presocial.models.dtos import SavedPost, SavedPostData, Vote, VoteAction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (previous vote, new vote) -> change in displayed score
SCORE_DELTAS: Dict[tuple, int] = {
    (None, "up"): 1,
    (None, "down"): -1,
    ("up", "down"): -2,
    ("down", "up"): 2,
    ("up", None): -1,
    ("down", None): 1,
}


def score_delta(previous: Optional[Vote], new: Optional[Vote]) -> int:
    """Score change caused by moving from ``previous`` to ``new`` (None means no vote)."""
    return SCORE_DELTAS.get((previous, new), 0)


def toggle_vote(current: Optional[Vote], requested: Vote) -> Optional[Vote]:
    """Clicking the active direction clears the vote; the other direction switches to it."""
    return None if current == requested else requested


class ReconcileError(Exception):
    """Raised when a change could not be confirmed and was rolled back."""

    def __init__(self, message: str, post_id: Optional[int] = None):
        self.message = message
        self.post_id = post_id
        super().__init__(self.message)


class OptimisticTransaction(Generic[T]):
    """
    Snapshot before mutating, commit on success, restore on failure.

    Used as an async context manager: the snapshot is taken on entry, and if
    the block raises the snapshot is handed back to ``restore``.
    """

    def __init__(self, snapshot: Callable[[], T], restore: Callable[[T], None]):
        self._snapshot = snapshot
        self._restore = restore
        self._saved: Optional[T] = None
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> "OptimisticTransaction[T]":
        self._saved = self._snapshot()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.committed = True
        else:
            self._restore(self._saved)
            self.rolled_back = True
        return False


class _PostLocks:
    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def __call__(self, post_id: int) -> asyncio.Lock:
        lock = self._locks.get(post_id)
        if lock is None:
            lock = self._locks[post_id] = asyncio.Lock()
        return lock


class VoteReconciler:
    """
    Per-post vote state plus a running score adjustment.

    The displayed score is always ``server_score + score_adjustments[post]``,
    however many times the user toggled during the session.
    """

    def __init__(self, confirm: Callable[[int, VoteAction], Awaitable[Any]]):
        """
        Args:
            confirm: Coroutine sending ``(post_id, "up"|"down"|"none")`` to the server;
                raising means the change was rejected.
        """
        self._confirm = confirm
        self.votes: Dict[int, Vote] = {}
        self.score_adjustments: Dict[int, int] = {}
        self._lock_for = _PostLocks()
        self._epoch = 0

    def get_vote(self, post_id: int) -> Optional[Vote]:
        return self.votes.get(post_id)

    def adjusted_score(self, post_id: int, server_score: int) -> int:
        return server_score + self.score_adjustments.get(post_id, 0)

    def load(self, votes: Mapping[int, Vote]) -> None:
        """Replace local state with the server's votes."""
        self.votes = {int(post_id): vote for post_id, vote in votes.items()}
        self.score_adjustments = {}
        self._epoch += 1

    def reset(self) -> None:
        self.votes = {}
        self.score_adjustments = {}
        self._epoch += 1

    def _snapshot(self, post_id: int):
        return self.votes.get(post_id), self.score_adjustments.get(post_id)

    def _restorer(self, post_id: int) -> Callable[[tuple], None]:
        epoch = self._epoch

        def restore(saved: tuple) -> None:
            # State was reloaded or cleared while the change was in flight.
            if epoch != self._epoch:
                return
            vote, adjustment = saved
            if vote is None:
                self.votes.pop(post_id, None)
            else:
                self.votes[post_id] = vote
            if adjustment is None:
                self.score_adjustments.pop(post_id, None)
            else:
                self.score_adjustments[post_id] = adjustment
        return restore

    async def vote(self, post_id: int, direction: Vote) -> Optional[Vote]:
        """
        Toggle ``direction`` on a post.

        Returns:
            The vote now held on the post (None when the vote was cleared).

        Raises:
            ReconcileError: If confirmation failed; local state is rolled back.
        """
        async with self._lock_for(post_id):
            current = self.votes.get(post_id)
            new_vote = toggle_vote(current, direction)
            delta = score_delta(current, new_vote)

            try:
                async with OptimisticTransaction(lambda: self._snapshot(post_id), self._restorer(post_id)):
                    if new_vote is None:
                        self.votes.pop(post_id, None)
                    else:
                        self.votes[post_id] = new_vote
                    self.score_adjustments[post_id] = self.score_adjustments.get(post_id, 0) + delta

                    await self._confirm(post_id, new_vote or "none")
            except Exception as e:
                logger.warning(f"Vote on post {post_id} rolled back: {e}")
                raise ReconcileError(getattr(e, "message", None) or "Failed to vote", post_id) from e

            return new_vote


class BookmarkReconciler:
    """
    Per-post saved flag plus the ordered list of saved post snapshots.

    Saving inserts the snapshot at the head of ``saved_posts``; unsaving
    removes it by id.
    """

    def __init__(
        self,
        confirm: Callable[[int, Optional[SavedPostData]], Awaitable[Any]],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            confirm: Coroutine sending ``(post_id, post data or None)`` to the server.
                Post data is passed when saving and None when unsaving.
            clock: Source of the ``saved_at`` timestamp.
        """
        self._confirm = confirm
        self._clock = clock
        self.bookmarks: Dict[int, bool] = {}
        self.saved_posts: List[SavedPost] = []
        self._lock_for = _PostLocks()
        self._epoch = 0

    def is_bookmarked(self, post_id: int) -> bool:
        return self.bookmarks.get(post_id, False)

    def load(self, saved_posts: Sequence[SavedPost]) -> None:
        self.saved_posts = list(saved_posts)
        self.bookmarks = {post.id: True for post in self.saved_posts}
        self._epoch += 1

    def reset(self) -> None:
        self.bookmarks = {}
        self.saved_posts = []
        self._epoch += 1

    def _snapshot(self, post_id: int):
        for index, post in enumerate(self.saved_posts):
            if post.id == post_id:
                return self.bookmarks.get(post_id), index, post
        return self.bookmarks.get(post_id), None, None

    def _restorer(self, post_id: int) -> Callable[[tuple], None]:
        epoch = self._epoch

        def restore(saved: tuple) -> None:
            # State was reloaded or cleared while the change was in flight.
            if epoch != self._epoch:
                return
            flag, index, post = saved
            if flag is None:
                self.bookmarks.pop(post_id, None)
            else:
                self.bookmarks[post_id] = flag
            self.saved_posts = [p for p in self.saved_posts if p.id != post_id]
            if post is not None:
                self.saved_posts.insert(min(index, len(self.saved_posts)), post)
        return restore

    async def toggle(self, post: Any) -> bool:
        """
        Save or unsave ``post``.

        Args:
            post: A post model or mapping carrying the :class:`SavedPostData` fields.

        Returns:
            bool: True if the post is now saved.

        Raises:
            ReconcileError: If confirmation failed; local state is rolled back.
        """
        if isinstance(post, BaseModel):
            post = post.model_dump()
        data = SavedPostData.model_validate(post)
        post_id = data.id

        async with self._lock_for(post_id):
            saving = not self.is_bookmarked(post_id)

            try:
                async with OptimisticTransaction(lambda: self._snapshot(post_id), self._restorer(post_id)):
                    remaining = [p for p in self.saved_posts if p.id != post_id]
                    if saving:
                        self.bookmarks[post_id] = True
                        snapshot = SavedPost(**data.model_dump(), saved_at=self._clock().isoformat())
                        self.saved_posts = [snapshot] + remaining
                    else:
                        self.bookmarks.pop(post_id, None)
                        self.saved_posts = remaining

                    await self._confirm(post_id, data if saving else None)
            except Exception as e:
                logger.warning(f"Bookmark on post {post_id} rolled back: {e}")
                raise ReconcileError(getattr(e, "message", None) or "Failed to save post", post_id) from e

            return saving


class SessionState:
    """
    Vote and bookmark state for one signed-in user.

    Both reconcilers confirm their changes through the given client. Signing in
    rebuilds local state from the server; signing out discards it.
    """

    def __init__(self, api: SocialClient):
        self.api = api
        self.votes = VoteReconciler(confirm=self._confirm_vote)
        self.bookmarks = BookmarkReconciler(confirm=self._confirm_bookmark)

    @property
    def authenticated(self) -> bool:
        return bool(self.api.token)

    async def _confirm_vote(self, post_id: int, vote: VoteAction) -> None:
        await self.api.vote(post_id, vote)

    async def _confirm_bookmark(self, post_id: int, post: Optional[SavedPostData]) -> None:
        await self.api.toggle_bookmark(post_id, post)

    async def login(self, token: str) -> None:
        self.api.set_token(token)
        self.votes.load(await self.api.get_votes())
        self.bookmarks.load(await self.api.get_bookmarks())
        logger.info(
            f"Session loaded {len(self.votes.votes)} votes and {len(self.bookmarks.saved_posts)} bookmarks"
        )

    def logout(self) -> None:
        self.api.set_token(None)
        self.votes.reset()
        self.bookmarks.reset()

    async def vote(self, post_id: int, direction: Vote) -> Optional[Vote]:
        if not self.authenticated:
            raise ReconcileError("Please sign in to vote", post_id)
        return await self.votes.vote(post_id, direction)

    async def toggle_bookmark(self, post: Any) -> bool:
        if not self.authenticated:
            raise ReconcileError("Please sign in to save posts")
        return await self.bookmarks.toggle(post)
