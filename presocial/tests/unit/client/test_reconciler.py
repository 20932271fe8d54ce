"""
Unit tests for optimistic vote and bookmark state.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from presocial.client.reconciler import (
    BookmarkReconciler,
    OptimisticTransaction,
    ReconcileError,
    SessionState,
    VoteReconciler,
    score_delta,
)
from presocial.client.social_client import APIError
from presocial.models.dtos import SavedPost


class TestScoreDelta:
    """Test cases for the score change table."""

    @pytest.mark.parametrize(
        "previous,new,expected",
        [
            (None, "up", 1),
            (None, "down", -1),
            ("up", "down", -2),
            ("down", "up", 2),
            ("up", None, -1),
            ("down", None, 1),
            ("up", "up", 0),
            (None, None, 0),
        ],
    )
    def test_table(self, previous, new, expected):
        assert score_delta(previous, new) == expected


class TestOptimisticTransaction:
    """Test cases for snapshot/commit/restore."""

    @pytest.mark.asyncio
    async def test_commit_keeps_changes(self):
        state = {"value": 1}

        async with OptimisticTransaction(lambda: dict(state), lambda saved: state.update(saved)) as tx:
            state["value"] = 2

        assert tx.committed
        assert state == {"value": 2}

    @pytest.mark.asyncio
    async def test_failure_restores_snapshot(self):
        state = {"value": 1}
        tx = OptimisticTransaction(lambda: dict(state), lambda saved: state.update(saved))

        with pytest.raises(RuntimeError):
            async with tx:
                state["value"] = 2
                raise RuntimeError("rejected")

        assert tx.rolled_back
        assert state == {"value": 1}


class TestVoteReconciler:
    """Test cases for VoteReconciler."""

    @pytest.mark.asyncio
    async def test_toggle_sequence_scores(self):
        confirm = AsyncMock()
        votes = VoteReconciler(confirm)

        assert await votes.vote(1, "up") == "up"
        assert votes.adjusted_score(1, 10) == 11
        assert await votes.vote(1, "down") == "down"
        assert votes.adjusted_score(1, 10) == 9
        assert await votes.vote(1, "down") is None
        assert votes.adjusted_score(1, 10) == 10

        assert [call.args for call in confirm.await_args_list] == [(1, "up"), (1, "down"), (1, "none")]

    @pytest.mark.asyncio
    async def test_failed_confirmation_rolls_back(self):
        confirm = AsyncMock(side_effect=[None, APIError("Server error", 500)])
        votes = VoteReconciler(confirm)
        await votes.vote(1, "up")

        with pytest.raises(ReconcileError) as exc_info:
            await votes.vote(1, "down")

        assert exc_info.value.post_id == 1
        assert exc_info.value.message == "Server error"
        assert votes.get_vote(1) == "up"
        assert votes.adjusted_score(1, 10) == 11

    @pytest.mark.asyncio
    async def test_rollback_of_first_vote_clears_state(self):
        votes = VoteReconciler(AsyncMock(side_effect=APIError("Network error")))

        with pytest.raises(ReconcileError):
            await votes.vote(1, "up")

        assert votes.get_vote(1) is None
        assert 1 not in votes.score_adjustments

    @pytest.mark.asyncio
    async def test_same_post_toggles_are_serialised(self):
        release = asyncio.Event()
        seen = []

        async def confirm(post_id, vote):
            seen.append(vote)
            if len(seen) == 1:
                await release.wait()

        votes = VoteReconciler(confirm)
        first = asyncio.create_task(votes.vote(1, "up"))
        second = asyncio.create_task(votes.vote(1, "up"))
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second)

        assert results == ["up", None]
        assert seen == ["up", "none"]
        assert votes.adjusted_score(1, 10) == 10

    @pytest.mark.asyncio
    async def test_failure_on_one_post_leaves_others_alone(self):
        async def confirm(post_id, vote):
            if post_id == 2:
                raise APIError("rejected", 400)

        votes = VoteReconciler(confirm)
        await votes.vote(1, "up")

        with pytest.raises(ReconcileError):
            await votes.vote(2, "down")

        assert votes.votes == {1: "up"}
        assert votes.score_adjustments == {1: 1}

    @pytest.mark.asyncio
    async def test_failure_after_reset_does_not_restore_old_session(self):
        release = asyncio.Event()

        async def confirm(post_id, vote):
            await release.wait()
            raise APIError("rejected", 401)

        votes = VoteReconciler(confirm)
        pending = asyncio.create_task(votes.vote(1, "up"))
        await asyncio.sleep(0)
        assert votes.votes == {1: "up"}

        votes.reset()
        release.set()
        with pytest.raises(ReconcileError):
            await pending

        assert votes.votes == {}
        assert votes.score_adjustments == {}

    def test_load_and_reset(self):
        votes = VoteReconciler(AsyncMock())
        votes.score_adjustments[3] = 1

        votes.load({"5": "down"})
        assert votes.get_vote(5) == "down"
        assert votes.score_adjustments == {}

        votes.reset()
        assert votes.votes == {}


class TestBookmarkReconciler:
    """Test cases for BookmarkReconciler."""

    @pytest.mark.asyncio
    async def test_save_inserts_at_head_and_unsave_removes(self, saved_post_data):
        confirm = AsyncMock()
        bookmarks = BookmarkReconciler(confirm)

        assert await bookmarks.toggle(saved_post_data(1)) is True
        assert await bookmarks.toggle(saved_post_data(2)) is True
        assert [post.id for post in bookmarks.saved_posts] == [2, 1]

        assert await bookmarks.toggle(saved_post_data(1)) is False
        assert [post.id for post in bookmarks.saved_posts] == [2]
        assert not bookmarks.is_bookmarked(1)

        assert confirm.await_args_list[0].args == (1, saved_post_data(1))
        assert confirm.await_args_list[2].args == (1, None)

    @pytest.mark.asyncio
    async def test_saved_at_comes_from_clock(self, saved_post_data):
        moment = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)
        bookmarks = BookmarkReconciler(AsyncMock(), clock=lambda: moment)

        await bookmarks.toggle(saved_post_data(1))

        assert bookmarks.saved_posts[0].saved_at == moment.isoformat()

    @pytest.mark.asyncio
    async def test_failed_unsave_restores_position(self, saved_post_data):
        confirm = AsyncMock()
        bookmarks = BookmarkReconciler(confirm)
        for post_id in (1, 2, 3):
            await bookmarks.toggle(saved_post_data(post_id))

        confirm.side_effect = APIError("Server error", 500)
        with pytest.raises(ReconcileError):
            await bookmarks.toggle(saved_post_data(2))

        assert [post.id for post in bookmarks.saved_posts] == [3, 2, 1]
        assert bookmarks.is_bookmarked(2)

    @pytest.mark.asyncio
    async def test_failed_save_removes_snapshot(self, saved_post_data):
        bookmarks = BookmarkReconciler(AsyncMock(side_effect=APIError("Network error")))

        with pytest.raises(ReconcileError):
            await bookmarks.toggle(saved_post_data(1))

        assert bookmarks.saved_posts == []
        assert not bookmarks.is_bookmarked(1)

    @pytest.mark.asyncio
    async def test_failure_after_load_keeps_reloaded_state(self, saved_post_data):
        release = asyncio.Event()

        async def confirm(post_id, post):
            await release.wait()
            raise APIError("rejected", 401)

        bookmarks = BookmarkReconciler(confirm)
        bookmarks.load([SavedPost(**saved_post_data(1).model_dump(), saved_at="2025-01-01T00:00:00+00:00")])
        pending = asyncio.create_task(bookmarks.toggle(saved_post_data(1)))
        await asyncio.sleep(0)
        assert not bookmarks.is_bookmarked(1)

        bookmarks.load([])
        release.set()
        with pytest.raises(ReconcileError):
            await pending

        assert bookmarks.bookmarks == {}
        assert bookmarks.saved_posts == []

    @pytest.mark.asyncio
    async def test_accepts_full_post_models(self, post_view):
        from presocial.integrations.lemmy import LemmyClient

        post = LemmyClient(instance_url="https://lemmy.test").transform_post(post_view)
        bookmarks = BookmarkReconciler(AsyncMock())

        assert await bookmarks.toggle(post) is True
        assert bookmarks.saved_posts[0].comment_count == 7

    def test_load(self):
        saved_at = datetime.now(timezone.utc)
        posts = [
            SavedPost(
                id=post_id, title="t", url="u", score=0, community="c", author="a",
                timestamp="2025-01-01T00:00:00Z", saved_at=(saved_at - timedelta(days=post_id)).isoformat(),
            )
            for post_id in (1, 2)
        ]
        bookmarks = BookmarkReconciler(AsyncMock())

        bookmarks.load(posts)

        assert bookmarks.bookmarks == {1: True, 2: True}
        assert [post.id for post in bookmarks.saved_posts] == [1, 2]


class TestSessionState:
    """Test cases for SessionState login/logout."""

    @pytest.mark.asyncio
    async def test_login_loads_server_state(self, saved_post_data):
        api = AsyncMock()
        api.token = None
        api.set_token = lambda token: setattr(api, "token", token)
        api.get_votes.return_value = {5: "up"}
        api.get_bookmarks.return_value = [
            SavedPost(**saved_post_data(7).model_dump(), saved_at="2025-01-01T00:00:00+00:00")
        ]
        session = SessionState(api)

        await session.login("token-1")

        assert session.authenticated
        assert session.votes.get_vote(5) == "up"
        assert session.bookmarks.is_bookmarked(7)

        await session.vote(5, "up")
        api.vote.assert_awaited_once_with(5, "none")

        session.logout()
        assert not session.authenticated
        assert session.votes.votes == {}
        assert session.bookmarks.saved_posts == []

    @pytest.mark.asyncio
    async def test_vote_requires_login(self):
        api = AsyncMock()
        api.token = None
        session = SessionState(api)

        with pytest.raises(ReconcileError):
            await session.vote(1, "up")

        api.vote.assert_not_awaited()
