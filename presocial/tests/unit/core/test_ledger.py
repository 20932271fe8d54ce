"""
Unit tests for the persistent vote/bookmark ledger.
"""

import json
import signal
from unittest.mock import MagicMock, patch

import pytest

from presocial.core.ledger import BOOKMARKS_FILENAME, VOTES_FILENAME, DirtyLedger
from presocial.models.dtos import SavedPost


def _saved(post_id: int, saved_at: str) -> SavedPost:
    return SavedPost(
        id=post_id,
        title=f"post {post_id}",
        url=f"https://lemmy.world/post/{post_id}",
        score=1,
        comment_count=0,
        community="selfhosted",
        author="alice",
        timestamp="2025-01-10T12:00:00Z",
        saved_at=saved_at,
    )


@pytest.fixture
def ledger(tmp_path):
    return DirtyLedger(storage_dir=str(tmp_path), flush_interval=0.01)


class TestVotes:
    """Test cases for vote bookkeeping."""

    def test_vote_sequence_reports_previous_vote(self, ledger):
        assert ledger.set_vote("u1", 5, "up") is None
        assert ledger.set_vote("u1", 5, "down") == "up"
        assert ledger.set_vote("u1", 5, None) == "down"
        assert ledger.get_vote("u1", 5) is None

    def test_retracting_last_vote_drops_user_entry(self, ledger):
        ledger.set_vote("u1", 5, "up")
        ledger.set_vote("u1", 5, None)

        assert ledger.get_votes("u1") == {}
        assert ledger.export_votes() == {}

    def test_dirty_only_on_change(self, ledger):
        ledger.set_vote("u1", 5, None)
        assert not ledger.votes_dirty

        ledger.set_vote("u1", 5, "up")
        assert ledger.votes_dirty

        ledger.votes_dirty = False
        ledger.set_vote("u1", 5, "up")
        assert not ledger.votes_dirty

    def test_invalid_vote_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.set_vote("u1", 5, "sideways")

    def test_get_votes_returns_copy(self, ledger):
        ledger.set_vote("u1", 5, "up")
        votes = ledger.get_votes("u1")
        votes[6] = "down"

        assert ledger.get_vote("u1", 6) is None

    def test_users_are_isolated(self, ledger):
        ledger.set_vote("u1", 5, "up")
        ledger.set_vote("u2", 5, "down")

        assert ledger.get_votes("u1") == {5: "up"}
        assert ledger.get_votes("u2") == {5: "down"}


class TestBookmarks:
    """Test cases for bookmark bookkeeping."""

    def test_newest_first(self, ledger):
        ledger.add_bookmark("u1", _saved(1, "2025-01-01T00:00:00+00:00"))
        ledger.add_bookmark("u1", _saved(2, "2025-03-01T00:00:00+00:00"))
        ledger.add_bookmark("u1", _saved(3, "2025-02-01T00:00:00Z"))

        assert [post.id for post in ledger.get_bookmarks("u1")] == [2, 3, 1]

    def test_remove(self, ledger):
        ledger.add_bookmark("u1", _saved(1, "2025-01-01T00:00:00+00:00"))
        ledger.bookmarks_dirty = False

        assert ledger.remove_bookmark("u1", 1) is True
        assert ledger.bookmarks_dirty
        assert not ledger.is_bookmarked("u1", 1)
        assert ledger.remove_bookmark("u1", 1) is False

    def test_stats(self, ledger):
        ledger.set_vote("u1", 1, "up")
        ledger.set_vote("u1", 2, "down")
        ledger.add_bookmark("u2", _saved(1, "2025-01-01T00:00:00+00:00"))

        assert ledger.stats() == {"users": 2, "total_votes": 2, "total_bookmarks": 1}


class TestPersistence:
    """Test cases for loading and flushing."""

    @pytest.mark.asyncio
    async def test_flush_and_reload_round_trip(self, ledger, tmp_path):
        ledger.set_vote("u1", 5, "up")
        ledger.add_bookmark("u1", _saved(7, "2025-01-01T00:00:00+00:00"))

        await ledger.flush()

        assert not ledger.votes_dirty
        assert not ledger.bookmarks_dirty
        on_disk = json.loads((tmp_path / VOTES_FILENAME).read_text())
        assert on_disk == {"u1": {"5": "up"}}
        bookmarks = json.loads((tmp_path / BOOKMARKS_FILENAME).read_text())
        assert bookmarks["u1"]["7"]["savedAt"] == "2025-01-01T00:00:00+00:00"
        assert bookmarks["u1"]["7"]["commentCount"] == 0

        reloaded = DirtyLedger(storage_dir=str(tmp_path))
        reloaded.load()
        assert reloaded.get_votes("u1") == {5: "up"}
        assert [post.id for post in reloaded.get_bookmarks("u1")] == [7]

    @pytest.mark.asyncio
    async def test_clean_flush_writes_nothing(self, ledger, tmp_path):
        await ledger.flush()

        assert not (tmp_path / VOTES_FILENAME).exists()
        assert not (tmp_path / BOOKMARKS_FILENAME).exists()

    def test_corrupt_file_resets_only_that_structure(self, tmp_path):
        (tmp_path / VOTES_FILENAME).write_text("{not json")
        (tmp_path / BOOKMARKS_FILENAME).write_text(json.dumps({
            "u1": {"7": _saved(7, "2025-01-01T00:00:00+00:00").model_dump(by_alias=True)}
        }))

        ledger = DirtyLedger(storage_dir=str(tmp_path))
        ledger.load()

        assert ledger.get_votes("u1") == {}
        assert ledger.is_bookmarked("u1", 7)

    def test_missing_files_start_empty(self, ledger):
        ledger.load()
        assert ledger.stats() == {"users": 0, "total_votes": 0, "total_bookmarks": 0}

    @pytest.mark.asyncio
    async def test_failed_write_stays_dirty(self, ledger):
        ledger.set_vote("u1", 5, "up")

        with patch.object(DirtyLedger, "_write_json", side_effect=OSError("disk full")):
            await ledger.flush()

        assert ledger.votes_dirty

        await ledger.flush()
        assert not ledger.votes_dirty

    def test_stale_snapshot_never_overwrites_newer_one(self, ledger, tmp_path):
        path = tmp_path / VOTES_FILENAME
        ledger._write_json(path, {"u1": {"5": "down"}}, generation=2)
        ledger._write_json(path, {"u1": {"5": "up"}}, generation=1)

        assert json.loads(path.read_text()) == {"u1": {"5": "down"}}

    def test_flush_sync(self, ledger, tmp_path):
        ledger.set_vote("u1", 5, "down")

        ledger.flush_sync()

        assert json.loads((tmp_path / VOTES_FILENAME).read_text()) == {"u1": {"5": "down"}}


class TestLifecycle:
    """Test cases for start/stop and signal handling."""

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_changes(self, ledger, tmp_path):
        await ledger.start()
        ledger.set_vote("u1", 9, "up")

        await ledger.stop()

        assert json.loads((tmp_path / VOTES_FILENAME).read_text()) == {"u1": {"9": "up"}}

    def test_signal_handler_flushes_then_chains(self, ledger, tmp_path):
        previous = MagicMock()
        ledger._previous_handlers[signal.SIGTERM] = previous
        ledger.set_vote("u1", 3, "up")

        ledger._handle_signal(signal.SIGTERM, None)

        assert json.loads((tmp_path / VOTES_FILENAME).read_text()) == {"u1": {"3": "up"}}
        previous.assert_called_once_with(signal.SIGTERM, None)

    def test_repeated_signal_during_flush_skips_nested_flush(self, ledger):
        previous = MagicMock()
        ledger._previous_handlers[signal.SIGTERM] = previous

        def flush_interrupted_by_signal(force=False):
            ledger._handle_signal(signal.SIGTERM, None)

        with patch.object(ledger, "flush_sync", side_effect=flush_interrupted_by_signal) as flush_sync:
            ledger._handle_signal(signal.SIGTERM, None)

        assert flush_sync.call_count == 1
        assert previous.call_count == 2
        assert ledger._in_signal_flush is False

    def test_flush_gives_up_when_writer_lock_is_held(self, ledger, tmp_path):
        ledger.write_lock_timeout = 0.05
        ledger.set_vote("u1", 3, "up")

        ledger._write_lock.acquire()
        try:
            ledger.flush_sync(force=True)
        finally:
            ledger._write_lock.release()

        assert not (tmp_path / VOTES_FILENAME).exists()
        assert ledger.votes_dirty is True

    def test_install_and_uninstall_restore_previous_handlers(self, ledger):
        original = signal.getsignal(signal.SIGUSR1)
        try:
            ledger.install_signal_handlers(signals=(signal.SIGUSR1,))
            assert signal.getsignal(signal.SIGUSR1) == ledger._handle_signal

            ledger.uninstall_signal_handlers()
            assert signal.getsignal(signal.SIGUSR1) == original
        finally:
            signal.signal(signal.SIGUSR1, original)

    @pytest.mark.asyncio
    async def test_lock_for_is_per_key(self, ledger):
        assert ledger.lock_for("u1", 1) is ledger.lock_for("u1", 1)
        assert ledger.lock_for("u1", 1) is not ledger.lock_for("u1", 2)
