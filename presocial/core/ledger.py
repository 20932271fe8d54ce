"""
Persistent per-user vote and bookmark storage.

Votes and bookmarks live in memory and are written to two JSON files in the
storage directory. Mutations only flip a dirty flag; a background task
rewrites each dirty file every few seconds, and termination signals trigger
one synchronous best-effort flush so that at most one flush interval of
changes can be lost.

This is not a database: it has no transactions, assumes a single owning
process, and can be swapped for a real datastore behind the same methods.
"""
import asyncio
import json
import logging
import os
import signal
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from presocial.models.dtos import SavedPost, Vote

logger = logging.getLogger(__name__)

VOTES_FILENAME = "votes.json"
BOOKMARKS_FILENAME = "bookmarks.json"

# Upper bound on waiting for another writer; a signal handler must never hang on it.
WRITE_LOCK_TIMEOUT = 5.0

_VALID_VOTES = ("up", "down")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_saved_at(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DirtyLedger:
    """
    In-memory vote/bookmark maps with dirty tracking and periodic flushing.

    Attributes:
        votes_dirty: True when the vote map has changes not yet on disk.
        bookmarks_dirty: True when the bookmark map has changes not yet on disk.
    """

    def __init__(self, storage_dir: str, flush_interval: float = 5.0):
        """
        Args:
            storage_dir: Directory holding ``votes.json`` and ``bookmarks.json``.
            flush_interval: Seconds between background flush checks.
        """
        self.storage_dir = Path(storage_dir)
        self.votes_path = self.storage_dir / VOTES_FILENAME
        self.bookmarks_path = self.storage_dir / BOOKMARKS_FILENAME
        self.flush_interval = flush_interval

        self._votes: Dict[str, Dict[int, Vote]] = {}
        self._bookmarks: Dict[str, Dict[int, SavedPost]] = {}
        self.votes_dirty = False
        self.bookmarks_dirty = False

        self._key_locks: Dict[Tuple[str, int], asyncio.Lock] = {}
        self._flush_task: Optional[asyncio.Task] = None
        self._previous_handlers: Dict[int, Any] = {}

        # Snapshots are numbered so that a slow background write can never
        # replace a newer file written by the shutdown flush.
        self._write_lock = threading.Lock()
        self.write_lock_timeout = WRITE_LOCK_TIMEOUT
        self._in_signal_flush = False
        self._generation = 0
        self._written_generation: Dict[Path, int] = {}

    @classmethod
    def from_settings(cls, settings) -> "DirtyLedger":
        return cls(
            storage_dir=settings.STORAGE_DIR,
            flush_interval=settings.STORAGE_FLUSH_INTERVAL_SECONDS,
        )

    # Votes

    def get_vote(self, user_id: str, post_id: int) -> Optional[Vote]:
        return self._votes.get(user_id, {}).get(post_id)

    def get_votes(self, user_id: str) -> Dict[int, Vote]:
        """Copy of every vote cast by ``user_id``."""
        return dict(self._votes.get(user_id, {}))

    def set_vote(self, user_id: str, post_id: int, vote: Optional[Vote]) -> Optional[Vote]:
        """
        Record ``vote`` for the post, or retract it when ``vote`` is None.

        A retracted vote is removed from the map entirely.

        Returns:
            The vote held before this call, if any.
        """
        if vote is not None and vote not in _VALID_VOTES:
            raise ValueError(f"Invalid vote {vote!r}")

        user_votes = self._votes.get(user_id, {})
        previous = user_votes.get(post_id)

        if vote is None:
            if previous is None:
                return None
            del user_votes[post_id]
            if not user_votes:
                self._votes.pop(user_id, None)
        else:
            if previous == vote:
                return previous
            self._votes.setdefault(user_id, {})[post_id] = vote

        self.votes_dirty = True
        return previous

    # Bookmarks

    def get_bookmarks(self, user_id: str) -> List[SavedPost]:
        """Bookmarked posts for ``user_id``, most recently saved first."""
        posts = list(self._bookmarks.get(user_id, {}).values())
        posts.sort(key=lambda post: _parse_saved_at(post.saved_at), reverse=True)
        return posts

    def is_bookmarked(self, user_id: str, post_id: int) -> bool:
        return post_id in self._bookmarks.get(user_id, {})

    def add_bookmark(self, user_id: str, post: SavedPost) -> None:
        self._bookmarks.setdefault(user_id, {})[post.id] = post
        self.bookmarks_dirty = True

    def remove_bookmark(self, user_id: str, post_id: int) -> bool:
        """
        Remove a bookmark.

        Returns:
            bool: True if the bookmark existed.
        """
        user_bookmarks = self._bookmarks.get(user_id)
        if not user_bookmarks or post_id not in user_bookmarks:
            return False
        del user_bookmarks[post_id]
        if not user_bookmarks:
            del self._bookmarks[user_id]
        self.bookmarks_dirty = True
        return True

    # Coordination

    def lock_for(self, user_id: str, post_id: int) -> asyncio.Lock:
        """Lock serialising read-modify-write sequences on one (user, post) entry."""
        key = (user_id, post_id)
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    def stats(self) -> Dict[str, int]:
        return {
            "users": len(set(self._votes) | set(self._bookmarks)),
            "total_votes": sum(len(votes) for votes in self._votes.values()),
            "total_bookmarks": sum(len(posts) for posts in self._bookmarks.values()),
        }

    # Serialisation

    def export_votes(self) -> Dict[str, Dict[str, Vote]]:
        """JSON-ready copy of the vote map (post ids as string keys)."""
        return {
            user_id: {str(post_id): vote for post_id, vote in votes.items()}
            for user_id, votes in self._votes.items()
        }

    def export_bookmarks(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """JSON-ready copy of the bookmark map (post ids as string keys)."""
        return {
            user_id: {str(post_id): post.model_dump(by_alias=True) for post_id, post in posts.items()}
            for user_id, posts in self._bookmarks.items()
        }

    def load(self) -> None:
        """
        Load both files from the storage directory.

        A missing file leaves that structure empty. A file that cannot be
        parsed resets only that structure to empty and logs a warning.
        """
        self._votes = self._load_votes()
        self._bookmarks = self._load_bookmarks()
        self.votes_dirty = False
        self.bookmarks_dirty = False
        stats = self.stats()
        logger.info(
            f"Storage loaded ({stats['users']} users, {stats['total_votes']} votes, "
            f"{stats['total_bookmarks']} bookmarks)"
        )

    def _load_votes(self) -> Dict[str, Dict[int, Vote]]:
        if not self.votes_path.exists():
            return {}
        try:
            raw = json.loads(self.votes_path.read_text(encoding="utf-8"))
            votes: Dict[str, Dict[int, Vote]] = {}
            for user_id, user_votes in raw.items():
                parsed = {}
                for post_id, vote in user_votes.items():
                    if vote not in _VALID_VOTES:
                        raise ValueError(f"Invalid vote {vote!r} for post {post_id}")
                    parsed[int(post_id)] = vote
                if parsed:
                    votes[str(user_id)] = parsed
            return votes
        except Exception as e:
            logger.warning(f"Failed to load votes from {self.votes_path}, starting empty: {e}")
            return {}

    def _load_bookmarks(self) -> Dict[str, Dict[int, SavedPost]]:
        if not self.bookmarks_path.exists():
            return {}
        try:
            raw = json.loads(self.bookmarks_path.read_text(encoding="utf-8"))
            bookmarks: Dict[str, Dict[int, SavedPost]] = {}
            for user_id, posts in raw.items():
                parsed = {int(post_id): SavedPost.model_validate(post) for post_id, post in posts.items()}
                if parsed:
                    bookmarks[str(user_id)] = parsed
            return bookmarks
        except Exception as e:
            logger.warning(f"Failed to load bookmarks from {self.bookmarks_path}, starting empty: {e}")
            return {}

    def _write_json(self, path: Path, payload: Dict[str, Any], generation: int) -> None:
        if not self._write_lock.acquire(timeout=self.write_lock_timeout):
            raise TimeoutError(f"Timed out waiting to write {path}")
        try:
            if generation <= self._written_generation.get(path, 0):
                return
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.storage_dir, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
            self._written_generation[path] = generation
        finally:
            self._write_lock.release()

    def _pending_writes(self, force: bool) -> List[Tuple[str, Path, Dict[str, Any], int]]:
        """Snapshot every map that needs writing and clear its dirty flag."""
        pending = []
        if force or self.votes_dirty:
            self._generation += 1
            pending.append(("votes", self.votes_path, self.export_votes(), self._generation))
            self.votes_dirty = False
        if force or self.bookmarks_dirty:
            self._generation += 1
            pending.append(("bookmarks", self.bookmarks_path, self.export_bookmarks(), self._generation))
            self.bookmarks_dirty = False
        return pending

    def _mark_dirty(self, name: str) -> None:
        if name == "votes":
            self.votes_dirty = True
        else:
            self.bookmarks_dirty = True

    async def flush(self, force: bool = False) -> None:
        """
        Write dirty maps to disk without blocking the event loop.

        A failed write re-marks its map dirty so the next tick retries.

        Args:
            force: Write both maps even if they are clean.
        """
        for name, path, payload, generation in self._pending_writes(force):
            try:
                await asyncio.to_thread(self._write_json, path, payload, generation)
                logger.debug(f"Saved {name} to {path}")
            except Exception as e:
                self._mark_dirty(name)
                logger.error(f"Failed to save {name} to {path}: {e}")

    def flush_sync(self, force: bool = False) -> None:
        """Blocking variant of :meth:`flush` for signal handlers and shutdown."""
        for name, path, payload, generation in self._pending_writes(force):
            try:
                self._write_json(path, payload, generation)
                logger.debug(f"Saved {name} to {path}")
            except Exception as e:
                self._mark_dirty(name)
                logger.error(f"Failed to save {name} to {path}: {e}")

    # Lifecycle

    async def _flush_loop(self) -> None:
        logger.info(f"Storage auto-save started. Interval: {self.flush_interval}s")
        try:
            while True:
                await asyncio.sleep(self.flush_interval)
                await self.flush()
        except asyncio.CancelledError:
            logger.info("Storage auto-save cancelled.")
            raise

    async def start(self) -> None:
        """Load persisted state and start the background flush task."""
        logger.info("Initializing persistent storage...")
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.load()
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def stop(self) -> None:
        """Stop the background task, restore signal handlers and flush what is dirty."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        self.uninstall_signal_handlers()
        await self.flush()
        logger.info("Persistent storage stopped")

    def install_signal_handlers(self, signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM)) -> None:
        """
        Flush synchronously on termination signals, then defer to the previous handler.

        Must be called from the main thread.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handlers can only be installed from the main thread; skipping")
            return
        for signum in signals:
            if signum in self._previous_handlers:
                continue
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

    def uninstall_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        # A repeated signal arriving mid-flush goes straight to the previous handler.
        if self._in_signal_flush:
            logger.warning("Shutdown flush already in progress; skipping")
        else:
            logger.info("Saving data before exit...")
            self._in_signal_flush = True
            try:
                self.flush_sync()
            except Exception as e:
                logger.error(f"Shutdown flush failed: {e}")
            finally:
                self._in_signal_flush = False

        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL or previous is None:
            signal.signal(signum, signal.SIG_DFL)
            signal.raise_signal(signum)
