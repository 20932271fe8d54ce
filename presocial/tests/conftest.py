import os
import sys

import pytest

# Add project root to path so the presocial package is importable without installation
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
sys.path.insert(0, project_root)

from dotenv import load_dotenv

# Load test environment variables from .env.test in the project root
dotenv_path = os.path.join(project_root, '.env.test')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)

from presocial.models.dtos import SavedPostData


class FakeClock:
    """Manually advanced time source, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def post_view():
    """A Lemmy ``post_view`` payload."""
    return {
        "post": {
            "id": 101,
            "name": "Self-hosting search engines",
            "ap_id": "https://lemmy.world/post/101",
            "body": "Has anyone tried running their own search node?",
            "published": "2025-01-10T12:00:00Z",
            "thumbnail_url": None,
            "nsfw": False,
        },
        "counts": {"score": 42, "upvotes": 45, "downvotes": 3, "comments": 7},
        "community": {"id": 9, "name": "selfhosted", "icon": None, "nsfw": False},
        "creator": {"name": "alice"},
    }


@pytest.fixture
def comment_view():
    """Factory for Lemmy ``comment_view`` payloads."""
    def _make(comment_id: int, path: str, score: int = 0, author: str = "bob"):
        return {
            "comment": {
                "id": comment_id,
                "content": f"comment {comment_id}",
                "path": path,
                "published": "2025-01-10T13:00:00Z",
            },
            "counts": {"score": score},
            "creator": {"name": author},
        }
    return _make


@pytest.fixture
def community_view():
    return {
        "community": {
            "id": 9,
            "name": "selfhosted",
            "title": "Self Hosted",
            "description": "Host it yourself",
            "actor_id": "https://lemmy.world/c/selfhosted",
            "nsfw": False,
        },
        "counts": {"subscribers": 1200, "posts": 340},
    }


@pytest.fixture
def saved_post_data():
    """Factory for bookmark payloads."""
    def _make(post_id: int = 101, title: str = "Self-hosting search engines"):
        return SavedPostData(
            id=post_id,
            title=title,
            url=f"https://lemmy.world/post/{post_id}",
            score=42,
            comment_count=7,
            community="selfhosted",
            author="alice",
            timestamp="2025-01-10T12:00:00Z",
        )
    return _make
