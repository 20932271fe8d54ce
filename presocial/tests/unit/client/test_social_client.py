"""
Unit tests for the PreSocial API client.
"""

import json

import httpx
import pytest

from presocial.client.social_client import APIError, SocialClient


def _client(handler, token=None) -> SocialClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SocialClient(base_url="https://social.test/api/social", token=token, client=http)


class TestSocialClient:
    """Test cases for SocialClient."""

    @pytest.mark.asyncio
    async def test_vote_sends_camel_case_body_and_token(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True, "postId": 5, "vote": "up", "previousVote": None, "scoreChange": 1,
            })

        client = _client(handler, token="abc")
        response = await client.vote(5, "up")

        assert seen == {"path": "/api/social/vote", "auth": "Bearer abc", "body": {"postId": 5, "vote": "up"}}
        assert response.score_change == 1
        assert response.previous_vote is None

    @pytest.mark.asyncio
    async def test_get_votes_parses_string_keys(self):
        client = _client(lambda request: httpx.Response(200, json={"votes": {"5": "up", "9": "down"}}))

        assert await client.get_votes() == {5: "up", 9: "down"}

    @pytest.mark.asyncio
    async def test_toggle_bookmark_includes_post_data(self, saved_post_data):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "postId": 101, "saved": True})

        client = _client(handler, token="abc")
        response = await client.toggle_bookmark(101, saved_post_data(101))

        assert response.saved is True
        assert seen["postId"] == 101
        assert seen["post"]["commentCount"] == 7
        assert "thumbnail" not in seen["post"]

    @pytest.mark.asyncio
    async def test_error_message_from_body(self):
        client = _client(lambda request: httpx.Response(401, json={"error": "Authentication required"}))

        with pytest.raises(APIError) as exc_info:
            await client.get_bookmarks()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Authentication required"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = _client(handler)

        with pytest.raises(APIError) as exc_info:
            await client.get_trending()

        assert exc_info.value.message == "Network error"
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_search_drops_empty_params(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={
                "query": "rust",
                "posts": [],
                "communities": [],
                "meta": {"totalResults": 0, "cached": False, "processingTime": 3},
            })

        client = _client(handler)
        response = await client.search("rust")

        assert "community" not in seen
        assert seen["q"] == "rust"
        assert response.meta.processing_time == 3

    @pytest.mark.asyncio
    async def test_get_comment_tree(self):
        def comment(comment_id, parent_id, score, depth):
            return {
                "id": comment_id, "content": "x", "score": score, "author": "bob",
                "timestamp": "2025-01-10T13:00:00Z", "parentId": parent_id, "depth": depth,
            }

        def handler(request):
            return httpx.Response(200, json={
                "post": {
                    "id": 1, "title": "t", "url": "u", "score": 1, "community": "c", "communityId": 2,
                    "author": "a", "timestamp": "2025-01-10T12:00:00Z",
                },
                "comments": [comment(11, 10, 1, 2), comment(10, None, 2, 1), comment(12, 11, 0, 3)],
                "community": {"id": 2, "name": "c", "title": "c"},
            })

        client = _client(handler)
        tree = await client.get_comment_tree(1, max_depth=1)

        assert [node.id for node in tree] == [10]
        assert [node.id for node in tree[0].replies] == [11]
        assert tree[0].replies[0].replies == []
