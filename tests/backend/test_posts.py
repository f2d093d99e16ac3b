"""
Post Tests for Crewboard.

Tests for:
- Publishing posts and comments
- Owner-only deletion and cascades
- Like, repost and bookmark toggles
- Home feed and user timelines
"""

import pytest
from sqlalchemy import func, select

from crewboard.core.exceptions import ForbiddenError, NotFoundError, ValidationFailedError
from crewboard.models.post import Like, Post, SavedPost
from crewboard.services.post_service import PostService
from crewboard.services.user_service import UserService


async def _count(session, model) -> int:
    result = await session.execute(select(func.count(model.id)))
    return result.scalar()


# ============== Publishing Tests ==============

class TestCreatePost:
    """Tests for publishing posts."""

    @pytest.mark.asyncio
    async def test_text_post(self, session, make_user):
        await make_user("alice")

        post = await PostService(session).create_post("user_alice", desc="  Clutch 1v3  ")

        assert post["desc"] == "Clutch 1v3"
        assert post["user"]["username"] == "alice"
        assert post["likes_count"] == 0
        assert post["comments_count"] == 0
        assert post["is_liked"] is False
        assert post["re_post"] is None
        assert post["is_sensitive"] is False

    @pytest.mark.asyncio
    async def test_media_only_post(self, session, make_user):
        await make_user("alice")

        post = await PostService(session).create_post(
            "user_alice", img="/posts/ace.png", img_height=720, is_sensitive=True
        )

        assert post["desc"] is None
        assert post["img"] == "/posts/ace.png"
        assert post["img_height"] == 720
        assert post["is_sensitive"] is True

    @pytest.mark.asyncio
    async def test_empty_post_is_rejected(self, session, make_user):
        await make_user("alice")

        with pytest.raises(ValidationFailedError) as exc_info:
            await PostService(session).create_post("user_alice", desc="   ")

        assert exc_info.value.message == "Post cannot be empty"

    @pytest.mark.asyncio
    async def test_long_post_is_rejected(self, session, make_user):
        await make_user("alice")

        with pytest.raises(ValidationFailedError) as exc_info:
            await PostService(session).create_post("user_alice", desc="x" * 141)

        assert exc_info.value.message == "Post must be at most 140 characters"
        assert await _count(session, Post) == 0


class TestComments:
    @pytest.mark.asyncio
    async def test_comment_is_listed_under_its_post(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Who is up for scrims?")

        comment = await service.add_comment("user_bob", post["id"], "me")
        detail = await service.get_post(post["id"], viewer_id="user_alice")

        assert comment["parent_post_id"] == post["id"]
        assert detail["comments_count"] == 1
        assert [c["desc"] for c in detail["comments"]] == ["me"]
        assert detail["comments"][0]["user"]["username"] == "bob"

    @pytest.mark.asyncio
    async def test_comments_stay_out_of_the_feed(self, session, make_user):
        await make_user("alice")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Scrims tonight")
        await service.add_comment("user_alice", post["id"], "8pm")

        posts, _ = await service.get_feed("user_alice")

        assert [p["id"] for p in posts] == [post["id"]]

    @pytest.mark.asyncio
    async def test_empty_comment_is_rejected(self, session, make_user):
        await make_user("alice")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Scrims tonight")

        with pytest.raises(ValidationFailedError) as exc_info:
            await service.add_comment("user_alice", post["id"], "  ")

        assert exc_info.value.message == "Post text is required"

    @pytest.mark.asyncio
    async def test_comment_on_missing_post(self, session, make_user):
        await make_user("alice")

        with pytest.raises(NotFoundError):
            await PostService(session).add_comment("user_alice", 999, "hello?")


# ============== Deletion Tests ==============

class TestDeletePost:
    @pytest.mark.asyncio
    async def test_only_the_author_can_delete(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Mine")

        with pytest.raises(ForbiddenError):
            await service.delete_post("user_bob", post["id"])

        assert (await service.get_post(post["id"]))["desc"] == "Mine"

    @pytest.mark.asyncio
    async def test_delete_cascades_to_interactions(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Delete me")
        await service.add_comment("user_bob", post["id"], "nice")
        await service.toggle_like("user_bob", post["id"])
        await service.toggle_repost("user_bob", post["id"])
        await service.toggle_save("user_bob", post["id"])

        await service.delete_post("user_alice", post["id"])

        with pytest.raises(NotFoundError):
            await service.get_post(post["id"])
        assert await _count(session, Post) == 0
        assert await _count(session, Like) == 0
        assert await _count(session, SavedPost) == 0

    @pytest.mark.asyncio
    async def test_delete_missing_post(self, session, make_user):
        await make_user("alice")

        with pytest.raises(NotFoundError) as exc_info:
            await PostService(session).delete_post("user_alice", 999)

        assert exc_info.value.message == "Post not found"


# ============== Interaction Tests ==============

class TestInteractions:
    @pytest.mark.asyncio
    async def test_like_toggle(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="GG")

        assert await service.toggle_like("user_bob", post["id"]) is True
        detail = await service.get_post(post["id"], viewer_id="user_bob")
        assert detail["likes_count"] == 1
        assert detail["is_liked"] is True

        assert await service.toggle_like("user_bob", post["id"]) is False
        detail = await service.get_post(post["id"], viewer_id="user_bob")
        assert detail["likes_count"] == 0
        assert detail["is_liked"] is False

    @pytest.mark.asyncio
    async def test_repost_embeds_the_original(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        post = await service.create_post("user_alice", desc="Tournament sign-ups open")

        assert await service.toggle_repost("user_bob", post["id"]) is True
        posts, _ = await service.get_user_posts("bob", viewer_id="user_bob")

        assert len(posts) == 1
        assert posts[0]["re_post_id"] == post["id"]
        assert posts[0]["re_post"]["desc"] == "Tournament sign-ups open"
        assert posts[0]["re_post"]["user"]["username"] == "alice"
        assert posts[0]["re_post"]["reposts_count"] == 1
        assert posts[0]["re_post"]["is_reposted"] is True

        assert await service.toggle_repost("user_bob", post["id"]) is False
        posts, _ = await service.get_user_posts("bob")
        assert posts == []

    @pytest.mark.asyncio
    async def test_saved_posts(self, session, make_user):
        await make_user("alice")
        await make_user("bob")
        service = PostService(session)
        first = await service.create_post("user_alice", desc="First")
        second = await service.create_post("user_alice", desc="Second")

        await service.toggle_save("user_bob", first["id"])
        await service.toggle_save("user_bob", second["id"])
        assert await service.toggle_save("user_bob", first["id"]) is False

        saved = await service.get_saved_posts("user_bob")

        assert [p["id"] for p in saved] == [second["id"]]
        assert saved[0]["is_saved"] is True

    @pytest.mark.parametrize("action", ["toggle_like", "toggle_repost", "toggle_save"])
    @pytest.mark.asyncio
    async def test_missing_post(self, session, make_user, action):
        await make_user("alice")

        with pytest.raises(NotFoundError):
            await getattr(PostService(session), action)("user_alice", 999)


# ============== Feed Tests ==============

class TestFeed:
    @pytest.mark.asyncio
    async def test_feed_shows_self_and_followed_users(self, session, make_user):
        for username in ("alice", "bob", "carol"):
            await make_user(username)
        await UserService(session).toggle_follow("user_alice", "user_bob")
        service = PostService(session)

        own = await service.create_post("user_alice", desc="mine")
        followed = await service.create_post("user_bob", desc="followed")
        await service.create_post("user_carol", desc="stranger")

        posts, next_cursor = await service.get_feed("user_alice")

        assert [p["id"] for p in posts] == [followed["id"], own["id"]]
        assert next_cursor is None

    @pytest.mark.asyncio
    async def test_pagination_walks_newest_first(self, session, make_user):
        await make_user("alice")
        service = PostService(session)
        created = [await service.create_post("user_alice", desc=f"post {i}") for i in range(3)]

        first_page, cursor = await service.get_feed("user_alice", limit=2)
        second_page, last_cursor = await service.get_feed("user_alice", cursor=cursor, limit=2)

        assert [p["id"] for p in first_page] == [created[2]["id"], created[1]["id"]]
        assert [p["id"] for p in second_page] == [created[0]["id"]]
        assert last_cursor is None

    @pytest.mark.parametrize("limit", [0, 51])
    @pytest.mark.asyncio
    async def test_invalid_limit(self, session, make_user, limit):
        await make_user("alice")

        with pytest.raises(ValidationFailedError):
            await PostService(session).get_feed("user_alice", limit=limit)

    @pytest.mark.asyncio
    async def test_invalid_cursor(self, session, make_user):
        await make_user("alice")

        with pytest.raises(ValidationFailedError):
            await PostService(session).get_feed("user_alice", cursor="not-a-number")

    @pytest.mark.asyncio
    async def test_timeline_of_unknown_user(self, session):
        with pytest.raises(NotFoundError):
            await PostService(session).get_user_posts("ghost")
