"""
Post Service for Crewboard.

Short posts with optional media, comments, reposts, likes and bookmarks, plus
the home feed (the viewer and everyone they follow) and per-user timelines.

Media files are uploaded to the CDN by the client; posts only store the
resulting paths.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from crewboard.core.exceptions import ForbiddenError, NotFoundError, ValidationFailedError
from crewboard.models.base import as_utc
from crewboard.models.post import MAX_POST_LENGTH, Like, Post, SavedPost
from crewboard.models.social import Follow
from crewboard.models.user import User
from crewboard.services.user_service import user_summary

logger = logging.getLogger(__name__)


@dataclass
class Engagement:
    """Counters and viewer flags for a batch of posts."""

    likes: dict[int, int] = field(default_factory=dict)
    reposts: dict[int, int] = field(default_factory=dict)
    comments: dict[int, int] = field(default_factory=dict)
    liked: set[int] = field(default_factory=set)
    reposted: set[int] = field(default_factory=set)
    saved: set[int] = field(default_factory=set)


def serialize_post(
    post: Post,
    engagement: Engagement,
    include_re_post: bool = True,
) -> dict[str, Any]:
    """Post as returned by the API; a repost embeds the original post."""
    created_at = as_utc(post.created_at)
    data = {
        "id": post.id,
        "user": user_summary(post.user),
        "desc": post.desc,
        "img": post.img,
        "img_height": post.img_height,
        "video": post.video,
        "is_sensitive": post.is_sensitive,
        "parent_post_id": post.parent_post_id,
        "re_post_id": post.re_post_id,
        "likes_count": engagement.likes.get(post.id, 0),
        "reposts_count": engagement.reposts.get(post.id, 0),
        "comments_count": engagement.comments.get(post.id, 0),
        "is_liked": post.id in engagement.liked,
        "is_reposted": post.id in engagement.reposted,
        "is_saved": post.id in engagement.saved,
        "created_at": created_at.isoformat() if created_at else None,
    }
    if include_re_post:
        data["re_post"] = (
            serialize_post(post.re_post, engagement, include_re_post=False)
            if post.re_post
            else None
        )
    return data


def clean_desc(desc: str | None, required: bool) -> str | None:
    desc = (desc or "").strip()
    if len(desc) > MAX_POST_LENGTH:
        raise ValidationFailedError(f"Post must be at most {MAX_POST_LENGTH} characters")
    if required and not desc:
        raise ValidationFailedError("Post text is required")
    return desc or None


class PostService:
    """Posts, interactions and feeds."""

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 50

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Writes ====================

    async def create_post(
        self,
        user_id: str,
        desc: str | None = None,
        is_sensitive: bool = False,
        img: str | None = None,
        img_height: int | None = None,
        video: str | None = None,
    ) -> dict[str, Any]:
        """
        Publish a top-level post.

        Raises:
            ValidationFailedError: Text too long, or neither text nor media
        """
        desc = clean_desc(desc, required=False)
        if not (desc or img or video):
            raise ValidationFailedError("Post cannot be empty")
        if img_height is not None and img_height < 0:
            raise ValidationFailedError("Invalid image height")

        post = Post(
            user_id=user_id,
            desc=desc,
            is_sensitive=is_sensitive,
            img=img,
            img_height=img_height if img else None,
            video=video,
        )
        self.session.add(post)
        await self.session.commit()
        logger.info(f"User {user_id} published post {post.id}")
        return await self.get_post(post.id, user_id, include_comments=False)

    async def add_comment(self, user_id: str, post_id: int, desc: str | None) -> dict[str, Any]:
        """
        Reply to a post.

        Raises:
            ValidationFailedError: Empty or too long
            NotFoundError: The post does not exist
        """
        desc = clean_desc(desc, required=True)
        await self._get_post_or_404(post_id)

        comment = Post(user_id=user_id, desc=desc, parent_post_id=post_id)
        self.session.add(comment)
        await self.session.commit()
        logger.info(f"User {user_id} commented on post {post_id}")
        return await self.get_post(comment.id, user_id, include_comments=False)

    async def delete_post(self, user_id: str, post_id: int) -> None:
        """
        Delete a post together with its comments, reposts, likes and bookmarks.

        Raises:
            NotFoundError: The post does not exist
            ForbiddenError: The caller is not the author
        """
        post = await self._get_post_or_404(post_id)
        if post.user_id != user_id:
            logger.warning(f"User {user_id} tried to delete post {post_id} owned by {post.user_id}")
            raise ForbiddenError("You can only delete your own posts")

        await self.session.delete(post)
        await self.session.commit()
        logger.info(f"Post {post_id} deleted by {user_id}")

    async def toggle_like(self, user_id: str, post_id: int) -> bool:
        """Like or unlike a post. Returns True if the post is now liked."""
        await self._get_post_or_404(post_id)
        return await self._toggle(
            select(Like.id).where(Like.user_id == user_id, Like.post_id == post_id),
            Like,
            Like(user_id=user_id, post_id=post_id),
        )

    async def toggle_repost(self, user_id: str, post_id: int) -> bool:
        """Repost or undo a repost. Returns True if the post is now reposted."""
        await self._get_post_or_404(post_id)
        return await self._toggle(
            select(Post.id).where(Post.user_id == user_id, Post.re_post_id == post_id),
            Post,
            Post(user_id=user_id, re_post_id=post_id),
        )

    async def toggle_save(self, user_id: str, post_id: int) -> bool:
        """Bookmark or un-bookmark a post. Returns True if the post is now saved."""
        await self._get_post_or_404(post_id)
        return await self._toggle(
            select(SavedPost.id).where(SavedPost.user_id == user_id, SavedPost.post_id == post_id),
            SavedPost,
            SavedPost(user_id=user_id, post_id=post_id),
        )

    async def _toggle(self, existing_query, model, row) -> bool:
        existing = (await self.session.execute(existing_query)).scalar_one_or_none()
        if existing is not None:
            await self.session.execute(delete(model).where(model.id == existing))
            await self.session.commit()
            logger.info(f"Removed {model.__tablename__} row {existing}")
            return False

        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request created the same row first
            await self.session.rollback()
            logger.info(f"Duplicate {model.__tablename__} row for user {row.user_id} ignored")
        return True

    # ==================== Queries ====================

    async def get_post(
        self,
        post_id: int,
        viewer_id: str | None = None,
        include_comments: bool = True,
    ) -> dict[str, Any]:
        """
        A single post, with its comments newest first.

        Raises:
            NotFoundError: The post does not exist
        """
        result = await self.session.execute(self._post_query().where(Post.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundError("Post not found")

        if not include_comments:
            return (await self._serialize([post], viewer_id))[0]

        result = await self.session.execute(
            self._post_query().where(Post.parent_post_id == post_id).order_by(Post.id.desc())
        )
        comments = list(result.scalars().all())
        serialized = await self._serialize([post, *comments], viewer_id)
        return {**serialized[0], "comments": serialized[1:]}

    async def get_feed(
        self,
        viewer_id: str,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Top-level posts by the viewer and the users they follow, newest first."""
        followed = select(Follow.following_id).where(Follow.follower_id == viewer_id)
        query = self._post_query().where(
            Post.parent_post_id.is_(None),
            or_(Post.user_id == viewer_id, Post.user_id.in_(followed)),
        )
        return await self._page(query, viewer_id, cursor, limit)

    async def get_user_posts(
        self,
        username: str,
        viewer_id: str | None = None,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """
        Top-level posts and reposts by one user, newest first.

        Raises:
            NotFoundError: No user has this username
        """
        result = await self.session.execute(select(User.id).where(User.username == username))
        user_id = result.scalar_one_or_none()
        if user_id is None:
            raise NotFoundError("User not found")

        query = self._post_query().where(Post.user_id == user_id, Post.parent_post_id.is_(None))
        return await self._page(query, viewer_id, cursor, limit)

    async def get_saved_posts(self, user_id: str) -> list[dict[str, Any]]:
        """The caller's bookmarks, most recently saved first."""
        result = await self.session.execute(
            self._post_query()
            .join(SavedPost, SavedPost.post_id == Post.id)
            .where(SavedPost.user_id == user_id)
            .order_by(SavedPost.created_at.desc(), SavedPost.id.desc())
        )
        return await self._serialize(list(result.scalars().all()), user_id)

    # ==================== Helpers ====================

    def _post_query(self):
        return (
            select(Post)
            .options(
                selectinload(Post.user),
                selectinload(Post.re_post).selectinload(Post.user),
            )
            .execution_options(populate_existing=True)
        )

    async def _get_post_or_404(self, post_id: int) -> Post:
        result = await self.session.execute(select(Post).where(Post.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundError("Post not found")
        return post

    async def _page(
        self,
        query,
        viewer_id: str | None,
        cursor: str | None,
        limit: int | None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        limit = self.DEFAULT_PAGE_SIZE if limit is None else limit
        if limit <= 0 or limit > self.MAX_PAGE_SIZE:
            raise ValidationFailedError("Invalid limit parameter")

        if cursor:
            try:
                cursor_id = int(cursor)
            except ValueError as exc:
                raise ValidationFailedError("Invalid cursor") from exc
            query = query.where(Post.id < cursor_id)

        result = await self.session.execute(query.order_by(Post.id.desc()).limit(limit + 1))
        posts = list(result.scalars().all())

        next_cursor = None
        if len(posts) > limit:
            posts = posts[:limit]
            next_cursor = str(posts[-1].id)
        return await self._serialize(posts, viewer_id), next_cursor

    async def _serialize(self, posts: list[Post], viewer_id: str | None) -> list[dict[str, Any]]:
        post_ids = {post.id for post in posts}
        post_ids.update(post.re_post_id for post in posts if post.re_post_id is not None)
        engagement = await self._engagement(post_ids, viewer_id)
        return [serialize_post(post, engagement) for post in posts]

    async def _engagement(self, post_ids: set[int], viewer_id: str | None) -> Engagement:
        engagement = Engagement()
        if not post_ids:
            return engagement

        likes = await self.session.execute(
            select(Like.post_id, func.count(Like.id))
            .where(Like.post_id.in_(post_ids))
            .group_by(Like.post_id)
        )
        engagement.likes = dict(likes.all())

        reposts = await self.session.execute(
            select(Post.re_post_id, func.count(Post.id))
            .where(Post.re_post_id.in_(post_ids))
            .group_by(Post.re_post_id)
        )
        engagement.reposts = dict(reposts.all())

        comments = await self.session.execute(
            select(Post.parent_post_id, func.count(Post.id))
            .where(Post.parent_post_id.in_(post_ids))
            .group_by(Post.parent_post_id)
        )
        engagement.comments = dict(comments.all())

        if viewer_id:
            liked = await self.session.execute(
                select(Like.post_id).where(Like.user_id == viewer_id, Like.post_id.in_(post_ids))
            )
            engagement.liked = set(liked.scalars().all())

            reposted = await self.session.execute(
                select(Post.re_post_id).where(
                    Post.user_id == viewer_id, Post.re_post_id.in_(post_ids)
                )
            )
            engagement.reposted = set(reposted.scalars().all())

            saved = await self.session.execute(
                select(SavedPost.post_id).where(
                    SavedPost.user_id == viewer_id, SavedPost.post_id.in_(post_ids)
                )
            )
            engagement.saved = set(saved.scalars().all())

        return engagement
