"""
Post API Endpoints for Crewboard.

Publish, read and delete posts; comment, like, repost and bookmark; read the
home feed.
"""

from fastapi import APIRouter, Query, Request, Response, status
from pydantic import BaseModel, Field

from crewboard.api.teams import UserSummary
from crewboard.core.dependencies import CurrentUser, DbSession, OptionalUser
from crewboard.middleware.rate_limit import rate_limit_posts
from crewboard.services.post_service import PostService

router = APIRouter(prefix="/posts", tags=["Posts"])


# ============== Request/Response Models ==============


class PostCreateRequest(BaseModel):
    """New post. Media is uploaded to the CDN first; only its paths are sent."""

    desc: str | None = Field(None, description="Up to 140 characters")
    is_sensitive: bool = False
    img: str | None = None
    img_height: int | None = None
    video: str | None = None


class CommentCreateRequest(BaseModel):
    desc: str = Field(..., description="1-140 characters")


class PostResponse(BaseModel):
    id: int
    user: UserSummary
    desc: str | None
    img: str | None
    img_height: int | None
    video: str | None
    is_sensitive: bool
    parent_post_id: int | None
    re_post_id: int | None
    re_post: "PostResponse | None" = None
    likes_count: int
    reposts_count: int
    comments_count: int
    is_liked: bool
    is_reposted: bool
    is_saved: bool
    created_at: str | None


class PostDetailResponse(PostResponse):
    comments: list[PostResponse] = Field(default_factory=list)


class FeedResponse(BaseModel):
    posts: list[PostResponse]
    next_cursor: str | None


class LikeResponse(BaseModel):
    liked: bool


class RepostResponse(BaseModel):
    reposted: bool


class SaveResponse(BaseModel):
    saved: bool


# ============== Endpoints ==============


@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
@rate_limit_posts()
async def create_post(
    request: Request,
    data: PostCreateRequest,
    session: DbSession,
    user: CurrentUser,
) -> PostResponse:
    post = await PostService(session).create_post(
        user.id,
        desc=data.desc,
        is_sensitive=data.is_sensitive,
        img=data.img,
        img_height=data.img_height,
        video=data.video,
    )
    return PostResponse(**post)


@router.get("/feed", response_model=FeedResponse)
async def get_feed(
    session: DbSession,
    user: CurrentUser,
    cursor: str | None = Query(None, description="next_cursor from the previous page"),
    limit: int | None = Query(None, description="Page size, 1-50"),
) -> FeedResponse:
    """Top-level posts by the caller and everyone they follow, newest first."""
    posts, next_cursor = await PostService(session).get_feed(user.id, cursor, limit)
    return FeedResponse(posts=[PostResponse(**post) for post in posts], next_cursor=next_cursor)


@router.get("/{post_id}", response_model=PostDetailResponse)
async def get_post(post_id: int, session: DbSession, viewer: OptionalUser) -> PostDetailResponse:
    post = await PostService(session).get_post(post_id, viewer.id if viewer else None)
    return PostDetailResponse(**post)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: int, session: DbSession, user: CurrentUser) -> Response:
    await PostService(session).delete_post(user.id, post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{post_id}/comments",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
)
@rate_limit_posts()
async def add_comment(
    request: Request,
    post_id: int,
    data: CommentCreateRequest,
    session: DbSession,
    user: CurrentUser,
) -> PostResponse:
    comment = await PostService(session).add_comment(user.id, post_id, data.desc)
    return PostResponse(**comment)


@router.post("/{post_id}/like", response_model=LikeResponse)
async def toggle_like(post_id: int, session: DbSession, user: CurrentUser) -> LikeResponse:
    liked = await PostService(session).toggle_like(user.id, post_id)
    return LikeResponse(liked=liked)


@router.post("/{post_id}/repost", response_model=RepostResponse)
async def toggle_repost(post_id: int, session: DbSession, user: CurrentUser) -> RepostResponse:
    reposted = await PostService(session).toggle_repost(user.id, post_id)
    return RepostResponse(reposted=reposted)


@router.post("/{post_id}/save", response_model=SaveResponse)
async def toggle_save(post_id: int, session: DbSession, user: CurrentUser) -> SaveResponse:
    saved = await PostService(session).toggle_save(user.id, post_id)
    return SaveResponse(saved=saved)
