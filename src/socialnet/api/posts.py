"""Post, like and comment API endpoints."""

import logging
from collections.abc import Sequence

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from socialnet.config import get_settings
from socialnet.database import get_db, insert_if_absent, utcnow
from socialnet.dependencies import OnboardedUser
from socialnet.models.post import Comment, Like, Post
from socialnet.models.user import User
from socialnet.schemas.post import (
    CommentCreate,
    CommentListResponse,
    CommentResponse,
    LikeResponse,
    PostListResponse,
    PostResponse,
)
from socialnet.schemas.user import UserSummary
from socialnet.services.base import NotFoundError
from socialnet.services.errors import ValidationError
from socialnet.services.realtime import Change, ChangeFeed, get_change_feed, row_to_dict
from socialnet.services.storage import (
    ObjectStorage,
    generate_image_path,
    get_storage,
    validate_image,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])

MAX_POST_LENGTH = 5000


def post_to_response(
    post: Post,
    author: User | None,
    likes_count: int = 0,
    comments_count: int = 0,
    has_liked: bool = False,
) -> PostResponse:
    """Convert a Post model to PostResponse schema.

    ``author`` is passed explicitly so a freshly inserted post needs no
    relationship load.
    """
    return PostResponse(
        id=post.id,
        user_id=post.user_id,
        content=post.content,
        image_url=post.image_url,
        created_at=post.created_at,
        updated_at=post.updated_at,
        user=UserSummary.model_validate(author) if author else None,
        likes_count=likes_count,
        comments_count=comments_count,
        has_liked=has_liked,
    )


async def build_post_responses(
    db: AsyncSession, posts: Sequence[Post], viewer_id: int | None
) -> list[PostResponse]:
    """Attach like/comment counts and the viewer's like state to posts."""
    if not posts:
        return []

    post_ids = [post.id for post in posts]

    likes_result = await db.execute(
        select(Like.post_id, func.count(Like.id))
        .where(Like.post_id.in_(post_ids))
        .group_by(Like.post_id)
    )
    likes_count = {post_id: count for post_id, count in likes_result.all()}

    comments_result = await db.execute(
        select(Comment.post_id, func.count(Comment.id))
        .where(Comment.post_id.in_(post_ids))
        .group_by(Comment.post_id)
    )
    comments_count = {post_id: count for post_id, count in comments_result.all()}

    liked: set[int] = set()
    if viewer_id is not None:
        liked_result = await db.execute(
            select(Like.post_id).where(Like.user_id == viewer_id, Like.post_id.in_(post_ids))
        )
        liked = set(liked_result.scalars().all())

    return [
        post_to_response(
            post,
            post.user,
            likes_count=likes_count.get(post.id, 0),
            comments_count=comments_count.get(post.id, 0),
            has_liked=post.id in liked,
        )
        for post in posts
    ]


async def fetch_posts(
    db: AsyncSession,
    viewer_id: int | None,
    author_id: int | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> list[PostResponse]:
    """Load posts newest first, optionally limited to one author."""
    page_size = page_size or get_settings().feed_page_size
    query = select(Post).options(selectinload(Post.user))
    if author_id is not None:
        query = query.where(Post.user_id == author_id)
    query = (
        query.order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return await build_post_responses(db, result.scalars().all(), viewer_id)


async def get_post_or_404(db: AsyncSession, post_id: int) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


async def count_likes(db: AsyncSession, post_id: int) -> int:
    result = await db.execute(select(func.count(Like.id)).where(Like.post_id == post_id))
    return result.scalar_one()


@router.get("", response_model=PostListResponse)
async def list_posts(
    current_user: OnboardedUser,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
) -> PostListResponse:
    """List the home feed, newest first.

    Requires authentication and a completed profile.
    """
    posts = await fetch_posts(db, current_user.id, page=page, page_size=page_size)
    return PostListResponse(results=posts)


@router.post("", response_model=PostResponse, status_code=201)
async def create_post(
    current_user: OnboardedUser,
    content: str = Form("", max_length=MAX_POST_LENGTH),
    image: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    feed: ChangeFeed = Depends(get_change_feed),
) -> PostResponse:
    """Create a post with optional image.

    Raises:
        ValidationError 400: If both content and image are missing, or the
            image is too large or not an image
    """
    content = content.strip()
    has_image = image is not None and bool(image.filename)
    if not content and not has_image:
        raise ValidationError("Please enter some content or add an image", field="content")

    stored = image_url = None
    if has_image:
        max_bytes = get_settings().max_image_bytes
        # One byte past the limit is enough to reject oversized uploads
        data = await image.read(max_bytes + 1)
        validate_image(data, image.content_type, max_bytes)
        path = generate_image_path(current_user.id, image.filename, image.content_type)
        stored = await storage.upload(path, data, image.content_type)
        image_url = storage.get_public_url(stored)

    now = utcnow()
    post = Post(
        user_id=current_user.id,
        content=content,
        image_url=image_url,
        created_at=now,
        updated_at=now,
    )
    db.add(post)
    try:
        await db.flush()
    except SQLAlchemyError:
        if stored is not None:
            await storage.delete(stored)
        raise
    await db.refresh(post)
    feed.stage(db, Change("posts", "INSERT", new=row_to_dict(post)))

    return post_to_response(post, current_user)


@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> Response:
    """Delete one of the current user's posts.

    Raises:
        NotFoundError 404: If the post does not exist or belongs to someone else
    """
    result = await db.execute(
        select(Post)
        .where(Post.id == post_id, Post.user_id == current_user.id)
        .options(selectinload(Post.comments), selectinload(Post.likes))
    )
    post = result.scalar_one_or_none()
    if post is None:
        raise NotFoundError("Post not found")

    old = row_to_dict(post)
    await db.delete(post)
    await db.flush()
    feed.stage(db, Change("posts", "DELETE", old=old))

    return Response(status_code=204)


@router.post("/{post_id}/like", response_model=LikeResponse)
async def like_post(
    post_id: int,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> LikeResponse:
    """Like a post. Liking twice is a no-op."""
    await get_post_or_404(db, post_id)

    like = await insert_if_absent(
        db,
        Like,
        ("post_id", "user_id"),
        post_id=post_id,
        user_id=current_user.id,
        created_at=utcnow(),
    )
    if like is not None:
        feed.stage(db, Change("likes", "INSERT", new=row_to_dict(like)))

    return LikeResponse(post_id=post_id, liked=True, likes_count=await count_likes(db, post_id))


@router.delete("/{post_id}/like", response_model=LikeResponse)
async def unlike_post(
    post_id: int,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> LikeResponse:
    """Remove a like. Unliking a post that was not liked is a no-op."""
    await get_post_or_404(db, post_id)

    existing = await db.execute(
        select(Like).where(Like.post_id == post_id, Like.user_id == current_user.id)
    )
    like = existing.scalar_one_or_none()
    if like is not None:
        old = row_to_dict(like)
        await db.delete(like)
        await db.flush()
        feed.stage(db, Change("likes", "DELETE", old=old))

    return LikeResponse(post_id=post_id, liked=False, likes_count=await count_likes(db, post_id))


@router.get("/{post_id}/comments", response_model=CommentListResponse)
async def list_comments(
    post_id: int,
    current_user: OnboardedUser,  # noqa: ARG001 - Required for auth enforcement
    db: AsyncSession = Depends(get_db),
) -> CommentListResponse:
    """List comments on a post, newest first."""
    await get_post_or_404(db, post_id)

    result = await db.execute(
        select(Comment)
        .where(Comment.post_id == post_id)
        .options(selectinload(Comment.user))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
    )
    comments = result.scalars().all()

    return CommentListResponse(
        post_id=post_id,
        results=[CommentResponse.model_validate(comment) for comment in comments],
    )


@router.post("/{post_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(
    post_id: int,
    comment_data: CommentCreate,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> CommentResponse:
    """Add a comment to a post."""
    await get_post_or_404(db, post_id)

    now = utcnow()
    comment = Comment(
        post_id=post_id,
        user_id=current_user.id,
        content=comment_data.content,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.flush()
    await db.refresh(comment)
    feed.stage(db, Change("comments", "INSERT", new=row_to_dict(comment)))

    comment.user = current_user
    return CommentResponse.model_validate(comment)
