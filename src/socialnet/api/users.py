"""User search, profile and follow API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.api.posts import fetch_posts
from socialnet.database import get_db, insert_if_absent, utcnow
from socialnet.dependencies import OnboardedUser
from socialnet.models.follow import Follow
from socialnet.models.user import User
from socialnet.schemas.post import PostListResponse
from socialnet.schemas.user import (
    FollowResponse,
    ProfileResponse,
    UserSearchResponse,
    UserSummary,
)
from socialnet.services.base import NotFoundError
from socialnet.services.errors import ValidationError
from socialnet.services.realtime import Change, ChangeFeed, get_change_feed, row_to_dict

router = APIRouter(prefix="/users", tags=["users"])


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the query matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search_users(
    db: AsyncSession, query: str, viewer_id: int | None, limit: int = 20
) -> list[UserSummary]:
    """Find users whose username contains ``query``, ordered by username."""
    pattern = f"%{escape_like(query.strip())}%"
    statement = select(User).where(
        User.username.ilike(pattern, escape="\\"), User.is_active.is_(True)
    )
    if viewer_id is not None:
        statement = statement.where(User.id != viewer_id)
    result = await db.execute(statement.order_by(User.username).limit(limit))
    return [UserSummary.model_validate(user) for user in result.scalars().all()]


async def get_user_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username.lower()))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User '{username}' not found")
    return user


async def count_followers(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(func.count(Follow.id)).where(Follow.following_id == user_id))
    return result.scalar_one()


async def count_following(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(func.count(Follow.id)).where(Follow.follower_id == user_id))
    return result.scalar_one()


async def find_follow(db: AsyncSession, follower_id: int, following_id: int) -> Follow | None:
    result = await db.execute(
        select(Follow).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
    )
    return result.scalar_one_or_none()


async def build_profile(db: AsyncSession, user: User, viewer_id: int | None) -> ProfileResponse:
    """Assemble a profile with follow counts and the viewer's follow state."""
    is_following = False
    if viewer_id is not None and viewer_id != user.id:
        is_following = await find_follow(db, viewer_id, user.id) is not None

    return ProfileResponse(
        user=UserSummary.model_validate(user),
        bio=user.bio,
        followers_count=await count_followers(db, user.id),
        following_count=await count_following(db, user.id),
        is_following=is_following,
        is_self=viewer_id == user.id,
    )


@router.get("/search", response_model=UserSearchResponse)
async def search(
    current_user: OnboardedUser,
    q: str = Query(..., min_length=1, max_length=50, description="Part of a username"),
    limit: int = Query(20, ge=1, le=20, description="Maximum number of results"),
    db: AsyncSession = Depends(get_db),
) -> UserSearchResponse:
    """Search users by username, excluding the current user."""
    results = await search_users(db, q, current_user.id, limit=limit)
    return UserSearchResponse(query=q, results=results)


@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Get a user's profile.

    Raises:
        NotFoundError 404: If no user has this username
    """
    user = await get_user_by_username(db, username)
    return await build_profile(db, user, current_user.id)


@router.get("/{username}/posts", response_model=PostListResponse)
async def get_user_posts(
    username: str,
    current_user: OnboardedUser,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
) -> PostListResponse:
    """List a user's posts, newest first."""
    user = await get_user_by_username(db, username)
    posts = await fetch_posts(
        db, current_user.id, author_id=user.id, page=page, page_size=page_size
    )
    return PostListResponse(results=posts)


@router.post("/{username}/follow", response_model=FollowResponse)
async def follow_user(
    username: str,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> FollowResponse:
    """Follow a user. Following twice is a no-op.

    Raises:
        ValidationError 400: If users try to follow themselves
    """
    user = await get_user_by_username(db, username)
    if user.id == current_user.id:
        raise ValidationError("You cannot follow yourself")

    follow = await insert_if_absent(
        db,
        Follow,
        ("follower_id", "following_id"),
        follower_id=current_user.id,
        following_id=user.id,
        created_at=utcnow(),
    )
    if follow is not None:
        feed.stage(db, Change("follows", "INSERT", new=row_to_dict(follow)))

    return FollowResponse(
        username=user.username,
        following=True,
        followers_count=await count_followers(db, user.id),
    )


@router.delete("/{username}/follow", response_model=FollowResponse)
async def unfollow_user(
    username: str,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> FollowResponse:
    """Unfollow a user. Unfollowing someone not followed is a no-op."""
    user = await get_user_by_username(db, username)

    follow = await find_follow(db, current_user.id, user.id)
    if follow is not None:
        old = row_to_dict(follow)
        await db.delete(follow)
        await db.flush()
        feed.stage(db, Change("follows", "DELETE", old=old))

    return FollowResponse(
        username=user.username,
        following=False,
        followers_count=await count_followers(db, user.id),
    )
