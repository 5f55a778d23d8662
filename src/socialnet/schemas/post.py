"""Pydantic schemas for posts, comments and likes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from socialnet.schemas.user import UserSummary


class PostResponse(BaseModel):
    """A post with its author and engagement counts."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Post ID")
    user_id: int = Field(description="Author user ID")
    content: str = Field(description="Post text")
    image_url: str | None = Field(default=None, description="Attached image URL")
    created_at: datetime = Field(description="When the post was created")
    updated_at: datetime = Field(description="When the post was last updated")
    user: UserSummary | None = Field(default=None, description="Author")
    likes_count: int = Field(default=0, description="Number of likes")
    comments_count: int = Field(default=0, description="Number of comments")
    has_liked: bool = Field(default=False, description="Whether the viewer liked the post")


class PostListResponse(BaseModel):
    """A list of posts, newest first."""

    results: list[PostResponse] = Field(default_factory=list, description="Posts")


class CommentCreate(BaseModel):
    """Schema for adding a comment."""

    content: str = Field(max_length=2000, description="Comment text")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Reject blank comments."""
        v = v.strip()
        if not v:
            msg = "Comment cannot be empty"
            raise ValueError(msg)
        return v


class CommentResponse(BaseModel):
    """A comment with its author."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Comment ID")
    post_id: int = Field(description="Post ID")
    user_id: int = Field(description="Author user ID")
    content: str = Field(description="Comment text")
    created_at: datetime = Field(description="When the comment was created")
    updated_at: datetime = Field(description="When the comment was last updated")
    user: UserSummary | None = Field(default=None, description="Author")


class CommentListResponse(BaseModel):
    """Comments on a post, newest first."""

    post_id: int = Field(description="Post ID")
    results: list[CommentResponse] = Field(default_factory=list, description="Comments")


class LikeResponse(BaseModel):
    """Like state after a like or unlike."""

    post_id: int = Field(description="Post ID")
    liked: bool = Field(description="Whether the viewer now likes the post")
    likes_count: int = Field(description="Like count after the change")
