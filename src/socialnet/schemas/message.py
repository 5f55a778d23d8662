"""Pydantic schemas for direct messages."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from socialnet.schemas.user import UserSummary


class MessageCreate(BaseModel):
    """Schema for sending a message."""

    content: str = Field(max_length=5000, description="Message text")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Reject blank messages."""
        v = v.strip()
        if not v:
            msg = "Message cannot be empty"
            raise ValueError(msg)
        return v


class MessageResponse(BaseModel):
    """A single direct message."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Message ID")
    sender_id: int = Field(description="Sender user ID")
    receiver_id: int = Field(description="Receiver user ID")
    content: str = Field(description="Message text")
    read: bool = Field(description="Whether the receiver has read the message")
    created_at: datetime = Field(description="When the message was sent")


class ConversationResponse(BaseModel):
    """Messages exchanged with one contact, oldest first."""

    contact: UserSummary = Field(description="The other participant")
    results: list[MessageResponse] = Field(default_factory=list, description="Messages")


class ContactListResponse(BaseModel):
    """Users the viewer has exchanged messages with."""

    results: list[UserSummary] = Field(default_factory=list, description="Contacts")
