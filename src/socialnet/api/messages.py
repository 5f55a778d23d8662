"""Direct message API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.database import get_db, utcnow
from socialnet.dependencies import OnboardedUser
from socialnet.models.message import Message
from socialnet.models.user import User
from socialnet.schemas.message import (
    ContactListResponse,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
)
from socialnet.schemas.user import UserSummary
from socialnet.services.base import NotFoundError
from socialnet.services.errors import ValidationError
from socialnet.services.realtime import Change, ChangeFeed, get_change_feed, row_to_dict

router = APIRouter(prefix="/messages", tags=["messages"])


def conversation_filter(user_id: int, contact_id: int):
    """SQL condition matching messages in either direction between two users."""
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == contact_id),
        and_(Message.sender_id == contact_id, Message.receiver_id == user_id),
    )


async def list_contacts(db: AsyncSession, user_id: int) -> list[UserSummary]:
    """Users the given user has sent messages to or received messages from."""
    sent = select(Message.receiver_id).where(Message.sender_id == user_id)
    received = select(Message.sender_id).where(Message.receiver_id == user_id)
    result = await db.execute(
        select(User).where(or_(User.id.in_(sent), User.id.in_(received))).order_by(User.username)
    )
    return [UserSummary.model_validate(user) for user in result.scalars().all()]


async def get_contact_or_404(db: AsyncSession, contact_id: int) -> User:
    contact = await db.get(User, contact_id)
    if contact is None:
        raise NotFoundError("User not found")
    return contact


async def load_conversation(
    db: AsyncSession,
    user_id: int,
    contact_id: int,
    feed: ChangeFeed | None = None,
    limit: int | None = None,
) -> list[Message]:
    """Load a conversation oldest first and mark incoming messages read.

    When ``feed`` is given, an UPDATE change is staged for each message that
    flips to read.
    """
    query = select(Message).where(conversation_filter(user_id, contact_id))
    if limit is not None:
        query = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        result = await db.execute(query)
        messages = list(reversed(result.scalars().all()))
    else:
        result = await db.execute(query.order_by(Message.created_at, Message.id))
        messages = list(result.scalars().all())

    unread = [m for m in messages if m.receiver_id == user_id and not m.read]
    for message in unread:
        old = row_to_dict(message)
        message.read = True
        if feed is not None:
            feed.stage(db, Change("messages", "UPDATE", new=row_to_dict(message), old=old))
    if unread:
        await db.flush()

    return messages


async def send_message(
    db: AsyncSession, sender_id: int, receiver_id: int, content: str, feed: ChangeFeed
) -> Message:
    """Insert a message and stage its change notification."""
    if sender_id == receiver_id:
        raise ValidationError("You cannot message yourself")

    message = Message(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        read=False,
        created_at=utcnow(),
    )
    db.add(message)
    await db.flush()
    await db.refresh(message)
    feed.stage(db, Change("messages", "INSERT", new=row_to_dict(message)))
    return message


@router.get("/contacts", response_model=ContactListResponse)
async def get_contacts(
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
) -> ContactListResponse:
    """List everyone the current user has a conversation with."""
    return ContactListResponse(results=await list_contacts(db, current_user.id))


@router.get("/{contact_id}", response_model=ConversationResponse)
async def get_conversation(
    contact_id: int,
    current_user: OnboardedUser,
    limit: int | None = Query(None, ge=1, le=500, description="Only the most recent messages"),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ConversationResponse:
    """Get the conversation with a contact, oldest first.

    Incoming unread messages are marked as read.

    Raises:
        NotFoundError 404: If the contact does not exist
    """
    contact = await get_contact_or_404(db, contact_id)
    messages = await load_conversation(db, current_user.id, contact.id, feed=feed, limit=limit)
    return ConversationResponse(
        contact=UserSummary.model_validate(contact),
        results=[MessageResponse.model_validate(m) for m in messages],
    )


@router.post("/{contact_id}", response_model=MessageResponse, status_code=201)
async def post_message(
    contact_id: int,
    message_data: MessageCreate,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> MessageResponse:
    """Send a message to a contact.

    Raises:
        NotFoundError 404: If the contact does not exist
        ValidationError 400: If users message themselves
    """
    contact = await get_contact_or_404(db, contact_id)
    message = await send_message(db, current_user.id, contact.id, message_data.content, feed)
    return MessageResponse.model_validate(message)
