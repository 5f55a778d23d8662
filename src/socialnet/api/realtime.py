"""WebSocket streams of committed row changes."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from socialnet.api.messages import load_conversation, send_message
from socialnet.database import get_session_factory
from socialnet.dependencies import resolve_auth_session, token_from_request
from socialnet.models.message import Message
from socialnet.models.user import User
from socialnet.schemas.message import MessageCreate
from socialnet.services.base import APIError
from socialnet.services.identity import get_identity_backend
from socialnet.services.realtime import (
    Change,
    EntityCache,
    Subscription,
    get_change_feed,
    row_to_dict,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

ChangeHandler = Callable[[Change], Awaitable[None]]
MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


async def send_event(websocket: WebSocket, event: str, data: Any, table: str | None = None) -> None:
    frame: dict[str, Any] = {"event": event, "data": jsonable_encoder(data)}
    if table is not None:
        frame["table"] = table
    await websocket.send_json(frame)


async def authenticate(websocket: WebSocket, token: str | None) -> User | None:
    """Resolve the connecting user, or None if they may not stream."""
    identity = get_identity_backend(websocket)
    auth_session = await resolve_auth_session(token_from_request(websocket, token), identity)
    if auth_session is None:
        return None

    async with get_session_factory()() as db:
        result = await db.execute(select(User).where(User.email == auth_session.email))
        user = result.scalar_one_or_none()

    if user is None or not user.is_active or not user.is_onboarded:
        return None
    return user


async def pump(
    websocket: WebSocket,
    subscription: Subscription,
    on_change: ChangeHandler,
    on_message: MessageHandler,
) -> None:
    """Forward subscription changes and client frames until the client leaves."""
    receive = asyncio.ensure_future(websocket.receive_text())
    change = asyncio.ensure_future(subscription.get())
    try:
        while True:
            done, _ = await asyncio.wait({receive, change}, return_when=asyncio.FIRST_COMPLETED)

            if change in done:
                await on_change(change.result())
                change = asyncio.ensure_future(subscription.get())

            if receive in done:
                text = receive.result()
                receive = asyncio.ensure_future(websocket.receive_text())
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    await send_event(websocket, "error", {"detail": "Invalid JSON"})
                    continue
                if not isinstance(payload, dict):
                    await send_event(websocket, "error", {"detail": "Expected a JSON object"})
                    continue
                if payload.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
                    continue
                await on_message(payload)
    finally:
        receive.cancel()
        change.cancel()


@router.websocket("/posts")
async def posts_stream(
    websocket: WebSocket,
    token: str | None = Query(None),
    user_id: int | None = Query(None),
) -> None:
    """Stream newly published posts, optionally from one author."""
    user = await authenticate(websocket, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    predicate = (lambda row: row.get("user_id") == user_id) if user_id is not None else None
    subscription = get_change_feed(websocket).subscribe(
        "posts", events=["INSERT"], predicate=predicate
    )
    logger.info("User %s subscribed to posts", user.id)

    async def on_change(change: Change) -> None:
        await send_event(websocket, change.event, change.row, table=change.table)

    async def on_message(_payload: dict[str, Any]) -> None:
        await send_event(websocket, "error", {"detail": "This stream is read-only"})

    try:
        with subscription:
            await pump(websocket, subscription, on_change, on_message)
    except WebSocketDisconnect:
        logger.info("User %s left the posts stream", user.id)


@router.websocket("/messages/{contact_id}")
async def messages_stream(
    websocket: WebSocket,
    contact_id: int,
    token: str | None = Query(None),
) -> None:
    """Stream one conversation in both directions.

    The client receives a ``snapshot`` of the history, then INSERT and UPDATE
    frames. It may send ``{"content": "..."}`` to post a message. Incoming
    messages are marked read as they arrive.
    """
    user = await authenticate(websocket, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    session_factory = get_session_factory()
    feed = get_change_feed(websocket)

    async with session_factory() as db:
        contact = await db.get(User, contact_id)
        if contact is None or contact.id == user.id:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        history = await load_conversation(db, user.id, contact.id, feed=feed)
        rows = [row_to_dict(message) for message in history]
        await db.commit()

    pair = {user.id, contact.id}
    subscription = feed.subscribe(
        "messages",
        events=["INSERT", "UPDATE"],
        predicate=lambda row: {row.get("sender_id"), row.get("receiver_id")} == pair,
    )
    cache = EntityCache()
    cache.seed(rows)

    await websocket.accept()
    await send_event(websocket, "snapshot", cache.values(), table="messages")

    async def mark_read(message_id: int) -> None:
        async with session_factory() as db:
            message = await db.get(Message, message_id)
            if message is None or message.read:
                return
            old = row_to_dict(message)
            message.read = True
            await db.flush()
            feed.stage(db, Change("messages", "UPDATE", new=row_to_dict(message), old=old))
            await db.commit()

    async def on_change(change: Change) -> None:
        if not cache.apply(change):
            return
        await send_event(websocket, change.event, change.row, table=change.table)
        row = change.row
        if change.event == "INSERT" and row.get("receiver_id") == user.id and not row.get("read"):
            await mark_read(row["id"])

    async def on_message(payload: dict[str, Any]) -> None:
        try:
            data = MessageCreate.model_validate(payload)
        except PydanticValidationError as e:
            detail = e.errors(include_url=False, include_context=False)
            await send_event(websocket, "error", {"detail": detail})
            return
        try:
            async with session_factory() as db:
                message = await send_message(db, user.id, contact.id, data.content, feed)
                row = row_to_dict(message)
                await db.commit()
        except APIError as e:
            await send_event(websocket, "error", {"detail": str(e)})
            return
        if cache.upsert(row):
            await send_event(websocket, "INSERT", row, table="messages")

    try:
        with subscription:
            await pump(websocket, subscription, on_change, on_message)
    except WebSocketDisconnect:
        logger.info("User %s left the conversation with %s", user.id, contact.id)
