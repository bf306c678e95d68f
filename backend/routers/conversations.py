"""
Conversations Router
Client/admin messaging with delivery receipts and unread counters
"""
from fastapi import APIRouter, HTTPException, Depends, Query, BackgroundTasks
from typing import Optional

from database import get_db
from models.user import User
from models.messaging import (
    ConversationCreate, ConversationUpdate, MessageCreate, SystemMessageCreate,
    MessageStatusUpdate, MarkMessagesRead
)
from dependencies import get_current_user, require_admin
from services import conversation_store
from services.notification_dispatcher import send_message_notification
from services.push_client import PushClient, get_push_client

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def _load_for_participant(db, conversation_id: str, user: User) -> dict:
    conversation = await conversation_store.get_conversation(db, conversation_id)
    if user.role == "client" and user.user_id != conversation["client_id"]:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("")
async def get_conversations(
    status: Optional[str] = "active",
    has_order: Optional[bool] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Conversations the caller takes part in, newest activity first"""
    return await conversation_store.list_conversations(
        db, admin_id=user.user_id, status=status, has_order=has_order,
        priority=priority, search=search, limit=limit, skip=skip
    )


@router.post("")
async def open_conversation(conv_data: ConversationCreate, user: User = Depends(require_admin), db=Depends(get_db)):
    """Get the conversation for a client (and order), creating it if needed"""
    return await conversation_store.get_or_create_conversation(db, conv_data, user)


@router.get("/unread")
async def get_unread_totals(user: User = Depends(get_current_user), db=Depends(get_db)):
    return await conversation_store.unread_totals(db, user.user_id)


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    return await _load_for_participant(db, conversation_id, user)


@router.put("/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    update: ConversationUpdate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Archive/close/reopen or edit subject, priority and tags"""
    return await conversation_store.update_conversation(db, conversation_id, update)


@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Messages oldest first; fetching them marks the caller's incoming ones delivered"""
    await _load_for_participant(db, conversation_id, user)
    await conversation_store.mark_messages_delivered(db, conversation_id, user.user_id)
    messages = await conversation_store.list_messages(db, conversation_id, limit=limit)
    return {"messages": messages, "count": len(messages)}


@router.post("/{conversation_id}/messages")
async def send_message(
    conversation_id: str,
    message: MessageCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    """Send a message; the recipient is notified in the background"""
    await _load_for_participant(db, conversation_id, user)
    sent = await conversation_store.send_message(db, conversation_id, message, user)
    background_tasks.add_task(
        send_message_notification, db, message.recipient_id, user, message.text,
        conversation_id, sent["message_id"], push_client
    )
    return sent


@router.post("/{conversation_id}/system-messages")
async def send_system_message(
    conversation_id: str,
    message: SystemMessageCreate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await conversation_store.send_system_message(db, conversation_id, message.text)


@router.put("/{conversation_id}/messages/{message_id}/status")
async def update_message_status(
    conversation_id: str,
    message_id: str,
    status_data: MessageStatusUpdate,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    await _load_for_participant(db, conversation_id, user)
    return await conversation_store.update_message_status(
        db, conversation_id, message_id, status_data.status, user.user_id
    )


@router.put("/{conversation_id}/messages/read")
async def mark_messages_read(
    conversation_id: str,
    read_data: MarkMessagesRead,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Mark all messages from one sender as read by the caller"""
    await _load_for_participant(db, conversation_id, user)
    marked = await conversation_store.mark_messages_read(db, conversation_id, user.user_id, read_data.sender_id)
    return {"success": True, "marked_read": marked}


@router.put("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Caller opened the conversation: receipts plus unread reset"""
    await _load_for_participant(db, conversation_id, user)
    marked = await conversation_store.acknowledge_conversation(db, conversation_id, user.user_id)
    return {"success": True, "marked_read": marked}


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(
    conversation_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    await _load_for_participant(db, conversation_id, user)
    await conversation_store.delete_message(db, conversation_id, message_id, user)
    return {"success": True}
