"""
Conversation Store
Client/admin conversations, their messages, delivery receipts and unread counters.

A conversation is identified by a hash of its participants and order, so the
same (client, admin, order) tuple always maps to one document regardless of
who opens it first. Message insert and counter update run as one unit.
"""
from datetime import datetime, timezone
from typing import List, Optional
import hashlib
import logging
import re

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import transaction
from errors import NotFoundError, ValidationError
from models.messaging import (
    ConversationCreate, ConversationStatus, ConversationUpdate, MessageCreate,
    ConversationMetadata, MessageStatus, MessageType, Participant, MESSAGE_STATUS_RANK
)
from models.order import SenderRole
from models.user import User
from services.order_store import generate_id

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def conversation_id_for(client_id: str, admin_id: str, order_id: Optional[str] = None) -> str:
    """Deterministic id: the same participants and order always hash the same"""
    key = "|".join(sorted([client_id, admin_id]) + [order_id or ""])
    return f"conv_{hashlib.sha256(key.encode('utf-8')).hexdigest()[:24]}"


def _role_of(user: User) -> str:
    return SenderRole.CLIENT.value if user.role == "client" else SenderRole.ADMIN.value


async def get_conversation(db, conversation_id: str) -> dict:
    conversation = await db.conversations.find_one({"conversation_id": conversation_id}, {"_id": 0})
    if not conversation:
        raise NotFoundError("Conversation not found.")
    return conversation


async def get_or_create_conversation(db, conv_in: ConversationCreate, actor: User) -> dict:
    """Return the conversation for (client, admin, order), creating it if absent.

    An archived or closed match is reactivated instead of duplicated.
    """
    admin_id = conv_in.admin_id or actor.user_id
    admin_name = conv_in.admin_name or actor.name
    admin_avatar = conv_in.admin_avatar if conv_in.admin_id else (conv_in.admin_avatar or actor.picture)
    if admin_id == conv_in.client_id:
        raise ValidationError("A conversation needs two different participants.")

    conversation_id = conversation_id_for(conv_in.client_id, admin_id, conv_in.order_id)
    now = _now()

    new_conversation = {
        "participants": [
            Participant(
                user_id=conv_in.client_id, role=SenderRole.CLIENT.value,
                full_name=conv_in.client_name, avatar_url=conv_in.client_avatar
            ).model_dump(),
            Participant(
                user_id=admin_id, role=SenderRole.ADMIN.value,
                full_name=admin_name, avatar_url=admin_avatar
            ).model_dump()
        ],
        "client_id": conv_in.client_id,
        "admin_id": admin_id,
        "order_id": conv_in.order_id,
        "order_number": conv_in.order_number,
        "last_message": None,
        "unread_count": {conv_in.client_id: 0, admin_id: 0},
        "status": ConversationStatus.ACTIVE.value,
        "metadata": ConversationMetadata(subject=conv_in.subject, priority=conv_in.priority).model_dump(mode="json"),
        "created_by": actor.user_id,
        "created_at": now,
        "updated_at": now
    }

    try:
        conversation = await db.conversations.find_one_and_update(
            {"conversation_id": conversation_id},
            {"$setOnInsert": new_conversation},
            upsert=True,
            return_document=ReturnDocument.AFTER,
            projection={"_id": 0}
        )
    except DuplicateKeyError:
        # Lost the upsert race on the unique index; the winner's document is there now
        conversation = await get_conversation(db, conversation_id)

    if conversation["status"] != ConversationStatus.ACTIVE.value:
        await db.conversations.update_one(
            {"conversation_id": conversation_id},
            {"$set": {"status": ConversationStatus.ACTIVE.value, "updated_at": now}}
        )
        logger.info(f"[Conversations] Reactivated {conversation_id} (was {conversation['status']})")
        conversation["status"] = ConversationStatus.ACTIVE.value
        conversation["updated_at"] = now

    return conversation


async def list_conversations(
    db,
    admin_id: Optional[str] = None,
    status: Optional[str] = None,
    has_order: Optional[bool] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    skip: int = 0
) -> dict:
    query = {}
    if admin_id:
        query["participants.user_id"] = admin_id
    if status and status != "all":
        query["status"] = status
    if has_order is True:
        query["order_id"] = {"$ne": None}
    elif has_order is False:
        query["order_id"] = None
    if priority:
        query["metadata.priority"] = priority
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [
            {"participants.full_name": pattern},
            {"order_number": pattern},
            {"last_message.text": pattern}
        ]

    total = await db.conversations.count_documents(query)
    conversations = await db.conversations.find(query, {"_id": 0}).sort(
        "updated_at", -1
    ).skip(skip).limit(limit).to_list(limit)

    if admin_id:
        for conversation in conversations:
            conversation["unread"] = conversation.get("unread_count", {}).get(admin_id, 0)

    return {
        "conversations": conversations,
        "total": total,
        "has_more": skip + len(conversations) < total
    }


async def update_conversation(db, conversation_id: str, update_in: ConversationUpdate) -> dict:
    fields = {}
    if update_in.status is not None:
        fields["status"] = update_in.status.value
    if update_in.metadata is not None:
        for key, value in update_in.metadata.model_dump(mode="json", exclude_none=True).items():
            fields[f"metadata.{key}"] = value
    if not fields:
        raise ValidationError("No fields to update.")

    fields["updated_at"] = _now()
    result = await db.conversations.update_one({"conversation_id": conversation_id}, {"$set": fields})
    if result.matched_count == 0:
        raise NotFoundError("Conversation not found.")
    return await get_conversation(db, conversation_id)


def _snapshot(message: dict) -> dict:
    return {
        "message_id": message["message_id"],
        "text": message["text"],
        "sender_id": message["sender_id"],
        "sender_name": message["sender_name"],
        "type": message["type"],
        "created_at": message["created_at"]
    }


# Clients an admin can open a conversation with
CLIENT_PROJECTION = {"_id": 0, "user_id": 1, "name": 1, "email": 1, "phone": 1, "picture": 1}
MIN_CLIENT_SEARCH_LENGTH = 2


async def search_clients(db, search: str, limit: int = 20) -> List[dict]:
    """Clients whose name or email contains the search text, case-insensitive"""
    search = (search or "").strip()
    if len(search) < MIN_CLIENT_SEARCH_LENGTH:
        return []
    pattern = {"$regex": re.escape(search), "$options": "i"}
    return await db.users.find(
        {"role": "client", "$or": [{"name": pattern}, {"email": pattern}]},
        CLIENT_PROJECTION
    ).sort("name", 1).limit(limit).to_list(limit)


async def find_client_by_email(db, email: str) -> Optional[dict]:
    if not email:
        return None
    pattern = {"$regex": f"^{re.escape(email.strip())}$", "$options": "i"}
    return await db.users.find_one({"role": "client", "email": pattern}, CLIENT_PROJECTION)


async def list_clients_for_messaging(db, search: Optional[str] = None, limit: int = 100) -> List[dict]:
    """All clients (optionally filtered), for pickers that do not search server-side"""
    query = {"role": "client"}
    if search and search.strip():
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    return await db.users.find(query, CLIENT_PROJECTION).sort("name", 1).limit(limit).to_list(limit)


async def send_message(db, conversation_id: str, message_in: MessageCreate, sender: User) -> dict:
    """Insert a message, refresh the last-message snapshot and bump the recipient's unread count"""
    recipient_id = message_in.recipient_id
    if recipient_id == sender.user_id:
        raise ValidationError("Cannot send a message to yourself.")

    now = _now()
    message = {
        "message_id": generate_id("msg"),
        "conversation_id": conversation_id,
        "sender_id": sender.user_id,
        "sender_name": sender.name,
        "sender_role": _role_of(sender),
        "recipient_id": recipient_id,
        "text": message_in.text,
        "type": message_in.type.value,
        "attachments": [a.model_dump() for a in message_in.attachments],
        "status": MessageStatus.SENT.value,
        "delivered_at": None,
        "read_at": None,
        "read_by": [],
        "is_deleted": False,
        "reply_to": message_in.reply_to.model_dump() if message_in.reply_to else None,
        "is_system_message": False,
        "created_at": now
    }

    async with transaction(db) as session:
        # Conversation first: without a transaction a missing conversation must leave no orphan message
        result = await db.conversations.update_one(
            {"conversation_id": conversation_id, "participants.user_id": recipient_id},
            {
                "$set": {"last_message": _snapshot(message), "updated_at": now},
                "$inc": {f"unread_count.{recipient_id}": 1}
            },
            session=session
        )
        if result.matched_count == 0:
            existing = await db.conversations.find_one(
                {"conversation_id": conversation_id}, {"_id": 0, "conversation_id": 1}, session=session
            )
            if existing:
                raise ValidationError("Recipient is not a participant of this conversation.")
            raise NotFoundError("Conversation not found.")

        await db.messages.insert_one(message, session=session)

    message.pop("_id", None)
    logger.info(f"[Conversations] {sender.user_id} -> {recipient_id} in {conversation_id}")
    return message


async def send_system_message(db, conversation_id: str, text: str) -> dict:
    if not text or not text.strip():
        raise ValidationError("Message text is required.")

    now = _now()
    message = {
        "message_id": generate_id("msg"),
        "conversation_id": conversation_id,
        "sender_id": "system",
        "sender_name": "System",
        "sender_role": SenderRole.ADMIN.value,
        "recipient_id": None,
        "text": text,
        "type": MessageType.SYSTEM.value,
        "attachments": [],
        "status": MessageStatus.SENT.value,
        "delivered_at": None,
        "read_at": None,
        "read_by": [],
        "is_deleted": False,
        "reply_to": None,
        "is_system_message": True,
        "created_at": now
    }

    async with transaction(db) as session:
        result = await db.conversations.update_one(
            {"conversation_id": conversation_id},
            {"$set": {"last_message": _snapshot(message), "updated_at": now}},
            session=session
        )
        if result.matched_count == 0:
            raise NotFoundError("Conversation not found.")
        await db.messages.insert_one(message, session=session)

    message.pop("_id", None)
    return message


async def list_messages(db, conversation_id: str, limit: int = 50) -> List[dict]:
    """Latest non-deleted messages, oldest first"""
    await get_conversation(db, conversation_id)
    messages = await db.messages.find(
        {"conversation_id": conversation_id, "is_deleted": False}, {"_id": 0}
    ).sort([("created_at", -1), ("_id", -1)]).limit(limit).to_list(limit)
    messages.reverse()
    return messages


async def mark_messages_delivered(db, conversation_id: str, recipient_id: str) -> int:
    result = await db.messages.update_many(
        {
            "conversation_id": conversation_id,
            "sender_id": {"$ne": recipient_id},
            "status": MessageStatus.SENT.value
        },
        {"$set": {"status": MessageStatus.DELIVERED.value, "delivered_at": _now()}}
    )
    return result.modified_count


async def mark_messages_read(db, conversation_id: str, viewer_id: str, sender_id: Optional[str] = None, session=None) -> int:
    """Mark everything from sender_id (or from anyone but the viewer) as read"""
    now = _now()
    query = {
        "conversation_id": conversation_id,
        "status": {"$in": [MessageStatus.SENT.value, MessageStatus.DELIVERED.value]}
    }
    query["sender_id"] = sender_id if sender_id else {"$ne": viewer_id}

    result = await db.messages.update_many(
        query,
        {
            "$set": {"status": MessageStatus.READ.value, "read_at": now},
            "$push": {"read_by": {"user_id": viewer_id, "read_at": now}}
        },
        session=session
    )
    return result.modified_count


async def update_message_status(db, conversation_id: str, message_id: str, status: str, user_id: str) -> dict:
    """Move one message forward to delivered or read; a backward move changes nothing"""
    rank = MESSAGE_STATUS_RANK[status]
    earlier = [s for s, r in MESSAGE_STATUS_RANK.items() if r < rank]
    now = _now()

    update = {"$set": {"status": status}}
    if status == MessageStatus.DELIVERED.value:
        update["$set"]["delivered_at"] = now
    else:
        update["$set"]["read_at"] = now
        update["$push"] = {"read_by": {"user_id": user_id, "read_at": now}}

    result = await db.messages.update_one(
        {"conversation_id": conversation_id, "message_id": message_id, "status": {"$in": earlier}},
        update
    )

    message = await db.messages.find_one(
        {"conversation_id": conversation_id, "message_id": message_id}, {"_id": 0}
    )
    if not message:
        raise NotFoundError("Message not found.")
    if result.modified_count == 0:
        logger.debug(f"[Conversations] Ignored {status} for {message_id}, already {message['status']}")
    return message


async def mark_as_read(db, conversation_id: str, user_id: str, session=None) -> None:
    result = await db.conversations.update_one(
        {"conversation_id": conversation_id},
        {"$set": {f"unread_count.{user_id}": 0}},
        session=session
    )
    if result.matched_count == 0:
        raise NotFoundError("Conversation not found.")


async def acknowledge_conversation(db, conversation_id: str, viewer_id: str) -> int:
    """Viewer opened the conversation: read receipts and unread reset together"""
    async with transaction(db) as session:
        await mark_as_read(db, conversation_id, viewer_id, session=session)
        return await mark_messages_read(db, conversation_id, viewer_id, session=session)


async def unread_totals(db, user_id: str) -> dict:
    conversations = await db.conversations.find(
        {"participants.user_id": user_id, "status": ConversationStatus.ACTIVE.value},
        {"_id": 0, "conversation_id": 1, "unread_count": 1}
    ).to_list(1000)

    per_conversation = {
        c["conversation_id"]: c.get("unread_count", {}).get(user_id, 0)
        for c in conversations
    }
    return {
        "total": sum(per_conversation.values()),
        "conversations": {cid: count for cid, count in per_conversation.items() if count}
    }


async def delete_message(db, conversation_id: str, message_id: str, user: User) -> None:
    """Soft delete; clients may only delete their own messages"""
    query = {"conversation_id": conversation_id, "message_id": message_id, "is_deleted": False}
    if user.role == "client":
        query["sender_id"] = user.user_id

    result = await db.messages.update_one(
        query,
        {"$set": {"is_deleted": True, "deleted_at": _now(), "deleted_by": user.user_id}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Message not found.")
