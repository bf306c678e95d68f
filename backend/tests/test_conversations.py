"""
Conversations Module - messaging, receipts and unread counters
"""
import asyncio

import pytest

from conftest import run, ADMIN_ID, CLIENT_ID
from errors import NotFoundError, ValidationError
from models.messaging import ConversationCreate, ConversationUpdate, MessageCreate
from services import conversation_store


def _conv_input(**overrides):
    data = {"client_id": CLIENT_ID, "client_name": "Jane Doe", "order_id": "ord_abc123", "order_number": "ORD-001"}
    data.update(overrides)
    return ConversationCreate(**data)


@pytest.fixture
def conversation(db, admin_user):
    return run(conversation_store.get_or_create_conversation(db, _conv_input(), admin_user))


class TestConversationIdentity:
    """Deterministic ids and create-if-absent"""

    def test_id_is_order_independent(self):
        a = conversation_store.conversation_id_for("user_a", "user_b", "ord_1")
        b = conversation_store.conversation_id_for("user_b", "user_a", "ord_1")
        assert a == b
        assert a.startswith("conv_")

    def test_id_depends_on_order(self):
        assert conversation_store.conversation_id_for("user_a", "user_b", "ord_1") != \
            conversation_store.conversation_id_for("user_a", "user_b", "ord_2")
        assert conversation_store.conversation_id_for("user_a", "user_b") != \
            conversation_store.conversation_id_for("user_a", "user_b", "ord_1")

    def test_new_conversation_shape(self, conversation):
        assert conversation["client_id"] == CLIENT_ID
        assert conversation["admin_id"] == ADMIN_ID
        assert conversation["status"] == "active"
        assert conversation["unread_count"] == {CLIENT_ID: 0, ADMIN_ID: 0}
        assert {p["user_id"] for p in conversation["participants"]} == {CLIENT_ID, ADMIN_ID}
        assert conversation["last_message"] is None
        assert {p["role"] for p in conversation["participants"]} == {"client", "admin"}
        assert conversation["metadata"] == {"subject": None, "priority": "normal", "tags": []}

    def test_second_call_returns_same_conversation(self, db, admin_user, conversation):
        again = run(conversation_store.get_or_create_conversation(db, _conv_input(subject="Other"), admin_user))
        assert again["conversation_id"] == conversation["conversation_id"]
        assert again["created_at"] == conversation["created_at"]
        assert run(db.conversations.count_documents({})) == 1

    def test_concurrent_creation_yields_one_document(self, db, admin_user):
        async def open_many():
            return await asyncio.gather(*[
                conversation_store.get_or_create_conversation(db, _conv_input(), admin_user) for _ in range(5)
            ])

        results = run(open_many())
        assert len({c["conversation_id"] for c in results}) == 1
        assert run(db.conversations.count_documents({})) == 1

    def test_archived_conversation_reactivated(self, db, admin_user, conversation):
        run(conversation_store.update_conversation(
            db, conversation["conversation_id"], ConversationUpdate(status="archived")
        ))
        reopened = run(conversation_store.get_or_create_conversation(db, _conv_input(), admin_user))
        assert reopened["conversation_id"] == conversation["conversation_id"]
        assert reopened["status"] == "active"
        assert run(conversation_store.get_conversation(db, conversation["conversation_id"]))["status"] == "active"

    def test_self_conversation_rejected(self, db, admin_user):
        with pytest.raises(ValidationError):
            run(conversation_store.get_or_create_conversation(db, _conv_input(client_id=ADMIN_ID), admin_user))


class TestSendMessage:
    """Message insert + last message + unread increment"""

    def test_send_increments_recipient_unread(self, db, admin_user, conversation):
        cid = conversation["conversation_id"]
        message = run(conversation_store.send_message(
            db, cid, MessageCreate(recipient_id=CLIENT_ID, text="Your quote is ready"), admin_user
        ))
        assert message["status"] == "sent"
        assert message["sender_role"] == "admin"

        updated = run(conversation_store.get_conversation(db, cid))
        assert updated["unread_count"][CLIENT_ID] == 1
        assert updated["unread_count"][ADMIN_ID] == 0
        assert updated["last_message"]["text"] == "Your quote is ready"
        assert updated["last_message"]["message_id"] == message["message_id"]

    def test_unknown_conversation_writes_nothing(self, db, admin_user):
        with pytest.raises(NotFoundError):
            run(conversation_store.send_message(
                db, "conv_missing", MessageCreate(recipient_id=CLIENT_ID, text="Hi"), admin_user
            ))
        assert run(db.messages.count_documents({})) == 0

    def test_recipient_must_be_participant(self, db, admin_user, conversation):
        with pytest.raises(ValidationError):
            run(conversation_store.send_message(
                db, conversation["conversation_id"], MessageCreate(recipient_id="user_stranger", text="Hi"), admin_user
            ))
        assert run(db.messages.count_documents({})) == 0

    def test_message_to_self_rejected(self, db, admin_user, conversation):
        with pytest.raises(ValidationError):
            run(conversation_store.send_message(
                db, conversation["conversation_id"], MessageCreate(recipient_id=ADMIN_ID, text="Hi"), admin_user
            ))

    def test_text_validation(self):
        with pytest.raises(ValueError):
            MessageCreate(recipient_id=CLIENT_ID, text="   ")
        with pytest.raises(ValueError):
            MessageCreate(recipient_id=CLIENT_ID, text="x" * 2001)
        assert MessageCreate(recipient_id=CLIENT_ID, text="x" * 2000).text

    def test_system_message_does_not_count_unread(self, db, conversation):
        cid = conversation["conversation_id"]
        message = run(conversation_store.send_system_message(db, cid, "Order confirmed"))
        assert message["is_system_message"] is True
        assert message["type"] == "system"
        updated = run(conversation_store.get_conversation(db, cid))
        assert updated["unread_count"] == {CLIENT_ID: 0, ADMIN_ID: 0}
        assert updated["last_message"]["text"] == "Order confirmed"


class TestReceipts:
    """Delivered/read progression and unread reset"""

    def _send(self, db, cid, sender, recipient_id, text):
        return run(conversation_store.send_message(db, cid, MessageCreate(recipient_id=recipient_id, text=text), sender))

    def test_delivered_then_read(self, db, admin_user, conversation):
        cid = conversation["conversation_id"]
        self._send(db, cid, admin_user, CLIENT_ID, "One")
        self._send(db, cid, admin_user, CLIENT_ID, "Two")

        # the sender fetching does not deliver its own messages
        assert run(conversation_store.mark_messages_delivered(db, cid, ADMIN_ID)) == 0
        assert run(conversation_store.mark_messages_delivered(db, cid, CLIENT_ID)) == 2

        assert run(conversation_store.mark_messages_read(db, cid, CLIENT_ID, ADMIN_ID)) == 2
        messages = run(conversation_store.list_messages(db, cid))
        assert [m["status"] for m in messages] == ["read", "read"]
        assert messages[0]["read_by"][0]["user_id"] == CLIENT_ID
        assert messages[0]["read_at"]

    def test_status_moves_forward_only(self, db, admin_user, conversation):
        cid = conversation["conversation_id"]
        message = self._send(db, cid, admin_user, CLIENT_ID, "Hello")
        mid = message["message_id"]

        read = run(conversation_store.update_message_status(db, cid, mid, "read", CLIENT_ID))
        assert read["status"] == "read"
        back = run(conversation_store.update_message_status(db, cid, mid, "delivered", CLIENT_ID))
        assert back["status"] == "read"

    def test_update_status_missing_message(self, db, conversation):
        with pytest.raises(NotFoundError):
            run(conversation_store.update_message_status(db, conversation["conversation_id"], "msg_x", "read", CLIENT_ID))

    def test_mark_as_read_resets_unread(self, db, admin_user, conversation):
        cid = conversation["conversation_id"]
        for text in ("a", "b", "c"):
            self._send(db, cid, admin_user, CLIENT_ID, text)
        assert run(conversation_store.get_conversation(db, cid))["unread_count"][CLIENT_ID] == 3

        run(conversation_store.mark_as_read(db, cid, CLIENT_ID))
        assert run(conversation_store.get_conversation(db, cid))["unread_count"][CLIENT_ID] == 0

    def test_unread_totals(self, db, admin_user, client_user, conversation):
        cid = conversation["conversation_id"]
        self._send(db, cid, client_user, ADMIN_ID, "Question 1")
        self._send(db, cid, client_user, ADMIN_ID, "Question 2")
        other = run(conversation_store.get_or_create_conversation(db, _conv_input(order_id=None), admin_user))
        self._send(db, other["conversation_id"], client_user, ADMIN_ID, "General question")

        totals = run(conversation_store.unread_totals(db, ADMIN_ID))
        assert totals["total"] == 3
        assert totals["conversations"] == {cid: 2, other["conversation_id"]: 1}


class TestListAndDelete:
    def test_list_filters(self, db, admin_user, conversation):
        run(conversation_store.get_or_create_conversation(
            db, _conv_input(order_id=None, order_number=None, client_id="user_c2", client_name="Paul Biya"), admin_user
        ))
        everything = run(conversation_store.list_conversations(db, admin_id=ADMIN_ID))
        assert everything["total"] == 2

        with_order = run(conversation_store.list_conversations(db, admin_id=ADMIN_ID, has_order=True))
        assert [c["conversation_id"] for c in with_order["conversations"]] == [conversation["conversation_id"]]

        by_name = run(conversation_store.list_conversations(db, admin_id=ADMIN_ID, search="paul"))
        assert by_name["total"] == 1

        run(conversation_store.update_conversation(
            db, conversation["conversation_id"], ConversationUpdate(status="closed")
        ))
        active = run(conversation_store.list_conversations(db, admin_id=ADMIN_ID, status="active"))
        assert active["total"] == 1

    def test_metadata_merge(self, db, conversation):
        updated = run(conversation_store.update_conversation(
            db, conversation["conversation_id"],
            ConversationUpdate(metadata={"priority": "urgent", "tags": ["vip"]})
        ))
        assert updated["metadata"]["priority"] == "urgent"
        assert updated["metadata"]["tags"] == ["vip"]
        assert updated["metadata"]["subject"] is None

    def test_soft_delete_hides_message(self, db, admin_user, conversation):
        cid = conversation["conversation_id"]
        message = run(conversation_store.send_message(db, cid, MessageCreate(recipient_id=CLIENT_ID, text="Oops"), admin_user))
        run(conversation_store.delete_message(db, cid, message["message_id"], admin_user))
        assert run(conversation_store.list_messages(db, cid)) == []
        stored = run(db.messages.find_one({"message_id": message["message_id"]}))
        assert stored["is_deleted"] is True

    def test_client_cannot_delete_admin_message(self, db, admin_user, client_user, conversation):
        cid = conversation["conversation_id"]
        message = run(conversation_store.send_message(db, cid, MessageCreate(recipient_id=CLIENT_ID, text="Hi"), admin_user))
        with pytest.raises(NotFoundError):
            run(conversation_store.delete_message(db, cid, message["message_id"], client_user))


class TestConversationsApi:
    """/api/conversations end to end"""

    def test_round_trip(self, admin_api, client_api, db):
        res = admin_api.post("/api/conversations", json={"client_id": CLIENT_ID, "client_name": "Jane Doe"})
        assert res.status_code == 200, res.text
        cid = res.json()["conversation_id"]

        res = admin_api.post(f"/api/conversations/{cid}/messages", json={"recipient_id": CLIENT_ID, "text": "Welcome!"})
        assert res.status_code == 200, res.text

        assert client_api.get("/api/conversations/unread").json()["total"] == 1

        listing = client_api.get(f"/api/conversations/{cid}/messages").json()
        assert listing["count"] == 1
        assert listing["messages"][0]["status"] == "delivered"

        res = client_api.put(f"/api/conversations/{cid}/read")
        assert res.json()["marked_read"] == 1
        assert client_api.get("/api/conversations/unread").json()["total"] == 0

        # recipient got an in-app notification
        notes = run(db.notifications.find({"recipient_id": CLIENT_ID}, {"_id": 0}).to_list(10))
        assert notes[0]["title"] == "New message from Test Admin"
        assert notes[0]["body"] == "Welcome!"
        print(f"✓ Conversation {cid} round trip")

    def test_client_cannot_open_conversation(self, client_api):
        res = client_api.post("/api/conversations", json={"client_id": CLIENT_ID, "client_name": "Jane Doe"})
        assert res.status_code == 403

    def test_missing_conversation(self, admin_api):
        res = admin_api.get("/api/conversations/conv_missing")
        assert res.status_code == 404
        assert res.json()["error"] == "not_found"

    def test_long_message_preview_truncated(self, admin_api, db):
        cid = admin_api.post("/api/conversations", json={"client_id": CLIENT_ID, "client_name": "Jane Doe"}).json()["conversation_id"]
        admin_api.post(f"/api/conversations/{cid}/messages", json={"recipient_id": CLIENT_ID, "text": "x" * 150})
        note = run(db.notifications.find_one({"recipient_id": CLIENT_ID}))
        assert len(note["body"]) == 100
        assert note["body"].endswith("...")


class TestClientLookup:
    """Finding a client to start a conversation with"""

    @pytest.fixture
    def more_clients(self, db):
        run(db.users.insert_many([
            {"user_id": "user_client02", "email": "paul.mbarga@yahoo.fr", "name": "Paul Mbarga", "role": "client",
             "phone": "+237670000000"},
            {"user_id": "user_staff01", "email": "jane.staff@gmail.com", "name": "Jane Staff", "role": "staff"},
        ]))

    def test_search_by_name_or_email(self, db, more_clients):
        found = run(conversation_store.search_clients(db, "JANE"))
        assert [c["user_id"] for c in found] == [CLIENT_ID]
        found = run(conversation_store.search_clients(db, "yahoo"))
        assert found == [{"user_id": "user_client02", "email": "paul.mbarga@yahoo.fr", "name": "Paul Mbarga",
                          "phone": "+237670000000"}]

    def test_short_search_returns_nothing(self, db, more_clients):
        assert run(conversation_store.search_clients(db, "j")) == []
        assert run(conversation_store.search_clients(db, "  ")) == []

    def test_find_by_exact_email(self, db, more_clients):
        assert run(conversation_store.find_client_by_email(db, "Jane.Doe@gmail.com"))["user_id"] == CLIENT_ID
        assert run(conversation_store.find_client_by_email(db, "jane")) is None
        assert run(conversation_store.find_client_by_email(db, "jane.staff@gmail.com")) is None

    def test_list_for_messaging(self, db, more_clients):
        everyone = run(conversation_store.list_clients_for_messaging(db))
        assert [c["name"] for c in everyone] == ["Jane Doe", "Paul Mbarga"]
        assert len(run(conversation_store.list_clients_for_messaging(db, search="paul"))) == 1

    def test_lookup_api(self, admin_api, client_api, more_clients):
        res = admin_api.get("/api/users/clients/search", params={"q": "mbarga"})
        assert res.status_code == 200
        assert res.json()[0]["user_id"] == "user_client02"
        assert "fcm_tokens" not in res.json()[0]

        assert admin_api.get("/api/users/clients/by-email", params={"email": "jane.doe@gmail.com"}).json()["name"] == "Jane Doe"
        assert admin_api.get("/api/users/clients/by-email", params={"email": "nobody@gmail.com"}).status_code == 404
        assert len(admin_api.get("/api/users/clients").json()) == 2
        assert client_api.get("/api/users/clients/search", params={"q": "jane"}).status_code == 403
