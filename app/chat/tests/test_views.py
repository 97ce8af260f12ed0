"""
Tests for chat API endpoints.

Covers:
- Authentication requirement
- Conversation create/list/retrieve/update/delete and lifecycle actions
- Participant management and join codes
- Message send/list/edit/delete, reactions, pins, stars, receipts, search
- Error code to HTTP status mapping
"""

import pytest
from rest_framework import status

from chat.models import Conversation, Message, MessageType, OrderStatus
from chat.services import ConversationService, MessageService
from chat.tests.factories import GroupConversationFactory, MessageFactory

BASE = "/api/v1/chat/conversations/"


def conversation_url(conversation, suffix=""):
    return f"{BASE}{conversation.id}/{suffix}"


def messages_url(conversation, suffix=""):
    return f"{BASE}{conversation.id}/messages/{suffix}"


class TestAuthentication:
    def test_anonymous_requests_are_rejected(self, api_client, db):
        assert api_client.get(BASE).status_code == status.HTTP_401_UNAUTHORIZED


# =============================================================================
# Conversations
# =============================================================================


class TestConversationCreate:
    def test_create_direct_returns_existing_on_repeat(self, customer_client, driver):
        first = customer_client.post(BASE, {"type": "direct", "participant_ids": [driver.pk]}, format="json")
        second = customer_client.post(BASE, {"type": "direct", "participant_ids": [driver.pk]}, format="json")

        assert first.status_code == status.HTTP_201_CREATED
        assert first.data["id"] == second.data["id"]
        assert len(first.data["participants"]) == 2

    def test_direct_needs_exactly_one_other_user(self, customer_client, driver, other_customer):
        response = customer_client.post(
            BASE, {"type": "direct", "participant_ids": [driver.pk, other_customer.pk]}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "participant_ids" in response.data

    def test_direct_with_unknown_user(self, customer_client):
        response = customer_client.post(BASE, {"type": "direct", "participant_ids": [999999]}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_direct_with_self(self, customer_client, customer):
        response = customer_client.post(BASE, {"type": "direct", "participant_ids": [customer.pk]}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "SAME_USER"

    def test_create_group(self, customer_client, other_customer, driver):
        response = customer_client.post(
            BASE,
            {
                "type": "group",
                "title": "Office lunch",
                "participant_ids": [other_customer.pk, driver.pk],
                "is_public": True,
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["current_user_role"] == "admin"
        assert response.data["metadata"]["join_code"]
        assert response.data["stats"]["participant_count"] == 3

    def test_group_over_capacity_conflicts(self, customer_client, other_customer, driver):
        response = customer_client.post(
            BASE,
            {
                "type": "group",
                "title": "Pair",
                "participant_ids": [other_customer.pk, driver.pk],
                "max_participants": 2,
            },
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "CONVERSATION_FULL"

    def test_create_order_chat(self, customer_client, driver):
        response = customer_client.post(
            BASE,
            {"type": "order", "order_id": "ord-77", "driver_id": driver.pk, "restaurant_id": "r-5"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["metadata"] == {
            "order_id": "ord-77",
            "restaurant_id": "r-5",
            "driver_id": driver.pk,
            "status": OrderStatus.ACTIVE,
        }
        assert response.data["expires_at"] is not None

    def test_order_requires_order_id(self, customer_client):
        response = customer_client.post(BASE, {"type": "order"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_create_support(self, customer_client):
        response = customer_client.post(BASE, {"type": "support", "department": "billing"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["metadata"]["status"] == "open"

    def test_broadcast_is_staff_only(self, customer_client):
        response = customer_client.post(BASE, {"type": "broadcast", "title": "Hello"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestConversationList:
    def test_lists_own_conversations_with_pagination(
        self, customer_client, direct_conversation, group_conversation, order_conversation
    ):
        response = customer_client.get(BASE, {"limit": 2})

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data["results"]) == 2
        assert response.data["pagination"] == {
            "page": 1,
            "limit": 2,
            "total": 3,
            "total_pages": 2,
            "has_more": True,
        }

    def test_type_filter(self, customer_client, direct_conversation, group_conversation):
        response = customer_client.get(BASE, {"type": "group"})

        assert [item["id"] for item in response.data["results"]] == [str(group_conversation.id)]

    def test_listing_is_cached_until_a_write(
        self, customer_client, driver_client, driver, direct_conversation
    ):
        assert customer_client.get(BASE).data["results"][0]["unread_count"] == 0

        Message.objects.create(
            conversation=direct_conversation,
            sender=driver,
            content={"text": "written behind the API"},
        )
        assert customer_client.get(BASE).data["results"][0]["unread_count"] == 0

        driver_client.post(messages_url(direct_conversation), {"text": "hi"}, format="json")
        assert customer_client.get(BASE).data["results"][0]["unread_count"] == 2

    def test_stats(self, customer_client, direct_conversation):
        response = customer_client.get(f"{BASE}stats/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["overview"]["total_conversations"] == 1


class TestConversationDetail:
    def test_retrieve_includes_participants_and_stats(self, customer_client, customer, direct_conversation):
        MessageService.append_text(direct_conversation, customer, "hi")

        response = customer_client.get(conversation_url(direct_conversation))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["stats"]["message_count"] == 1
        assert response.data["stats"]["messages_by_type"] == {"text": 1}
        assert {p["user"]["id"] for p in response.data["participants"]} == set(
            direct_conversation.participant_user_ids()
        )

    def test_outsider_gets_404(self, outsider_client, direct_conversation):
        response = outsider_client.get(conversation_url(direct_conversation))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "NOT_FOUND"

    def test_member_cannot_rename_group(self, driver_client, group_conversation):
        response = driver_client.patch(conversation_url(group_conversation), {"title": "x"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_updates_group(self, customer_client, group_conversation):
        response = customer_client.patch(
            conversation_url(group_conversation),
            {"title": "Dinner", "tags": ["food"]},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["title"] == "Dinner"
        assert response.data["tags"] == ["food"]

    def test_empty_update_is_rejected(self, customer_client, group_conversation):
        response = customer_client.patch(conversation_url(group_conversation), {}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_delete_direct(self, customer_client, direct_conversation):
        response = customer_client.delete(conversation_url(direct_conversation))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert Conversation.objects.get(pk=direct_conversation.pk).is_deleted is True

    def test_archive_and_unarchive(self, customer_client, direct_conversation):
        archived = customer_client.post(conversation_url(direct_conversation, "archive/"))
        assert archived.data["archived_at"] is not None
        assert customer_client.get(BASE).data["pagination"]["total"] == 0

        restored = customer_client.delete(conversation_url(direct_conversation, "archive/"))
        assert restored.data["archived_at"] is None

    def test_mute_and_unmute(self, customer_client, direct_conversation):
        muted = customer_client.post(conversation_url(direct_conversation, "mute/"), {"hours": 8}, format="json")
        assert muted.data["is_muted"] is True

        unmuted = customer_client.delete(conversation_url(direct_conversation, "mute/"))
        assert unmuted.data["is_muted"] is False

    def test_mark_conversation_read(self, customer_client, driver, direct_conversation):
        MessageFactory.create_batch(3, conversation=direct_conversation, sender=driver)

        response = customer_client.post(conversation_url(direct_conversation, "read/"))

        assert response.data == {"marked": 3}

    def test_order_status_transition(self, driver_client, order_conversation):
        response = driver_client.post(
            conversation_url(order_conversation, "order-status/"), {"status": "completed"}, format="json"
        )
        repeat = driver_client.post(
            conversation_url(order_conversation, "order-status/"), {"status": "cancelled"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_active"] is False
        assert repeat.status_code == status.HTTP_409_CONFLICT
        assert repeat.data["error_code"] == "INVALID_TRANSITION"

    def test_support_action_by_customer(self, customer_client, support_conversation):
        resolve = customer_client.post(
            conversation_url(support_conversation, "support/"), {"action": "resolve"}, format="json"
        )
        close = customer_client.post(
            conversation_url(support_conversation, "support/"), {"action": "close"}, format="json"
        )

        assert resolve.status_code == status.HTTP_403_FORBIDDEN
        assert close.status_code == status.HTTP_200_OK
        assert close.data["metadata"]["status"] == "closed"


class TestParticipantEndpoints:
    def test_admin_adds_participant(self, customer_client, outsider, group_conversation):
        response = customer_client.post(
            conversation_url(group_conversation, "participants/"), {"user_id": outsider.pk}, format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["user"]["id"] == outsider.pk
        assert response.data["role"] == "member"

    def test_adding_existing_participant_conflicts(self, customer_client, driver, group_conversation):
        response = customer_client.post(
            conversation_url(group_conversation, "participants/"), {"user_id": driver.pk}, format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_admin_removes_participant(self, customer_client, driver, group_conversation):
        response = customer_client.delete(conversation_url(group_conversation, f"participants/{driver.pk}/"))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert driver.pk not in group_conversation.participant_user_ids()

    def test_leave(self, driver_client, driver, group_conversation):
        response = driver_client.post(conversation_url(group_conversation, "leave/"))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert driver_client.get(conversation_url(group_conversation)).status_code == 404

    def test_join_by_code(self, outsider_client, customer):
        group = GroupConversationFactory(
            created_by=customer, details__is_public=True, details__join_code="JOIN42"
        )

        response = outsider_client.post(f"{BASE}join/", {"code": "join42"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["id"] == str(group.id)


# =============================================================================
# Messages
# =============================================================================


class TestMessageEndpoints:
    def test_send_text(self, customer_client, direct_conversation):
        response = customer_client.post(messages_url(direct_conversation), {"text": "On my way?"}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["content"] == {"text": "On my way?"}
        assert response.data["message_type"] == MessageType.TEXT

    def test_send_location(self, driver_client, order_conversation):
        response = driver_client.post(
            messages_url(order_conversation),
            {"message_type": "location", "content": {"lat": 10.5, "lng": 106.1, "address": "Gate 3"}},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["display_content"] == "[location] Gate 3"

    def test_send_to_closed_order_chat(self, driver, driver_client, order_conversation):
        ConversationService.transition_order(order_conversation, driver, OrderStatus.CANCELLED)

        response = driver_client.post(messages_url(order_conversation), {"text": "hi"}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "CONVERSATION_INACTIVE"
        assert not Message.objects.filter(
            conversation=order_conversation, message_type=MessageType.TEXT
        ).exists()

    def test_send_invalid_payload(self, driver_client, order_conversation):
        response = driver_client.post(
            messages_url(order_conversation),
            {"message_type": "location", "content": {"lat": 200, "lng": 0}},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_PAYLOAD"

    def test_empty_text(self, customer_client, direct_conversation):
        response = customer_client.post(messages_url(direct_conversation), {"text": "   "}, format="json")

        assert response.data["error_code"] == "EMPTY_CONTENT"

    def test_outsider_cannot_send(self, outsider_client, direct_conversation):
        response = outsider_client.post(messages_url(direct_conversation), {"text": "hi"}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_send_media_descriptor(self, customer_client, direct_conversation):
        response = customer_client.post(
            messages_url(direct_conversation, "media/"),
            {
                "url": "https://cdn.example.com/uploads/receipt.pdf",
                "filename": "receipt.pdf",
                "size": 4096,
                "mime_type": "application/pdf",
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["message_type"] == MessageType.FILE
        assert response.data["content"]["size"] == 4096

    def test_list_messages_marks_read(self, customer_client, customer, driver, direct_conversation):
        MessageFactory.create_batch(3, conversation=direct_conversation, sender=driver)

        response = customer_client.get(messages_url(direct_conversation), {"limit": 2})

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data["results"]) == 2
        assert response.data["pagination"]["total"] == 3
        assert MessageService.unread_count(direct_conversation, customer) == 0

    def test_edit_and_history(self, customer_client, customer, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "v1").data

        edited = customer_client.patch(messages_url(direct_conversation, f"{message.id}/"), {"text": "v2"}, format="json")
        history = customer_client.get(messages_url(direct_conversation, f"{message.id}/history/"))

        assert edited.status_code == status.HTTP_200_OK
        assert edited.data["edited"]["edit_count"] == 1
        assert [entry["content"] for entry in history.data] == [{"text": "v1"}]

    def test_editing_someone_elses_message_is_forbidden(self, driver_client, customer, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "mine").data

        response = driver_client.patch(messages_url(direct_conversation, f"{message.id}/"), {"text": "x"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "NOT_AUTHOR"

    def test_delete_message(self, customer_client, customer, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "oops").data

        response = customer_client.delete(messages_url(direct_conversation, f"{message.id}/"))
        detail = customer_client.get(messages_url(direct_conversation, f"{message.id}/"))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert detail.data["content"] == {}
        assert detail.data["display_content"] == "[Message deleted]"

    def test_message_from_another_conversation_is_404(
        self, customer_client, customer, direct_conversation, group_conversation
    ):
        message = MessageService.append_text(group_conversation, customer, "elsewhere").data

        response = customer_client.get(messages_url(direct_conversation, f"{message.id}/"))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_reactions(self, driver_client, customer, driver, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "arrived").data
        url = messages_url(direct_conversation, f"{message.id}/reactions/")

        added = driver_client.post(url, {"emoji": "🎉"}, format="json")
        removed = driver_client.delete(url)
        invalid = driver_client.post(url, {"emoji": "yay"}, format="json")

        assert added.data["reactions"] == [{"emoji": "🎉", "count": 1, "user_ids": [driver.pk]}]
        assert removed.data["reactions"] == []
        assert invalid.data["error_code"] == "INVALID_EMOJI"

    def test_pin_star_and_read(self, driver_client, customer, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "gate code 1234").data

        pinned = driver_client.post(messages_url(direct_conversation, f"{message.id}/pin/"))
        starred = driver_client.post(messages_url(direct_conversation, f"{message.id}/star/"))
        read = driver_client.post(messages_url(direct_conversation, f"{message.id}/read/"))

        assert pinned.data["pinned"]["is_pinned"] is True
        assert starred.data == {"starred": True}
        assert read.data == {"created": True}

    def test_forward(self, customer_client, customer, direct_conversation, group_conversation):
        message = MessageService.append_text(direct_conversation, customer, "share this").data

        response = customer_client.post(
            messages_url(direct_conversation, f"{message.id}/forward/"),
            {"conversation_id": str(group_conversation.id)},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["conversation_id"] == group_conversation.id
        assert response.data["forwarded_from_id"] == message.id

    def test_search(self, customer_client, customer, driver, direct_conversation):
        MessageService.append_text(direct_conversation, customer, "extra napkins please")
        MessageService.append_text(direct_conversation, driver, "ok")

        found = customer_client.get(messages_url(direct_conversation, "search/"), {"q": "NAPKINS"})
        missing_filter = customer_client.get(messages_url(direct_conversation, "search/"))

        assert [item["content"]["text"] for item in found.data["results"]] == ["extra napkins please"]
        assert missing_filter.data["error_code"] == "SEARCH_FILTER_REQUIRED"


@pytest.mark.parametrize(
    "error_code,expected",
    [
        ("NOT_PARTICIPANT", 404),
        ("NOT_AUTHOR", 403),
        ("ALREADY_PARTICIPANT", 409),
        ("CONTENT_TOO_LONG", 400),
    ],
)
def test_error_status_mapping(error_code, expected):
    from core.services import ServiceResult
    from chat.views import error_response

    response = error_response(ServiceResult.failure("boom", error_code=error_code))

    assert response.status_code == expected
    assert response.data == {"error": "boom", "error_code": error_code}
