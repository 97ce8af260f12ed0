"""
Tests for ChatEventPublisher.

The publisher gets a mocked hub (so broadcasts can be asserted without a
channel layer), the real cache coordinator and a recording bridge sender.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chat.bridge import NotificationBridge
from chat.cache import CacheCoordinator
from chat.events import ChatEventPublisher, get_publisher
from chat.hub import conversation_room, order_room, restaurant_room
from chat.models import OrderStatus
from chat.services import ConversationService, MessageService, ParticipantService
from chat.tests.conftest import RecordingSender


@pytest.fixture
def fake_hub():
    hub = MagicMock()
    hub.broadcast_to_room = AsyncMock(return_value=1)
    hub.send_to_user = AsyncMock(return_value=True)
    hub.online_users.return_value = set()
    hub.is_online.return_value = False
    return hub


@pytest.fixture
def recorder():
    return RecordingSender()


@pytest.fixture
def publisher(fake_hub, recorder):
    return ChatEventPublisher(fake_hub, CacheCoordinator(), NotificationBridge(fake_hub, recorder))


def broadcast_events(fake_hub):
    return [call.args[1] for call in fake_hub.broadcast_to_room.await_args_list]


class TestMessageEvents:
    def test_message_created_broadcasts_invalidates_and_notifies(
        self, publisher, fake_hub, recorder, customer, driver, direct_conversation
    ):
        coordinator = CacheCoordinator()
        listing_key = coordinator.conversations_key(driver.pk)
        coordinator.set(listing_key, "stale", 60)
        message = MessageService.append_text(direct_conversation, customer, "hi").data

        publisher.message_created(message)

        room, event, data = fake_hub.broadcast_to_room.await_args.args
        assert room == conversation_room(direct_conversation.id)
        assert event == "message:new"
        assert data["id"] == str(message.id)
        assert coordinator.get(listing_key) is None
        assert recorder.recipients() == [str(driver.pk)]

    def test_broadcast_failure_does_not_stop_invalidation(
        self, publisher, fake_hub, recorder, customer, direct_conversation
    ):
        fake_hub.broadcast_to_room.side_effect = RuntimeError("layer down")
        message = MessageService.append_text(direct_conversation, customer, "hi").data

        publisher.message_created(message)

        assert len(recorder.sent) == 1

    def test_system_message_is_never_notified(self, publisher, fake_hub, recorder, direct_conversation):
        message = MessageService.append_system(direct_conversation, "note").data

        publisher.system_message(message)

        assert broadcast_events(fake_hub) == ["message:new"]
        assert recorder.sent == []

    def test_deleted_and_pinned_events(self, publisher, fake_hub, customer, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "hi").data
        MessageService.pin(message, customer)
        publisher.pin_changed(message)
        MessageService.soft_delete(message, customer)
        publisher.message_deleted(message)

        assert broadcast_events(fake_hub) == ["message:pinned", "message:deleted"]
        deleted = fake_hub.broadcast_to_room.await_args.args[2]
        assert deleted["delete_type"] == "sender"

    def test_reaction_add_and_remove(self, publisher, fake_hub, customer, driver, direct_conversation):
        message = MessageService.append_text(direct_conversation, customer, "hi").data

        publisher.reaction_changed(message, driver, "👍")
        publisher.reaction_changed(message, driver, None)

        assert broadcast_events(fake_hub) == ["message:reaction", "message:reaction:removed"]

    def test_read_receipts_respect_privacy(self, publisher, fake_hub, customer, direct_conversation):
        publisher.messages_read(direct_conversation, customer, count=2)
        assert fake_hub.broadcast_to_room.await_args.kwargs["exclude_user"] == customer.pk

        fake_hub.broadcast_to_room.reset_mock()
        direct_conversation.privacy_settings = {"show_read_receipts": False}
        publisher.messages_read(direct_conversation, customer, count=2)
        fake_hub.broadcast_to_room.assert_not_awaited()


class TestConversationEvents:
    def test_conversation_created_goes_to_each_participant(
        self, publisher, fake_hub, customer, driver, direct_conversation
    ):
        publisher.conversation_created(direct_conversation)

        users = {call.args[0] for call in fake_hub.send_to_user.await_args_list}
        assert users == {customer.pk, driver.pk}

    def test_order_status_reaches_order_and_restaurant_rooms(
        self, publisher, fake_hub, customer, order_conversation
    ):
        ConversationService.transition_order(order_conversation, customer, OrderStatus.COMPLETED)

        publisher.conversation_changed(order_conversation)

        rooms = [call.args[0] for call in fake_hub.broadcast_to_room.await_args_list]
        assert rooms == [
            conversation_room(order_conversation.id),
            order_room("order-12345"),
            restaurant_room("restaurant-1"),
        ]
        data = fake_hub.broadcast_to_room.await_args.args[2]
        assert data["is_active"] is False
        assert data["metadata"]["status"] == OrderStatus.COMPLETED

    def test_participant_added_notifies_offline_user(
        self, publisher, fake_hub, recorder, customer, outsider, group_conversation
    ):
        participant = ParticipantService.add_participant(group_conversation, customer, outsider).data

        publisher.participant_added(group_conversation, participant, customer)

        assert broadcast_events(fake_hub) == ["participant:added"]
        fake_hub.send_to_user.assert_awaited_once()
        assert recorder.recipients("chat_participant_added") == [str(outsider.pk)]

    def test_participant_removed_tells_the_removed_user(
        self, publisher, fake_hub, customer, driver, group_conversation
    ):
        participant = ParticipantService.remove_participant(group_conversation, customer, driver).data

        publisher.participant_removed(group_conversation, participant)

        user_id, event, data = fake_hub.send_to_user.await_args.args
        assert (user_id, event) == (driver.pk, "participant:removed")
        assert data["voluntary"] is False


class TestProcessWidePublisher:
    def test_app_publisher_shares_the_app_hub(self, hub):
        assert get_publisher().hub is hub
