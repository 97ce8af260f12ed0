"""
Test configuration and fixtures for chat tests.

This module provides:
- Per-test reset of the process-wide hub, cache and notification sender
- User fixtures for each platform role
- Conversation fixtures for every conversation type
- API client helpers for authenticated requests

Usage:
    def test_example(direct_conversation, customer_client):
        response = customer_client.get(
            f"/api/v1/chat/conversations/{direct_conversation.id}/"
        )
        assert response.status_code == 200
"""

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import (
    AdminFactory,
    DriverFactory,
    RestaurantUserFactory,
    UserFactory,
)
from chat.events import get_publisher
from chat.hub import get_hub
from chat.tests.factories import (
    DirectConversationFactory,
    GroupConversationFactory,
    OrderConversationFactory,
    SupportConversationFactory,
)


class RecordingSender:
    """NotificationSender that records hand-offs instead of enqueueing them."""

    def __init__(self):
        self.sent = []

    def send(self, user_id, event_type, payload):
        self.sent.append((str(user_id), event_type, payload))
        return True

    def recipients(self, event_type=None):
        return [
            user_id
            for user_id, sent_type, _ in self.sent
            if event_type is None or sent_type == event_type
        ]


# =============================================================================
# Process-wide state
# =============================================================================


@pytest.fixture(autouse=True)
def reset_realtime_state():
    """Forget live connections and cached listings between tests."""
    get_hub().reset()
    cache.clear()
    yield
    get_hub().reset()
    cache.clear()


@pytest.fixture(autouse=True)
def notification_sender():
    """Swap the Celery sender for a recorder on the process-wide bridge."""
    bridge = get_publisher().bridge
    original = bridge.sender
    recorder = RecordingSender()
    bridge.sender = recorder
    yield recorder
    bridge.sender = original


@pytest.fixture
def hub():
    return get_hub()


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def customer(db):
    return UserFactory(full_name="Carla Customer")


@pytest.fixture
def other_customer(db):
    return UserFactory(full_name="Oscar Other")


@pytest.fixture
def driver(db):
    return DriverFactory(full_name="Dana Driver")


@pytest.fixture
def restaurant_user(db):
    return RestaurantUserFactory(managed_restaurant_id="restaurant-1")


@pytest.fixture
def platform_admin(db):
    return AdminFactory(full_name="Ada Admin")


@pytest.fixture
def support_agent(db):
    return AdminFactory(full_name="Sam Support", is_support_agent=True)


@pytest.fixture
def outsider(db):
    """A user who is not a participant in any test conversation."""
    return UserFactory(full_name="Nobody")


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def direct_conversation(customer, driver):
    return DirectConversationFactory(created_by=customer, other=driver)


@pytest.fixture
def group_conversation(customer, other_customer, driver):
    """Group with customer as admin and two members."""
    return GroupConversationFactory(
        created_by=customer,
        title="Lunch crew",
        members=[other_customer, driver],
    )


@pytest.fixture
def order_conversation(customer, driver):
    return OrderConversationFactory(
        created_by=customer,
        details__order_id="order-12345",
        details__driver=driver,
        details__restaurant_id="restaurant-1",
    )


@pytest.fixture
def support_conversation(customer):
    return SupportConversationFactory(created_by=customer)


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    """Build an API client authenticated as the given user."""

    def build(user):
        client = APIClient()
        token = RefreshToken.for_user(user).access_token
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return build


@pytest.fixture
def customer_client(client_for, customer):
    return client_for(customer)


@pytest.fixture
def driver_client(client_for, driver):
    return client_for(driver)


@pytest.fixture
def outsider_client(client_for, outsider):
    return client_for(outsider)
