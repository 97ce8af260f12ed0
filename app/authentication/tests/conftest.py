"""
Test configuration and fixtures for authentication tests.

Usage:
    def test_example(user, authenticated_client):
        response = authenticated_client.get("/api/v1/auth/me/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.models import User
from authentication.tests.factories import (
    AdminFactory,
    DriverFactory,
    RestaurantUserFactory,
    UserFactory,
)


@pytest.fixture
def user(db):
    """Create a verified customer."""
    return UserFactory(email_verified=True)


@pytest.fixture
def driver(db):
    return DriverFactory()


@pytest.fixture
def restaurant_user(db):
    return RestaurantUserFactory(managed_restaurant_id="restaurant-42")


@pytest.fixture
def admin_user(db):
    return AdminFactory()


@pytest.fixture
def superuser(db):
    """Create a superuser with admin privileges."""
    return User.objects.create_superuser(
        email="superuser@example.com",
        password="SuperPass123!",
    )


@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    """API client carrying a bearer access token for `user`."""
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return api_client
