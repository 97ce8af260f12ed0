"""
Tests for the User model.

The User model is a slim, email-based user carrying the identity fields
the chat core resolves: role, support-agent flag and managed restaurant.
"""

import pytest
from django.db import IntegrityError

from authentication.models import UserRole
from authentication.tests.factories import (
    AdminFactory,
    DriverFactory,
    RestaurantUserFactory,
    UserFactory,
)


class TestUserModel:
    """Tests for User fields and helpers."""

    def test_user_email_must_be_unique(self, db):
        UserFactory(email="dup@example.com")

        with pytest.raises(IntegrityError):
            UserFactory(email="dup@example.com")

    def test_str_returns_email(self, db):
        user = UserFactory(email="someone@example.com")

        assert str(user) == "someone@example.com"

    def test_get_full_name_falls_back_to_email(self, db):
        named = UserFactory(full_name="Ada Lovelace")
        unnamed = UserFactory(full_name="", email="anon@example.com")

        assert named.get_full_name() == "Ada Lovelace"
        assert unnamed.get_full_name() == "anon@example.com"

    def test_get_short_name(self, db):
        named = UserFactory(full_name="Ada Lovelace")
        unnamed = UserFactory(full_name="", email="anon@example.com")

        assert named.get_short_name() == "Ada"
        assert unnamed.get_short_name() == "anon"

    def test_factories_assign_roles(self, db):
        assert DriverFactory().role == UserRole.DRIVER
        owner = RestaurantUserFactory()
        assert owner.role == UserRole.RESTAURANT
        assert owner.managed_restaurant_id.startswith("restaurant-")


class TestIsPlatformAdmin:
    """Admins moderate every conversation."""

    def test_admin_role_is_platform_admin(self, db):
        assert AdminFactory().is_platform_admin is True

    def test_superuser_is_platform_admin_regardless_of_role(self, db):
        user = UserFactory(is_superuser=True)

        assert user.is_platform_admin is True

    def test_customer_is_not_platform_admin(self, db):
        assert UserFactory().is_platform_admin is False
