"""
Tests for UserManager.

The UserManager provides:
- create_user(): Creates regular users with optional password
- create_superuser(): Creates admin users with elevated privileges

Related files:
    - managers.py: Implementation under test
    - models.py: User model that uses this manager
"""

import pytest

from authentication.models import User, UserRole


class TestUserManagerCreateUser:
    """Tests for UserManager.create_user() method."""

    def test_creates_user_with_email_and_password(self, db):
        """
        Given valid email and password
        When create_user is called
        Then a user is created with those credentials
        """
        user = User.objects.create_user(
            email="mgr_create_user@example.com", password="SecurePass123!"
        )

        assert user.pk is not None
        assert user.email == "mgr_create_user@example.com"
        assert user.check_password("SecurePass123!") is True

    def test_normalizes_email_domain_to_lowercase(self, db):
        user = User.objects.create_user(
            email="Test.User@EXAMPLE.COM", password="TestPass123!"
        )

        assert user.email == "Test.User@example.com"

    @pytest.mark.parametrize("email", ["", None])
    def test_raises_valueerror_when_email_is_missing(self, db, email):
        with pytest.raises(ValueError) as exc_info:
            User.objects.create_user(email=email, password="TestPass123!")

        assert "Email field must be set" in str(exc_info.value)

    def test_creates_user_without_password(self, db):
        """
        Given an email but no password
        When create_user is called
        Then user is created with unusable password
        """
        user = User.objects.create_user(email="nopass@example.com", password=None)

        assert user.has_usable_password() is False
        assert user.check_password("") is False

    def test_sets_default_flags_for_regular_user(self, db):
        user = User.objects.create_user(
            email="defaults@example.com", password="TestPass123!"
        )

        assert user.is_active is True
        assert user.is_staff is False
        assert user.is_superuser is False
        assert user.role == UserRole.CUSTOMER
        assert user.is_support_agent is False

    def test_extra_fields_are_passed_to_model(self, db):
        user = User.objects.create_user(
            email="owner@example.com",
            password="TestPass123!",
            role=UserRole.RESTAURANT,
            managed_restaurant_id="restaurant-7",
            full_name="Owner Person",
        )

        assert user.role == UserRole.RESTAURANT
        assert user.managed_restaurant_id == "restaurant-7"
        assert user.full_name == "Owner Person"


class TestUserManagerCreateSuperuser:
    """Tests for UserManager.create_superuser() method."""

    def test_creates_superuser_with_correct_flags(self, db):
        user = User.objects.create_superuser(
            email="admin@example.com", password="AdminPass123!"
        )

        assert user.is_staff is True
        assert user.is_superuser is True
        assert user.email_verified is True
        assert user.role == UserRole.ADMIN

    @pytest.mark.parametrize("flag", ["is_staff", "is_superuser"])
    def test_raises_valueerror_when_flag_is_false(self, db, flag):
        with pytest.raises(ValueError) as exc_info:
            User.objects.create_superuser(
                email="bad@example.com", password="AdminPass123!", **{flag: False}
            )

        assert f"Superuser must have {flag}=True." in str(exc_info.value)
