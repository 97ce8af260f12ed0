"""
Factory Boy factories for authentication models.

Usage:
    from authentication.tests.factories import (
        AdminFactory,
        DriverFactory,
        UserFactory,
    )

    customer = UserFactory()
    agent = AdminFactory(is_support_agent=True)
    driver = DriverFactory()
"""

import factory

from authentication.models import User, UserRole


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Creates active customers with email-based authentication.

    Examples:
        user = UserFactory()
        owner = UserFactory(role=UserRole.RESTAURANT, managed_restaurant_id="r-1")
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    full_name = factory.Sequence(lambda n: f"User {n}")
    role = UserRole.CUSTOMER
    email_verified = True
    is_active = True
    is_staff = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override create to use UserManager.create_user()."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            email=kwargs.pop("email"), password=password, **kwargs
        )


class AdminFactory(UserFactory):
    """Platform admin (moderator, optionally a support agent)."""

    email = factory.Sequence(lambda n: f"admin{n}@example.com")
    role = UserRole.ADMIN
    is_staff = True


class DriverFactory(UserFactory):
    """Delivery driver."""

    email = factory.Sequence(lambda n: f"driver{n}@example.com")
    role = UserRole.DRIVER


class RestaurantUserFactory(UserFactory):
    """User managing a restaurant."""

    email = factory.Sequence(lambda n: f"restaurant{n}@example.com")
    role = UserRole.RESTAURANT
    managed_restaurant_id = factory.Sequence(lambda n: f"restaurant-{n}")
