"""
Authentication models.

User management lives outside the chat core; this slim, email-based user
model only carries what the chat core needs to resolve identities:
- role on the delivery platform (customer, driver, restaurant, admin)
- whether an admin is flagged as a support agent
- which restaurant a restaurant user manages (for restaurant rooms)

Related files:
    - managers.py: Custom user manager for email-based creation
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """Role of a user on the delivery platform."""

    CUSTOMER = "customer", "Customer"
    DRIVER = "driver", "Driver"
    RESTAURANT = "restaurant", "Restaurant"
    ADMIN = "admin", "Admin"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        full_name: Display name used in chat previews and notifications
        role: Platform role (drives room authorization in the realtime hub)
        is_support_agent: Admin available to take support conversations
        managed_restaurant_id: Restaurant id managed by a restaurant user
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin

    Usage:
        user = User.objects.create_user(
            email="user@example.com",
            password="securepassword",
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    full_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Display name shown in conversations",
    )

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CUSTOMER,
        db_index=True,
        help_text="Role of the user on the delivery platform",
    )

    is_support_agent = models.BooleanField(
        default=False,
        help_text="Whether this admin takes support conversations",
    )

    managed_restaurant_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Restaurant id this user manages (restaurant role only)",
    )

    email_verified = models.BooleanField(
        default=False,
        help_text="Whether the user's email has been verified",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.full_name or self.email

    def get_short_name(self):
        return self.full_name.split(" ")[0] if self.full_name else self.email.split("@")[0]

    @property
    def is_platform_admin(self) -> bool:
        """Admins moderate every conversation and may join admin rooms."""
        return self.role == UserRole.ADMIN or self.is_superuser
