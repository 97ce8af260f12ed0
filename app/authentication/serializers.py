"""
Authentication serializers.

Token obtain/refresh request bodies are handled by simplejwt; this module
only serializes the current user for the `me/` endpoint.
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Read-only view of the authenticated user.

    Exposes the identity fields the chat clients need to render
    conversation participants and decide which rooms to subscribe to.
    """

    display_name = serializers.CharField(source="get_full_name", read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "full_name",
            "display_name",
            "role",
            "is_support_agent",
            "managed_restaurant_id",
            "email_verified",
            "date_joined",
        ]
        read_only_fields = fields
