"""
Authentication URL configuration.

URL Structure:
    /api/v1/auth/token/          - POST email + password, returns access/refresh
    /api/v1/auth/token/refresh/  - POST refresh token, returns new access token
    /api/v1/auth/me/             - GET current user

The access token is also what WebSocket clients pass to ws/chat/, either
as ?token=<jwt> or as the second item of the "jwt" subprotocol.
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import MeView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("me/", MeView.as_view(), name="me"),
]
