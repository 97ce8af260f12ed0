"""
Authentication views.

Login and token refresh are served by simplejwt directly (see urls.py);
the only custom endpoint returns the authenticated user.

Related files:
    - serializers.py: UserSerializer
    - urls.py: URL routing
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import UserSerializer


class MeView(APIView):
    """
    API view for the current user.

    GET: Retrieve the authenticated user's identity

    URL: /api/v1/auth/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user",
        description="Identity, role and restaurant binding of the caller.",
        tags=["Auth"],
        responses={200: UserSerializer},
    )
    def get(self, request):
        serializer = UserSerializer(request.user, context={"request": request})
        return Response(serializer.data)
