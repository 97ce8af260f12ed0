"""
Authentication application.

Provides the slim, email-based user model the chat core resolves
identities and platform roles against.

Usage:
    from authentication.models import User, UserRole
"""
