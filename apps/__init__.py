"""
Apps package - FastAPI services built on the unified auth library.

This package contains:
- auth_service: Key publication, login/refresh/logout, Keycloak sign-in and sessions
"""
