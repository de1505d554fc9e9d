"""Common utilities shared by libraries and services (structured logging)."""
