"""Prometheus metrics for token issuance, verification and sessions."""

from __future__ import annotations

from prometheus_client import Counter

tokens_issued_total = Counter(
    "unified_auth_tokens_issued_total",
    "Tokens signed by the codec",
    ["type", "algorithm"],
)

token_verifications_total = Counter(
    "unified_auth_token_verifications_total",
    "Token verification attempts",
    ["result", "algorithm"],
)

session_operations_total = Counter(
    "unified_auth_session_operations_total",
    "Session lifecycle operations",
    ["operation", "result"],
)

auth_requests_total = Counter(
    "unified_auth_requests_total",
    "Per-request authentication decisions",
    ["result"],
)


__all__ = [
    "tokens_issued_total",
    "token_verifications_total",
    "session_operations_total",
    "auth_requests_total",
]
