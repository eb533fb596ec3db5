"""Adapter modules for external integrations."""

from .relay import CLIENT_TIMEOUT_GRACE_SECONDS, RelayClient

__all__ = [
    "CLIENT_TIMEOUT_GRACE_SECONDS",
    "RelayClient",
]
