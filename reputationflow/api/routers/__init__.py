"""Expose API routers."""
from . import account, messaging, payments, subscriptions

__all__ = ["account", "messaging", "payments", "subscriptions"]
