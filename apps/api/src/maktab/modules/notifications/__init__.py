"""
Notifications Module

Guardian-facing emails (payment link, confirmation, rejection) sent
through Resend on a best-effort basis.
"""

from .dispatcher import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
