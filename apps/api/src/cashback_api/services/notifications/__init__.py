"""Notification service package."""

from .backend import (
    EmailBackend,
    InMemoryEmailBackend,
    LogEmailBackend,
    ResendEmailBackend,
    SMTPEmailBackend,
    build_email_backend,
)
from .service import NotificationEvent, RewardNotifier
from .templates import RenderedTemplate, render_cashback_reward

__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "LogEmailBackend",
    "NotificationEvent",
    "RenderedTemplate",
    "ResendEmailBackend",
    "RewardNotifier",
    "SMTPEmailBackend",
    "build_email_backend",
    "render_cashback_reward",
]
