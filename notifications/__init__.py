"""
Notifications Package.

Delivery channels for alert notifications: email, webhooks and
chat incoming-webhooks.
"""

from .base import HttpChannel
from .chat import ChatFormatter, ChatRateLimiter, ChatSender
from .email import AlertEmailFormatter, SmtpEmailSender
from .webhook import WebhookSender, build_payload, generate_signature


__all__ = [
    "HttpChannel",
    "ChatFormatter",
    "ChatRateLimiter",
    "ChatSender",
    "AlertEmailFormatter",
    "SmtpEmailSender",
    "WebhookSender",
    "build_payload",
    "generate_signature",
]
