"""Notifications module: multi-channel alert fan-out with rate limiting."""

from soc_automation.notifications.manager import (
    NotificationManager,
    email_body,
    severity_color,
    severity_priority,
)
from soc_automation.notifications.ratelimit import SlidingWindowRateLimiter

__all__ = [
    "NotificationManager",
    "SlidingWindowRateLimiter",
    "email_body",
    "severity_color",
    "severity_priority",
]
