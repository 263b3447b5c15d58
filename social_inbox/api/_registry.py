"""
Router registry - single source of truth for mounted routers
"""
from social_inbox.api import inbox, platforms, webhooks

ROUTERS = [
    webhooks.router,  # Platform webhook receipt and subscription handshakes
    platforms.router,  # Manual sync trigger
    inbox.router,  # Agent replies
]
