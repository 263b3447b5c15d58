"""
Platform adapter registry keyed by platform identifier
"""
from typing import Dict, Optional, Type

from social_inbox.core.errors import AdapterError
from social_inbox.core.http_client import HTTPClient
from social_inbox.integrations.base import PlatformAdapter
from social_inbox.integrations.facebook import FacebookAdapter
from social_inbox.integrations.google_business import GoogleBusinessAdapter
from social_inbox.integrations.instagram import InstagramAdapter
from social_inbox.integrations.whatsapp import WhatsAppAdapter
from social_inbox.integrations.youtube import YouTubeAdapter

ADAPTER_CLASSES: Dict[str, Type[PlatformAdapter]] = {
    cls.platform: cls
    for cls in (InstagramAdapter, FacebookAdapter, WhatsAppAdapter, YouTubeAdapter, GoogleBusinessAdapter)
}


class AdapterRegistry:
    """Holds one adapter instance per platform, sharing an HTTP client."""

    def __init__(self, http_client: Optional[HTTPClient] = None):
        self._http_client = http_client
        self._adapters: Dict[str, PlatformAdapter] = {}

    def get(self, platform: str) -> PlatformAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            adapter_cls = ADAPTER_CLASSES.get(platform)
            if adapter_cls is None:
                raise AdapterError(f"Unsupported platform: {platform}", platform=platform)
            adapter = adapter_cls(http_client=self._http_client)
            self._adapters[platform] = adapter
        return adapter

    def supports(self, platform: str) -> bool:
        return platform in self._adapters or platform in ADAPTER_CLASSES
