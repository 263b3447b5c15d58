"""
WhatsApp Business adapter (Cloud API)

Webhook-only: entry[].changes[].value carries ``messages`` and the sender
``contacts``. There is no history API to sync from.
"""
from typing import Any, Dict, List, Optional

from social_inbox.integrations.base import InteractionDraft, NormalizationResult, PlatformAdapter, parse_timestamp
from social_inbox.integrations.constants import GRAPH_URL

# Media messages carry their text, if any, as a caption
_CAPTIONED_TYPES = ("image", "video", "document")


class WhatsAppAdapter(PlatformAdapter):
    platform = "whatsapp"

    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        result = NormalizationResult()
        for entry in self._require_entries(raw_payload):
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                messages = value.get("messages")
                if not messages:
                    # Status callbacks (sent, delivered, read) carry no messages
                    continue
                contacts = value.get("contacts") or []
                metadata = value.get("metadata") or {}
                self._collect(result, messages,
                              lambda m: self._message(m, contacts, metadata, organization_id, connection_id))
        return result

    def _message(self, message: Dict[str, Any], contacts: List[Dict[str, Any]], metadata: Dict[str, Any],
                 organization_id: str, connection_id: Optional[str]) -> InteractionDraft:
        message_id = self._require(message, "id")
        sender = message.get("from")
        message_type = message.get("type") or "text"

        if message_type == "text":
            content = (message.get("text") or {}).get("body") or message.get("body") or ""
        elif message_type in _CAPTIONED_TYPES:
            content = (message.get(message_type) or {}).get("caption") or ""
        else:
            content = message.get("body") or ""

        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="dm",
            platform_id=str(message_id),
            content=content,
            content_type=message_type,
            author_platform_id=sender,
            author_name=self._contact_name(contacts, sender) or sender or "Anonymous",
            author_username=sender,
            thread_id=sender,
            platform_metadata={"phone_number_id": metadata.get("phone_number_id"),
                               "display_phone_number": metadata.get("display_phone_number")},
            platform_created_at=parse_timestamp(message.get("timestamp")),
        )

    @staticmethod
    def _contact_name(contacts: List[Dict[str, Any]], wa_id: Optional[str]) -> Optional[str]:
        for contact in contacts:
            if contact.get("wa_id") == wa_id:
                return (contact.get("profile") or {}).get("name")
        if contacts:
            return (contacts[0].get("profile") or {}).get("name")
        return None

    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        phone_number_id = (connection.platform_data or {}).get("phone_number_id")
        response = await self.http.post_json(
            f"{GRAPH_URL}/{phone_number_id}/messages",
            headers={"Authorization": f"Bearer {connection.access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": interaction.author_platform_id,
                "type": "text",
                "text": {"body": text},
            }
        )
        messages = response.get("messages") or [{}]
        return {"platform_response_id": messages[0].get("id")}
