"""
Facebook Page adapter (Graph API)

Webhooks: ``feed`` changes whose item is a comment, and ``conversations``
changes carrying a page message. Sync pulls page conversations.
"""
import logging
from typing import Any, Dict, List, Optional

from social_inbox.core.errors import AdapterError
from social_inbox.integrations.base import (
    InteractionDraft, NormalizationResult, PlatformAdapter, SyncResource,
    is_sync_envelope, parse_timestamp, sync_envelope
)
from social_inbox.integrations.constants import GRAPH_URL, CONVERSATION_FIELDS

logger = logging.getLogger(__name__)


class FacebookAdapter(PlatformAdapter):
    platform = "facebook"

    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        result = NormalizationResult()

        if is_sync_envelope(raw_payload):
            if raw_payload.get("resource") != "conversations":
                raise AdapterError(f"Unknown sync resource {raw_payload.get('resource')}", platform=self.platform)
            context = raw_payload.get("context") or {}
            self._collect(result, self._require_sync_data(raw_payload), lambda conv: self._collect(
                result,
                self._conversation_messages(conv),
                lambda m: self._sync_message(conv, m, context, organization_id, connection_id)
            ))
            return result

        for entry in self._require_entries(raw_payload):
            for change in entry.get("changes") or []:
                field = change.get("field")
                value = change.get("value") or {}
                if field == "feed" and value.get("item") == "comment":
                    if value.get("verb") == "remove":
                        continue
                    self._collect(result, [value],
                                  lambda v: self._feed_comment(v, organization_id, connection_id),
                                  item_key="comment_id")
                elif field == "conversations":
                    self._collect(result, [value],
                                  lambda v: self._webhook_message(v, organization_id, connection_id))
                else:
                    logger.debug(f"Ignoring Facebook change field {field}")
        return result

    def _feed_comment(self, value: Dict[str, Any], organization_id: str,
                      connection_id: Optional[str]) -> InteractionDraft:
        comment_id = self._require(value, "comment_id")
        author = value.get("from") or {}
        post_id = value.get("post_id")
        # Top-level comments report the post as their parent
        parent_id = value.get("parent_id")
        if parent_id == post_id:
            parent_id = None
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="comment",
            platform_id=str(comment_id),
            content=value.get("message") or "",
            platform_url=f"https://www.facebook.com/{post_id}" if post_id else None,
            author_platform_id=author.get("id"),
            author_name=author.get("name") or "Anonymous",
            parent_id=parent_id,
            post_id=post_id,
            platform_metadata={"post_id": post_id, "post_url": f"https://www.facebook.com/{post_id}" if post_id else None},
            platform_created_at=parse_timestamp(value.get("created_time")),
        )

    def _webhook_message(self, value: Dict[str, Any], organization_id: str,
                         connection_id: Optional[str]) -> InteractionDraft:
        author = value.get("from") or {}
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="dm",
            platform_id=str(self._require(value, "id")),
            content=value.get("message") or "",
            author_platform_id=author.get("id"),
            author_name=author.get("name") or "Anonymous",
            thread_id=value.get("thread_id"),
            platform_created_at=parse_timestamp(value.get("created_time")),
        )

    def _sync_message(self, conversation: Dict[str, Any], message: Dict[str, Any], context: Dict[str, Any],
                      organization_id: str, connection_id: Optional[str]) -> Optional[InteractionDraft]:
        author = message.get("from") or {}
        if author.get("id") and author.get("id") == context.get("page_id"):
            return None
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="dm",
            platform_id=str(self._require(message, "id")),
            content=message.get("message") or "",
            author_platform_id=author.get("id"),
            author_name=author.get("name") or "Anonymous",
            author_username=author.get("email"),
            thread_id=conversation.get("id"),
            platform_created_at=parse_timestamp(message.get("created_time")),
        )

    async def list_sync_resources(self, connection) -> List[SyncResource]:
        page_id = (connection.platform_data or {}).get("page_id")
        if not page_id:
            raise AdapterError("Connection has no page_id", platform=self.platform)
        return [SyncResource(kind="conversations", resource_id=page_id, context={"page_id": page_id})]

    async def fetch_resource(self, connection, resource: SyncResource) -> Dict[str, Any]:
        response = await self.http.get_json(
            f"{GRAPH_URL}/{resource.resource_id}/conversations",
            params={"access_token": connection.access_token, "fields": CONVERSATION_FIELDS}
        )
        return sync_envelope(resource, response.get("data", []))

    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        params = {"access_token": connection.access_token}
        if interaction.type == "dm":
            page_id = (connection.platform_data or {}).get("page_id")
            response = await self.http.post_json(
                f"{GRAPH_URL}/{page_id}/messages",
                params=params,
                json={"recipient": {"id": interaction.author_platform_id}, "message": {"text": text},
                      "messaging_type": "RESPONSE"}
            )
            return {"platform_response_id": response.get("message_id")}

        response = await self.http.post_json(
            f"{GRAPH_URL}/{interaction.platform_id}/comments", params=params, json={"message": text}
        )
        return {"platform_response_id": response.get("id")}
