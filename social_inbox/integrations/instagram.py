"""
Instagram adapter (Graph API)

Webhooks arrive as entry[].changes[] with field ``comments``, ``messages``
or ``mentions``. Sync walks the business account's recent media comments
and its conversations.
"""
import logging
from typing import Any, Dict, List, Optional

from social_inbox.core.errors import AdapterError
from social_inbox.integrations.base import (
    InteractionDraft, NormalizationResult, PlatformAdapter, SyncResource,
    is_sync_envelope, parse_timestamp, sync_envelope
)
from social_inbox.integrations.constants import (
    GRAPH_URL, IG_COMMENT_FIELDS, IG_MEDIA_FIELDS, CONVERSATION_FIELDS
)

logger = logging.getLogger(__name__)


class InstagramAdapter(PlatformAdapter):
    platform = "instagram"

    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        result = NormalizationResult()

        if is_sync_envelope(raw_payload):
            data = self._require_sync_data(raw_payload)
            context = raw_payload.get("context") or {}
            if raw_payload.get("resource") == "media_comments":
                media = {"id": raw_payload.get("resource_id"), "permalink": context.get("permalink")}
                self._collect(result, data,
                              lambda c: self._comment_with_replies(result, c, media, organization_id, connection_id))
            elif raw_payload.get("resource") == "conversations":
                self._collect(result, data, lambda conv: self._collect(
                    result,
                    self._conversation_messages(conv),
                    lambda m: self._sync_message(conv, m, context, organization_id, connection_id)
                ))
            else:
                raise AdapterError(f"Unknown sync resource {raw_payload.get('resource')}", platform=self.platform)
            return result

        for entry in self._require_entries(raw_payload):
            for change in entry.get("changes") or []:
                field = change.get("field")
                value = change.get("value") or {}
                if field == "comments":
                    self._collect(result, [value], lambda v: self._webhook_comment(v, organization_id, connection_id))
                elif field == "messages":
                    self._collect(result, [value], lambda v: self._webhook_message(v, organization_id, connection_id))
                elif field == "mentions":
                    self._collect(result, [value], lambda v: self._webhook_mention(v, organization_id, connection_id),
                                  item_key="comment_id")
                else:
                    logger.debug(f"Ignoring Instagram change field {field}")
        return result

    def _webhook_comment(self, value: Dict[str, Any], organization_id: str,
                         connection_id: Optional[str]) -> InteractionDraft:
        comment_id = self._require(value, "id")
        author = value.get("from") or {}
        media_id = (value.get("media") or {}).get("id")
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="comment",
            platform_id=str(comment_id),
            content=value.get("text") or "",
            platform_url=f"https://www.instagram.com/p/{media_id}" if media_id else None,
            author_platform_id=author.get("id"),
            author_name=author.get("username") or "Anonymous",
            author_username=author.get("username"),
            parent_id=value.get("parent_id"),
            post_id=media_id,
            platform_metadata={"media_id": media_id},
            platform_created_at=parse_timestamp(value.get("timestamp")),
        )

    def _webhook_message(self, value: Dict[str, Any], organization_id: str,
                         connection_id: Optional[str]) -> InteractionDraft:
        message_id = self._require(value, "id")
        author = value.get("from") or {}
        text = (value.get("message") or {}).get("text") if isinstance(value.get("message"), dict) else value.get("message")
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="dm",
            platform_id=str(message_id),
            content=text or value.get("text") or "",
            author_platform_id=author.get("id"),
            author_name=author.get("username") or author.get("name") or "Anonymous",
            author_username=author.get("username"),
            thread_id=value.get("conversation_id"),
            platform_created_at=parse_timestamp(value.get("timestamp")),
        )

    def _webhook_mention(self, value: Dict[str, Any], organization_id: str,
                         connection_id: Optional[str]) -> InteractionDraft:
        media_id = value.get("media_id")
        mention_id = value.get("comment_id") or media_id
        if not mention_id:
            raise AdapterError("Mention has neither comment_id nor media_id", platform=self.platform)
        author = value.get("from") or {}
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="mention",
            platform_id=str(mention_id),
            content=value.get("text") or "",
            author_platform_id=author.get("id"),
            author_name=author.get("username") or "Anonymous",
            author_username=author.get("username"),
            post_id=media_id,
            platform_metadata={"media_id": media_id, "comment_id": value.get("comment_id")},
            platform_created_at=parse_timestamp(value.get("timestamp")),
        )

    def _comment_with_replies(self, result: NormalizationResult, comment: Dict[str, Any],
                              media: Dict[str, Any], organization_id: str,
                              connection_id: Optional[str]) -> None:
        comment_id = str(self._require(comment, "id"))
        replies = (comment.get("replies") or {}).get("data") or []
        result.drafts.append(self._sync_comment(comment, media, organization_id, connection_id,
                                                reply_count=len(replies)))
        self._collect(result, replies, lambda reply: self._sync_comment(
            reply, media, organization_id, connection_id, parent_id=comment_id
        ))

    def _sync_comment(self, comment: Dict[str, Any], media: Dict[str, Any], organization_id: str,
                      connection_id: Optional[str], parent_id: Optional[str] = None,
                      reply_count: int = 0) -> InteractionDraft:
        author = comment.get("from") or {}
        username = comment.get("username") or author.get("username")
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="comment",
            platform_id=str(self._require(comment, "id")),
            content=comment.get("text") or "",
            platform_url=media.get("permalink"),
            author_platform_id=author.get("id"),
            author_name=username or "Anonymous",
            author_username=username,
            parent_id=parent_id,
            thread_id=parent_id,
            reply_count=reply_count,
            has_replies=reply_count > 0,
            post_id=media.get("id"),
            platform_metadata={"media_id": media.get("id"), "post_url": media.get("permalink"),
                               "like_count": comment.get("like_count", 0)},
            platform_created_at=parse_timestamp(comment.get("timestamp")),
        )

    def _sync_message(self, conversation: Dict[str, Any], message: Dict[str, Any], context: Dict[str, Any],
                      organization_id: str, connection_id: Optional[str]) -> Optional[InteractionDraft]:
        author = message.get("from") or {}
        # Messages sent by the business account itself are not inbox items
        if author.get("id") and author.get("id") == context.get("business_account_id"):
            return None
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="dm",
            platform_id=str(self._require(message, "id")),
            content=message.get("message") or "",
            author_platform_id=author.get("id"),
            author_name=author.get("name") or author.get("username") or "Anonymous",
            author_username=author.get("username"),
            thread_id=conversation.get("id"),
            platform_created_at=parse_timestamp(message.get("created_time")),
        )

    async def list_sync_resources(self, connection) -> List[SyncResource]:
        business_account_id = (connection.platform_data or {}).get("business_account_id")
        if not business_account_id:
            raise AdapterError("Connection has no business_account_id", platform=self.platform)

        media = await self.http.get_json(
            f"{GRAPH_URL}/{business_account_id}/media",
            params={"access_token": connection.access_token, "fields": IG_MEDIA_FIELDS}
        )
        resources = [
            SyncResource(kind="media_comments", resource_id=item["id"],
                         context={"permalink": item.get("permalink")})
            for item in media.get("data", []) if item.get("id")
        ]
        resources.append(SyncResource(kind="conversations", resource_id=business_account_id,
                                      context={"business_account_id": business_account_id}))
        return resources

    async def fetch_resource(self, connection, resource: SyncResource) -> Dict[str, Any]:
        if resource.kind == "media_comments":
            response = await self.http.get_json(
                f"{GRAPH_URL}/{resource.resource_id}/comments",
                params={"access_token": connection.access_token, "fields": IG_COMMENT_FIELDS}
            )
        else:
            response = await self.http.get_json(
                f"{GRAPH_URL}/{resource.resource_id}/conversations",
                params={"access_token": connection.access_token, "platform": "instagram",
                        "fields": CONVERSATION_FIELDS}
            )
        return sync_envelope(resource, response.get("data", []))

    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        params = {"access_token": connection.access_token}
        if interaction.type == "dm":
            page_id = (connection.platform_data or {}).get("page_id") or \
                (connection.platform_data or {}).get("business_account_id")
            response = await self.http.post_json(
                f"{GRAPH_URL}/{page_id}/messages",
                params=params,
                json={"recipient": {"id": interaction.author_platform_id}, "message": {"text": text}}
            )
            return {"platform_response_id": response.get("message_id")}

        response = await self.http.post_json(
            f"{GRAPH_URL}/{interaction.platform_id}/replies", params=params, json={"message": text}
        )
        return {"platform_response_id": response.get("id")}
