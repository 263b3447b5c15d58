"""
YouTube adapter (Data API v3)

Comment threads are flattened: the top-level comment and each reply become
separate drafts sharing the thread id, replies pointing at the top-level
comment through ``parent_id``. Pub/Sub notifications only name the video,
so they are hydrated by fetching its comment threads.
"""
import logging
from typing import Any, Dict, List, Optional

from social_inbox.core.config import get_settings
from social_inbox.core.errors import AdapterError
from social_inbox.integrations.base import (
    GoogleOAuthMixin, InteractionDraft, NormalizationResult, PlatformAdapter, SyncResource,
    decode_pubsub_message, is_sync_envelope, parse_timestamp, sync_envelope
)
from social_inbox.integrations.constants import YOUTUBE_API_URL, YOUTUBE_COMMENT_EVENTS

logger = logging.getLogger(__name__)


class YouTubeAdapter(GoogleOAuthMixin, PlatformAdapter):
    platform = "youtube"

    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        result = NormalizationResult()
        if not is_sync_envelope(raw_payload):
            notification = decode_pubsub_message(raw_payload)
            logger.debug(f"YouTube notification for video {notification.get('videoId')} needs hydration")
            return result

        video_id = raw_payload.get("resource_id")
        self._collect(result, self._require_sync_data(raw_payload),
                      lambda thread: self._thread(result, thread, video_id, organization_id, connection_id))
        return result

    def _thread(self, result: NormalizationResult, thread: Dict[str, Any], video_id: Optional[str],
                organization_id: str, connection_id: Optional[str]) -> None:
        thread_id = self._require(thread, "id")
        snippet = thread["snippet"]
        top_level = snippet["topLevelComment"]
        top_id = str(self._require(top_level, "id"))
        video_id = snippet.get("videoId") or video_id
        total_replies = snippet.get("totalReplyCount") or 0

        result.drafts.append(self._comment(
            top_level, video_id, thread_id, organization_id, connection_id,
            reply_count=total_replies
        ))

        replies = (thread.get("replies") or {}).get("comments") or []
        self._collect(result, replies, lambda reply: self._comment(
            reply, video_id, thread_id, organization_id, connection_id, parent_id=top_id
        ))

    def _comment(self, comment: Dict[str, Any], video_id: Optional[str], thread_id: str,
                 organization_id: str, connection_id: Optional[str],
                 parent_id: Optional[str] = None, reply_count: int = 0) -> InteractionDraft:
        comment_id = str(self._require(comment, "id"))
        snippet = comment.get("snippet") or {}
        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="comment",
            platform_id=comment_id,
            content=snippet.get("textOriginal") or snippet.get("textDisplay") or "",
            platform_url=f"https://www.youtube.com/watch?v={video_id}&lc={comment_id}",
            author_platform_id=(snippet.get("authorChannelId") or {}).get("value"),
            author_name=snippet.get("authorDisplayName") or "Anonymous",
            author_username=snippet.get("authorDisplayName"),
            author_profile_url=snippet.get("authorChannelUrl"),
            author_avatar_url=snippet.get("authorProfileImageUrl"),
            parent_id=parent_id,
            thread_id=thread_id,
            reply_count=reply_count,
            has_replies=reply_count > 0,
            post_id=video_id,
            platform_metadata={"video_id": video_id, "like_count": snippet.get("likeCount", 0),
                               "parent_comment_id": parent_id},
            platform_created_at=parse_timestamp(snippet.get("publishedAt")),
            platform_updated_at=parse_timestamp(snippet.get("updatedAt")),
        )

    async def hydrate_webhook(self, raw_payload: Dict[str, Any], connection) -> Dict[str, Any]:
        notification = decode_pubsub_message(raw_payload)
        if notification.get("eventType") not in YOUTUBE_COMMENT_EVENTS:
            return notification
        video_id = notification.get("videoId")
        if not video_id:
            raise AdapterError("YouTube notification has no videoId", platform=self.platform)
        return await self.fetch_resource(connection, SyncResource(kind="video_comments", resource_id=video_id))

    async def list_sync_resources(self, connection) -> List[SyncResource]:
        channel_id = (connection.platform_data or {}).get("channel_id")
        if not channel_id:
            raise AdapterError("Connection has no channel_id", platform=self.platform)

        headers = self._auth_headers(connection)
        channels = await self.http.get_json(
            f"{YOUTUBE_API_URL}/channels",
            params={"part": "contentDetails", "id": channel_id},
            headers=headers
        )
        items = channels.get("items") or []
        if not items:
            return []
        uploads = items[0]["contentDetails"]["relatedPlaylists"]["uploads"]

        videos = await self.http.get_json(
            f"{YOUTUBE_API_URL}/playlistItems",
            params={"part": "snippet,contentDetails", "playlistId": uploads,
                    "maxResults": get_settings().youtube_sync_max_videos},
            headers=headers
        )
        return [
            SyncResource(kind="video_comments", resource_id=video["contentDetails"]["videoId"])
            for video in videos.get("items", [])
            if (video.get("contentDetails") or {}).get("videoId")
        ]

    async def fetch_resource(self, connection, resource: SyncResource) -> Dict[str, Any]:
        response = await self.http.get_json(
            f"{YOUTUBE_API_URL}/commentThreads",
            params={"part": "snippet,replies", "videoId": resource.resource_id,
                    "maxResults": 100, "order": "time"},
            headers=self._auth_headers(connection)
        )
        return sync_envelope(resource, response.get("items", []))

    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        # Replies always attach to the top-level comment of the thread
        parent_id = interaction.parent_id or interaction.platform_id
        response = await self.http.post_json(
            f"{YOUTUBE_API_URL}/comments",
            params={"part": "snippet"},
            headers=self._auth_headers(connection),
            json={"snippet": {"parentId": parent_id, "textOriginal": text}}
        )
        return {"platform_response_id": response.get("id")}
