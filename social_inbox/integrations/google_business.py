"""
Google Business Profile adapter (reviews)

Reviews carry a star rating that pre-classifies sentiment before any AI
analysis. Pub/Sub notifications name the location and review; hydration
fetches the location's reviews.
"""
import logging
from typing import Any, Dict, List, Optional

from social_inbox.core.errors import AdapterError
from social_inbox.integrations.base import (
    GoogleOAuthMixin, InteractionDraft, NormalizationResult, PlatformAdapter, SyncResource,
    decode_pubsub_message, is_sync_envelope, parse_rating, parse_timestamp,
    sentiment_from_rating, sync_envelope
)
from social_inbox.integrations.constants import BUSINESS_PROFILE_REVIEWS_URL, GOOGLE_REVIEW_EVENTS

logger = logging.getLogger(__name__)


class GoogleBusinessAdapter(GoogleOAuthMixin, PlatformAdapter):
    platform = "google"

    def normalize(self, raw_payload: Dict[str, Any], organization_id: str,
                  connection_id: Optional[str] = None) -> NormalizationResult:
        result = NormalizationResult()
        if not is_sync_envelope(raw_payload):
            notification = decode_pubsub_message(raw_payload)
            logger.debug(f"Google notification for review {notification.get('reviewId')} needs hydration")
            return result

        location_id = raw_payload.get("resource_id")
        self._collect(result, self._require_sync_data(raw_payload),
                      lambda review: self._review(review, location_id, organization_id, connection_id),
                      item_key="reviewId")
        return result

    def _review(self, review: Dict[str, Any], location_id: Optional[str], organization_id: str,
                connection_id: Optional[str]) -> InteractionDraft:
        review_id = str(self._require(review, "reviewId"))
        rating = parse_rating(review.get("starRating"))
        reviewer = review.get("reviewer") or {}
        created_at = parse_timestamp(review.get("createTime"))
        name = None if reviewer.get("isAnonymous") else reviewer.get("displayName")

        return InteractionDraft(
            organization_id=organization_id,
            connection_id=connection_id,
            platform=self.platform,
            type="review",
            platform_id=review_id,
            content=review.get("comment") or "",
            author_name=name or "Anonymous",
            author_username=name,
            author_profile_url=reviewer.get("profilePhotoUrl"),
            author_avatar_url=reviewer.get("profilePhotoUrl"),
            rating=rating,
            review_date=created_at,
            sentiment=sentiment_from_rating(rating),
            platform_metadata={
                "review_id": review_id,
                "location_id": location_id,
                "star_rating": review.get("starRating"),
                "review_reply": review.get("reviewReply"),
            },
            platform_created_at=created_at,
            platform_updated_at=parse_timestamp(review.get("updateTime")),
        )

    def _location_path(self, connection, location_id: str) -> str:
        account = (connection.platform_data or {}).get("account_id")
        if account:
            return f"{BUSINESS_PROFILE_REVIEWS_URL}/accounts/{account}/locations/{location_id}"
        return f"{BUSINESS_PROFILE_REVIEWS_URL}/locations/{location_id}"

    async def hydrate_webhook(self, raw_payload: Dict[str, Any], connection) -> Dict[str, Any]:
        notification = decode_pubsub_message(raw_payload)
        if notification.get("eventType") not in GOOGLE_REVIEW_EVENTS:
            return notification
        location_id = notification.get("locationId")
        if not location_id:
            raise AdapterError("Google notification has no locationId", platform=self.platform)
        return await self.fetch_resource(connection, SyncResource(kind="location_reviews", resource_id=location_id))

    async def list_sync_resources(self, connection) -> List[SyncResource]:
        location_ids = (connection.platform_data or {}).get("location_ids") or []
        return [SyncResource(kind="location_reviews", resource_id=str(location_id)) for location_id in location_ids]

    async def fetch_resource(self, connection, resource: SyncResource) -> Dict[str, Any]:
        response = await self.http.get_json(
            f"{self._location_path(connection, resource.resource_id)}/reviews",
            headers=self._auth_headers(connection)
        )
        return sync_envelope(resource, response.get("reviews", []))

    async def post_reply(self, connection, interaction, text: str) -> Dict[str, Any]:
        location_id = (interaction.platform_metadata or {}).get("location_id")
        if not location_id:
            raise AdapterError("Review has no location_id", platform=self.platform, item_id=interaction.platform_id)
        response = await self.http.put_json(
            f"{self._location_path(connection, location_id)}/reviews/{interaction.platform_id}/reply",
            headers=self._auth_headers(connection),
            json={"comment": text}
        )
        return {"platform_response_id": interaction.platform_id, "update_time": response.get("updateTime")}
