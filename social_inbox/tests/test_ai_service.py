"""
Tests for AI classification parsing, reply drafting and the auto-reply policy
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from social_inbox.core.config import get_settings
from social_inbox.core.errors import EnrichmentError
from social_inbox.services.ai_service import (
    AIService, AutoReplyPolicy, can_auto_reply, parse_intent, parse_sentiment, parse_topics
)


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def mock_client(*responses):
    client = Mock()
    client.chat.completions.create = AsyncMock(side_effect=list(responses))
    return client


def candidate(**overrides):
    values = dict(sentiment="positive", sentiment_confidence=0.9, intent="inquiry", urgency="normal")
    values.update(overrides)
    return SimpleNamespace(**values)


class TestParsing:

    def test_parse_sentiment(self):
        result = parse_sentiment("Negative\nConfidence: 0.92")
        assert result.sentiment == "negative"
        assert result.score == -0.8
        assert result.confidence == 0.92

    def test_parse_sentiment_defaults(self):
        result = parse_sentiment("positive")
        assert result.sentiment == "positive"
        assert result.confidence == 0.85
        assert parse_sentiment("I cannot tell").sentiment == "neutral"

    def test_parse_intent(self):
        assert parse_intent("Complaint.") == "complaint"
        assert parse_intent("This is an inquiry about hours") == "inquiry"
        assert parse_intent("sarcasm") == "other"

    def test_parse_topics(self):
        assert parse_topics("coffee, service, coffee, price.") == ["coffee", "service", "price"]
        assert parse_topics("a, b, c, d, e, f, g") == ["a", "b", "c", "d", "e"]


class TestAutoReplyPolicy:

    def test_eligible(self):
        assert can_auto_reply(candidate()) is True

    def test_negative_is_never_eligible(self):
        assert can_auto_reply(candidate(sentiment="negative", sentiment_confidence=0.99)) is False

    def test_confidence_boundary(self):
        assert can_auto_reply(candidate(sentiment_confidence=0.69)) is False
        assert can_auto_reply(candidate(sentiment_confidence=0.70)) is True

    def test_missing_confidence(self):
        assert can_auto_reply(candidate(sentiment_confidence=None)) is False

    def test_complaint_is_not_eligible(self):
        assert can_auto_reply(candidate(intent="complaint")) is False

    def test_urgent_is_not_eligible(self):
        assert can_auto_reply(candidate(urgency="urgent")) is False
        assert can_auto_reply(candidate(urgency="high")) is False

    def test_organization_overrides(self):
        policy = AutoReplyPolicy.from_overrides({"min_confidence": 0.95, "blocked_intents": ["complaint", "support"]})

        assert can_auto_reply(candidate(sentiment_confidence=0.9), policy) is False
        assert can_auto_reply(candidate(sentiment_confidence=0.96, intent="support"), policy) is False
        assert can_auto_reply(candidate(sentiment_confidence=0.96), policy) is True


class TestAIService:

    @pytest.mark.asyncio
    async def test_analyze_sentiment(self):
        service = AIService(client=mock_client(completion("positive 0.9")))
        result = await service.analyze_sentiment("I love it")

        assert result.sentiment == "positive"
        assert result.confidence == 0.9

    @pytest.mark.asyncio
    async def test_provider_failure_raises_enrichment_error(self):
        service = AIService(client=mock_client(RuntimeError("timeout")))

        with pytest.raises(EnrichmentError) as exc_info:
            await service.detect_intent("Where is my order?")
        assert exc_info.value.stage == "intent"

    @pytest.mark.asyncio
    async def test_empty_completion_raises(self):
        service = AIService(client=mock_client(completion("   ")))
        with pytest.raises(EnrichmentError):
            await service.extract_topics("something")

    @pytest.mark.asyncio
    async def test_unconfigured_client_raises(self):
        service = AIService(settings=get_settings().model_copy(update={"openai_api_key": None}))
        with pytest.raises(EnrichmentError):
            await service.analyze_sentiment("hello")

    @pytest.mark.asyncio
    async def test_generate_response_includes_knowledge_base(self):
        client = mock_client(completion("Thanks for reaching out! We open at 7am."))
        service = AIService(client=client)
        interaction = SimpleNamespace(content="When do you open?", platform="instagram", sentiment="neutral")
        knowledge_base = [SimpleNamespace(title="Hours", content="Open daily 7am-7pm")]

        draft = await service.generate_response(interaction, knowledge_base)

        assert draft["content"] == "Thanks for reaching out! We open at 7am."
        assert draft["confidence"] == 0.8
        assert "generated_at" in draft
        system_prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Hours: Open daily 7am-7pm" in system_prompt
