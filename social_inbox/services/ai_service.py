"""
AI Service

Sentiment, intent and topic classification plus reply drafting through
OpenAI chat completions. Model output is parsed loosely; every call either
returns a parsed value or raises EnrichmentError so callers can fall back.

Also holds the auto-reply eligibility policy.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from openai import AsyncOpenAI

from social_inbox.core.config import get_settings
from social_inbox.core.errors import EnrichmentError
from social_inbox.db.models import INTENTS

logger = logging.getLogger(__name__)

SENTIMENT_SYSTEM_PROMPT = (
    'You are a sentiment analysis expert. Analyze the sentiment of the given text and respond with '
    'ONLY one word: "positive", "negative", or "neutral". Also provide a confidence score from 0 to 1.'
)
INTENT_SYSTEM_PROMPT = (
    'Classify the intent of this message. Respond with ONLY one word: '
    '"inquiry", "complaint", "praise", "feedback", "support", or "other".'
)
TOPICS_SYSTEM_PROMPT = 'Extract 2-3 main topics or keywords from the text. Return them as a comma-separated list.'
RESPONSE_SYSTEM_PROMPT = """You are a professional customer service representative.
Your task is to generate a helpful, friendly, and professional response to customer inquiries.

IMPORTANT GUIDELINES:
- Be polite, empathetic, and professional
- Keep responses concise (2-3 sentences max)
- Use a friendly tone
- Address the customer's concern directly
- Do not make promises you can't keep{knowledge_base}

Generate a response that addresses the customer's message appropriately."""

SENTIMENT_SCORES = {"positive": 0.8, "negative": -0.8, "neutral": 0.0}
DEFAULT_SENTIMENT_CONFIDENCE = 0.85
DRAFT_CONFIDENCE = 0.8
MAX_TOPICS = 5

_CONFIDENCE_PATTERN = re.compile(r"(?<![\d.])(0(?:\.\d+)?|1(?:\.0+)?)(?![\d.])")


@dataclass
class SentimentResult:
    sentiment: str
    score: float
    confidence: float


NEUTRAL_SENTIMENT = SentimentResult(sentiment="neutral", score=0.0, confidence=0.5)


def parse_sentiment(text: str) -> SentimentResult:
    lowered = text.lower().strip()
    sentiment = "neutral"
    if "positive" in lowered:
        sentiment = "positive"
    elif "negative" in lowered:
        sentiment = "negative"

    confidence = DEFAULT_SENTIMENT_CONFIDENCE
    match = _CONFIDENCE_PATTERN.search(lowered)
    if match:
        confidence = float(match.group(1))

    return SentimentResult(sentiment=sentiment, score=SENTIMENT_SCORES[sentiment], confidence=confidence)


def parse_intent(text: str) -> str:
    lowered = text.lower().strip().strip('."\'')
    if lowered in INTENTS:
        return lowered
    for intent in INTENTS:
        if re.search(rf"\b{intent}\b", lowered):
            return intent
    return "other"


def parse_topics(text: str) -> List[str]:
    topics = []
    for raw in text.split(","):
        topic = raw.strip().strip('."\'').strip()
        if topic and topic not in topics:
            topics.append(topic)
    return topics[:MAX_TOPICS]


@dataclass(frozen=True)
class AutoReplyPolicy:
    """Conditions under which a drafted reply may be sent without a human"""
    min_confidence: float = 0.7
    blocked_sentiments: FrozenSet[str] = field(default_factory=lambda: frozenset({"negative"}))
    blocked_intents: FrozenSet[str] = field(default_factory=lambda: frozenset({"complaint"}))
    blocked_urgencies: FrozenSet[str] = field(default_factory=lambda: frozenset({"high", "urgent"}))

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "AutoReplyPolicy":
        """Build from organizations.settings["auto_reply"]; unknown keys are ignored."""
        default_confidence = get_settings().auto_reply_min_confidence
        overrides = overrides or {}
        base = cls(min_confidence=default_confidence)
        return cls(
            min_confidence=float(overrides.get("min_confidence", base.min_confidence)),
            blocked_sentiments=frozenset(overrides.get("blocked_sentiments", base.blocked_sentiments)),
            blocked_intents=frozenset(overrides.get("blocked_intents", base.blocked_intents)),
            blocked_urgencies=frozenset(overrides.get("blocked_urgencies", base.blocked_urgencies)),
        )


def can_auto_reply(interaction, policy: Optional[AutoReplyPolicy] = None) -> bool:
    """Pure eligibility check over sentiment, confidence, intent and urgency."""
    policy = policy or AutoReplyPolicy()
    if interaction.sentiment in policy.blocked_sentiments:
        return False
    if (interaction.sentiment_confidence or 0.0) < policy.min_confidence:
        return False
    if interaction.intent in policy.blocked_intents:
        return False
    if interaction.urgency in policy.blocked_urgencies:
        return False
    return True


class AIService:
    """OpenAI-backed classification and drafting"""

    def __init__(self, client: Optional[AsyncOpenAI] = None, settings=None):
        self.settings = settings or get_settings()
        if client is not None:
            self.client = client
        elif self.settings.openai_api_key:
            self.client = AsyncOpenAI(api_key=self.settings.openai_api_key, timeout=self.settings.ai_request_timeout)
        else:
            self.client = None
            logger.warning("OpenAI API key not configured; enrichment will use defaults")

    async def _complete(self, stage: str, system_prompt: str, user_prompt: str,
                        temperature: float, max_tokens: int) -> str:
        if self.client is None:
            raise EnrichmentError("AI client not configured", stage=stage)
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=temperature,
                max_tokens=max_tokens
            )
            content = response.choices[0].message.content
        except Exception as e:
            raise EnrichmentError(f"{stage} request failed: {e}", stage=stage) from e

        if not content or not content.strip():
            raise EnrichmentError(f"{stage} returned an empty completion", stage=stage)
        return content.strip()

    async def analyze_sentiment(self, content: str) -> SentimentResult:
        text = await self._complete(
            "sentiment", SENTIMENT_SYSTEM_PROMPT, f'Analyze the sentiment of this text: "{content}"',
            temperature=self.settings.ai_classification_temperature, max_tokens=50
        )
        return parse_sentiment(text)

    async def detect_intent(self, content: str) -> str:
        text = await self._complete(
            "intent", INTENT_SYSTEM_PROMPT, f'Classify: "{content}"',
            temperature=self.settings.ai_classification_temperature, max_tokens=10
        )
        return parse_intent(text)

    async def extract_topics(self, content: str) -> List[str]:
        text = await self._complete(
            "topics", TOPICS_SYSTEM_PROMPT, f'Extract topics: "{content}"',
            temperature=self.settings.ai_classification_temperature, max_tokens=50
        )
        return parse_topics(text)

    async def generate_response(self, interaction, knowledge_base: Optional[List[Any]] = None) -> Dict[str, Any]:
        """
        Draft a reply to the interaction.

        Args:
            interaction: Interaction with content, platform and sentiment
            knowledge_base: Entries with title and content, most relevant first

        Returns:
            {"content", "confidence", "generated_at"}
        """
        kb_context = "\n\n".join(f"{entry.title}: {entry.content}" for entry in knowledge_base or [])
        system_prompt = RESPONSE_SYSTEM_PROMPT.format(
            knowledge_base=f"\n\nKNOWLEDGE BASE:\n{kb_context}" if kb_context else ""
        )
        user_prompt = (
            f'Customer message: "{interaction.content}"\n\n'
            f"Platform: {interaction.platform}\n"
            f"Sentiment: {interaction.sentiment or 'unknown'}"
        )
        text = await self._complete(
            "response", system_prompt, user_prompt,
            temperature=self.settings.ai_response_temperature,
            max_tokens=self.settings.ai_response_max_tokens
        )
        return {
            "content": text,
            "confidence": DRAFT_CONFIDENCE,
            "generated_at": datetime.now(timezone.utc).isoformat()
        }


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Get or create the default AI service"""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
