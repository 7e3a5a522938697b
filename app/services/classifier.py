"""
Feedback classifiers.

Two implementations produce the same ClassificationOutput:

- HeuristicClassifier: lexicon scoring, deterministic, always available.
- OpenAIClassifier: chat completion in JSON mode; marks ai_processed=True.

FeedbackClassifier composes them: the advanced model when configured,
falling back to the heuristic when the model call fails.
"""

import asyncio
import json
import re
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.feedback_domain import ClassificationOutput, ScoreEntry, Sentiment

logger = get_logger(__name__)

SCORE_PRECISION = 4

# Ordered; also the tie-break order when scores are equal
SENTIMENT_ORDER = (Sentiment.POSITIVE, Sentiment.NEUTRAL, Sentiment.NEGATIVE)

POSITIVE_TERMS = frozenset(
    {
        "amazing", "awesome", "best", "brilliant", "easy", "excellent", "fantastic",
        "fast", "friendly", "good", "great", "happy", "helpful", "impressed", "love",
        "loved", "nice", "perfect", "pleased", "recommend", "satisfied", "smooth",
        "superb", "thanks", "wonderful",
    }
)
NEGATIVE_TERMS = frozenset(
    {
        "angry", "annoying", "awful", "bad", "broken", "bug", "confusing", "crash",
        "crashes", "disappointed", "disappointing", "frustrated", "frustrating",
        "hate", "horrible", "poor", "rude", "slow", "terrible", "unacceptable",
        "unhappy", "useless", "waste", "worse", "worst",
    }
)
NEGATORS = frozenset({"not", "no", "never", "isn't", "wasn't", "don't", "didn't", "hardly"})

# Intent taxonomy in output order
INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "praise": ("great", "excellent", "amazing", "love", "awesome", "fantastic", "thank"),
    "complaint": ("terrible", "awful", "disappointed", "unacceptable", "worst", "poor", "rude"),
    "bug_report": ("bug", "crash", "error", "broken", "not working", "glitch", "freeze"),
    "feature_request": ("feature", "please add", "would be nice", "wish", "suggest", "could you add"),
    "pricing": ("price", "pricing", "cost", "expensive", "cheap", "billing", "refund", "money"),
    "support": ("support", "service", "staff", "agent", "help", "response"),
    "delivery": ("delivery", "shipping", "shipped", "arrived", "package", "late"),
    "usability": ("easy", "confusing", "intuitive", "difficult", "interface", "ui"),
    "question": (),
}
INTENT_LABELS = tuple(INTENT_KEYWORDS)

_TOKEN_RE = re.compile(r"[a-z']+")
_QUESTION_START_RE = re.compile(r"^\s*(how|what|why|when|where|can|could|is|are|does|do)\b")


class ClassificationError(Exception):
    """Raised when text cannot be classified (bad input or model failure)."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class Classifier(Protocol):
    async def classify(self, text: str) -> ClassificationOutput: ...


def build_output(
    raw_scores: dict[Sentiment, float], intents: list[str], ai_processed: bool
) -> ClassificationOutput:
    """
    Normalize raw scores into a distribution and pick the top label.

    confidence is exactly the largest score in all_scores.
    """
    total = sum(max(raw_scores.get(s, 0.0), 0.0) for s in SENTIMENT_ORDER)
    if total <= 0:
        raise ClassificationError("Classifier returned no usable scores", recoverable=False)

    entries = [
        ScoreEntry(label=s.value, score=round(max(raw_scores.get(s, 0.0), 0.0) / total, SCORE_PRECISION))
        for s in SENTIMENT_ORDER
    ]
    # Stable sort keeps SENTIMENT_ORDER as the tie-break
    entries.sort(key=lambda e: e.score, reverse=True)
    top = entries[0]
    return ClassificationOutput(
        sentiment=Sentiment(top.label),
        confidence=top.score,
        all_scores=entries,
        intents=intents,
        ai_processed=ai_processed,
    )


def detect_intents(text: str) -> list[str]:
    lowered = text.lower()
    tokens = set(_TOKEN_RE.findall(lowered))
    found: list[str] = []
    for label, keywords in INTENT_KEYWORDS.items():
        if label == "question":
            if "?" in text or _QUESTION_START_RE.match(lowered):
                found.append(label)
            continue
        for keyword in keywords:
            hit = keyword in lowered if " " in keyword else any(
                token == keyword or token.startswith(keyword) for token in tokens
            )
            if hit:
                found.append(label)
                break
    return found


def _validate_text(text: str) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ClassificationError("Feedback text is empty", recoverable=False)
    return cleaned


class HeuristicClassifier:
    """Lexicon-based scorer with simple negation handling."""

    async def classify(self, text: str) -> ClassificationOutput:
        return self.classify_sync(text)

    def classify_sync(self, text: str) -> ClassificationOutput:
        cleaned = _validate_text(text)
        tokens = _TOKEN_RE.findall(cleaned.lower())

        positive_hits = 0
        negative_hits = 0
        for index, token in enumerate(tokens):
            negated = index > 0 and tokens[index - 1] in NEGATORS
            if token in POSITIVE_TERMS:
                if negated:
                    negative_hits += 1
                else:
                    positive_hits += 1
            elif token in NEGATIVE_TERMS:
                if negated:
                    positive_hits += 1
                else:
                    negative_hits += 1

        raw = {
            Sentiment.POSITIVE: 1.0 + 2.0 * positive_hits,
            Sentiment.NEGATIVE: 1.0 + 2.0 * negative_hits,
            # Mixed or absent signal reads as neutral
            Sentiment.NEUTRAL: (2.0 + 2.0 * positive_hits) if positive_hits == negative_hits else 1.0,
        }
        return build_output(raw, detect_intents(cleaned), ai_processed=False)


class OpenAIClassifier:
    """Chat-completion classifier returning sentiment scores and intents as JSON."""

    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self.model = model or settings.OPENAI_MODEL
        if client is not None:
            self.client = client
        else:
            if not settings.OPENAI_API_KEY:
                raise ClassificationError("OPENAI_API_KEY not configured", recoverable=False)
            self.client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        logger.info("OpenAI classifier initialized", model=self.model)

    def _get_system_message(self) -> str:
        labels = ", ".join(INTENT_LABELS)
        return f"""You classify customer feedback.
Return ONLY valid JSON with this shape:
{{"scores": {{"positive": float, "neutral": float, "negative": float}}, "intents": [string]}}
- scores are probabilities in [0, 1] that sum to 1
- intents is a subset of: {labels}
- use an empty intents list when none apply"""

    async def classify(self, text: str) -> ClassificationOutput:
        cleaned = _validate_text(text)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": self._get_system_message()},
                    {"role": "user", "content": cleaned},
                ],
            )
        except openai.APIError as e:
            raise ClassificationError(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return self._parse_response(content)

    def _parse_response(self, content: str | None) -> ClassificationOutput:
        if not content:
            raise ClassificationError("OpenAI returned an empty response")
        try:
            data: dict[str, Any] = json.loads(content)
            scores = data["scores"]
            raw = {s: float(scores.get(s.value, 0.0)) for s in SENTIMENT_ORDER}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ClassificationError(f"Invalid classifier JSON: {e}") from e

        requested = data.get("intents") or []
        intents = [label for label in INTENT_LABELS if label in set(map(str, requested))]
        return build_output(raw, intents, ai_processed=True)


class FeedbackClassifier:
    """Advanced model first, heuristic fallback."""

    def __init__(
        self,
        advanced: Classifier | None = None,
        fallback: HeuristicClassifier | None = None,
        fallback_enabled: bool = True,
        advanced_timeout: float | None = None,
    ):
        self.advanced = advanced
        self.fallback = fallback or HeuristicClassifier()
        self.fallback_enabled = fallback_enabled
        # Kept below the worker's per-attempt budget so the fallback still has time
        self.advanced_timeout = advanced_timeout or settings.OPENAI_TIMEOUT_SECONDS

    async def _classify_advanced(self, text: str) -> ClassificationOutput:
        try:
            return await asyncio.wait_for(
                self.advanced.classify(text), timeout=self.advanced_timeout
            )
        except TimeoutError as e:
            raise ClassificationError(
                f"Advanced classifier timed out after {self.advanced_timeout}s"
            ) from e

    async def classify(self, text: str) -> ClassificationOutput:
        if self.advanced is None:
            return await self.fallback.classify(text)

        try:
            return await self._classify_advanced(text)
        except ClassificationError as e:
            if not e.recoverable or not self.fallback_enabled:
                raise
            logger.warning("Advanced classifier failed, using heuristic", error=str(e))
            return await self.fallback.classify(text)


def build_feedback_classifier() -> FeedbackClassifier:
    """Classifier wired from settings."""
    advanced = OpenAIClassifier() if settings.advanced_classifier_enabled() else None
    return FeedbackClassifier(
        advanced=advanced,
        fallback_enabled=settings.CLASSIFIER_FALLBACK_ENABLED,
        advanced_timeout=settings.OPENAI_TIMEOUT_SECONDS,
    )
