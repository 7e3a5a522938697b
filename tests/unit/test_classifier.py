import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from app.config import settings
from app.models.domain.feedback_domain import Sentiment
from app.services.classifier import (
    ClassificationError,
    FeedbackClassifier,
    HeuristicClassifier,
    OpenAIClassifier,
    build_output,
    detect_intents,
)


def _completion(content: str | None):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _openai_client(content: str | None = None, side_effect=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=_completion(content), side_effect=side_effect
    )
    return client


def test_heuristic_great_service_is_positive():
    output = HeuristicClassifier().classify_sync("Great service!")

    assert output.sentiment == Sentiment.POSITIVE
    assert output.confidence == 0.6
    assert output.confidence >= 0.5
    assert output.ai_processed is False
    assert output.intents == ["praise", "support"]


def test_confidence_is_max_of_distribution():
    output = HeuristicClassifier().classify_sync("The app crashes and support was rude")

    scores = [entry.score for entry in output.all_scores]
    assert output.sentiment == Sentiment.NEGATIVE
    assert output.confidence == max(scores)
    assert scores == sorted(scores, reverse=True)
    assert sum(scores) == pytest.approx(1.0, abs=1e-3)


def test_no_signal_reads_as_neutral():
    output = HeuristicClassifier().classify_sync("I used the app on Tuesday")

    assert output.sentiment == Sentiment.NEUTRAL
    assert output.intents == []


def test_negation_flips_polarity():
    output = HeuristicClassifier().classify_sync("This was not good")

    assert output.sentiment == Sentiment.NEGATIVE


def test_empty_text_is_not_recoverable():
    with pytest.raises(ClassificationError) as exc:
        HeuristicClassifier().classify_sync("   ")

    assert exc.value.recoverable is False


def test_detect_intents_keeps_taxonomy_order():
    intents = detect_intents("How do I get a refund? Delivery was late and the interface is confusing")

    assert intents == ["pricing", "delivery", "usability", "question"]


def test_build_output_ties_prefer_positive_then_neutral():
    output = build_output(
        {Sentiment.POSITIVE: 1.0, Sentiment.NEUTRAL: 1.0, Sentiment.NEGATIVE: 1.0},
        [],
        ai_processed=False,
    )

    assert [e.label for e in output.all_scores] == ["positive", "neutral", "negative"]
    assert output.sentiment == Sentiment.POSITIVE


def test_build_output_rejects_all_zero_scores():
    with pytest.raises(ClassificationError) as exc:
        build_output({}, [], ai_processed=True)

    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_openai_classifier_parses_json_mode_response():
    content = json.dumps(
        {
            "scores": {"positive": 0.9, "neutral": 0.08, "negative": 0.02},
            "intents": ["support", "praise", "not-a-label"],
        }
    )
    classifier = OpenAIClassifier(client=_openai_client(content), model="test-model")

    output = await classifier.classify("Great service!")

    assert output.sentiment == Sentiment.POSITIVE
    assert output.confidence == 0.9
    assert output.ai_processed is True
    assert output.intents == ["praise", "support"]


@pytest.mark.asyncio
async def test_openai_classifier_invalid_json_is_recoverable():
    classifier = OpenAIClassifier(client=_openai_client("not json"), model="test-model")

    with pytest.raises(ClassificationError) as exc:
        await classifier.classify("Great service!")

    assert exc.value.recoverable is True


@pytest.mark.asyncio
async def test_feedback_classifier_falls_back_on_api_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    advanced = OpenAIClassifier(
        client=_openai_client(side_effect=openai.APIConnectionError(request=request)),
        model="test-model",
    )
    classifier = FeedbackClassifier(advanced=advanced)

    output = await classifier.classify("Great service!")

    assert output.sentiment == Sentiment.POSITIVE
    assert output.ai_processed is False


@pytest.mark.asyncio
async def test_feedback_classifier_without_fallback_raises():
    advanced = AsyncMock()
    advanced.classify.side_effect = ClassificationError("model down")
    classifier = FeedbackClassifier(advanced=advanced, fallback_enabled=False)

    with pytest.raises(ClassificationError):
        await classifier.classify("Great service!")


@pytest.mark.asyncio
async def test_advanced_timeout_leaves_room_for_fallback():
    assert settings.OPENAI_TIMEOUT_SECONDS < settings.CLASSIFICATION_TIMEOUT_SECONDS

    class SlowModel:
        async def classify(self, text):
            await asyncio.sleep(5)

    classifier = FeedbackClassifier(advanced=SlowModel(), advanced_timeout=0.01)

    output = await classifier.classify("Great service!")

    assert output.ai_processed is False
    assert output.sentiment == Sentiment.POSITIVE
