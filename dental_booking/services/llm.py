"""Narrow language-model interface used for constrained classification.

Every LLM use in the booking flow is a "pick one of these or say NO_MATCH"
question, so the interface is a single ``classify(prompt) -> str``.
Callers own the parsing of the answer and treat any failure as no match.
Tests substitute any object with a ``classify`` method.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from dental_booking.config import ANTHROPIC_API_KEY, CLASSIFIER_MODEL_NAME
from dental_booking.services.metrics import metrics

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(self, prompt: str, *, operation: str = "classify") -> str: ...


def _build_classifier_llm() -> ChatAnthropic:
    """Build a deterministic Haiku LLM for short constrained answers."""
    return ChatAnthropic(
        model=CLASSIFIER_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=20,  # a number, an id, a date or NO_MATCH
    )


class ChoiceClassifier:
    """``Classifier`` backed by Anthropic via LangChain."""

    def __init__(self, llm: ChatAnthropic | None = None):
        self._llm = llm or _build_classifier_llm()

    def classify(self, prompt: str, *, operation: str = "classify") -> str:
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            metrics.record_failure(
                "anthropic", operation,
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)

        content = response.content
        if isinstance(content, list):
            # Content blocks: keep only the text parts
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        answer = str(content).strip()
        logger.debug("Classifier %s -> %r (%.0fms)", operation, answer, elapsed)
        return answer
