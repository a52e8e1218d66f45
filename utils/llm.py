"""
LLM collaborator - tag extraction, language detection and summaries.

A ClaudeProvider is used when ANTHROPIC_API_KEY is configured; otherwise
NoopProvider returns empty tags so articles still complete.

Tagging failures degrade to "no tags" (the article is still readable);
summary failures raise ExternalServiceError to the caller.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic
import orjson
from pydantic import ValidationError as PydanticValidationError

from utils.errors import ExternalServiceError
from utils.schemas import SummaryResult, TagExtraction

logger = logging.getLogger(__name__)

# Roughly 10k words
MAX_CONTENT_CHARS = 40000

TAG_EXTRACTION_SYSTEM_PROMPT = """You are a content tagging assistant. Your job is to analyze articles and extract relevant tags and detect the main language.

Return your response as a JSON object with this exact structure:
{
  "tags": ["tag1", "tag2", "tag3"],
  "language": "en",
  "confidence": 0.85
}

Rules:
- Use lowercase for all tags
- Prefer existing tags when semantically similar (user will provide their existing tags)
- Limit to 5 tags total
- Focus on main topics and themes
- Language should be an ISO 639-1 code (e.g., "en", "es", "fr", "de", "ja", "zh")
- Detect the primary language of the article content (not just the URL or metadata)
- Confidence should be 0-1 (how confident you are in the tagging)
- Be concise and specific with tag names"""

SUMMARIZATION_SYSTEM_PROMPT = """You are a content summarization assistant. Your job is to analyze articles and provide three different summary formats.

Return your response as a JSON object with this exact structure:
{
  "oneSentence": "A concise one-sentence summary (under 30 words)",
  "oneParagraph": "A one-paragraph summary (3-5 sentences, around 100 words)",
  "long": "A detailed summary (around 500 words, preserving key facts and main arguments)"
}

Rules:
- Be accurate and factual
- Do not add information not present in the article
- Each summary should be self-contained"""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_from_response(text: str) -> Optional[dict[str, Any]]:
    """First {...} block of an LLM reply, parsed. None when absent or invalid."""
    match = _JSON_OBJECT.search(text)
    if not match:
        logger.warning("No JSON found in LLM response", extra={"response": text[:200]})
        return None
    try:
        value = orjson.loads(match.group(0))
    except orjson.JSONDecodeError as e:
        logger.warning("Failed to parse JSON from LLM response", extra={"error": str(e)})
        return None
    return value if isinstance(value, dict) else None


class LLMProvider(ABC):
    @abstractmethod
    def extract_tags(self, content: str, existing_tags: list[str]) -> TagExtraction:
        """Tags and language for an article's plain text."""

    @abstractmethod
    def summarize(self, content: str) -> SummaryResult:
        """Three-length summary of an article's plain text."""


class NoopProvider(LLMProvider):
    """Used when no API key is configured."""

    def extract_tags(self, content: str, existing_tags: list[str]) -> TagExtraction:
        return TagExtraction()

    def summarize(self, content: str) -> SummaryResult:
        raise ExternalServiceError("LLM", "provider not configured")


class ClaudeProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        tagging_model: str,
        summary_model: str,
        timeout_seconds: float = 60,
        client: Optional[anthropic.Anthropic] = None,
    ) -> None:
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout_seconds)
        self.tagging_model = tagging_model
        self.summary_model = summary_model

    def _complete(self, model: str, system: str, prompt: str, max_tokens: int) -> str:
        message = self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        block = message.content[0] if message.content else None
        if block is None or block.type != "text":
            raise ExternalServiceError("LLM", "unexpected response format")
        return block.text

    def extract_tags(self, content: str, existing_tags: list[str]) -> TagExtraction:
        existing = (
            f"\nExisting tags to consider reusing:\n{', '.join(existing_tags)}\n"
            if existing_tags
            else ""
        )
        prompt = (
            "Analyze this article and extract 5-10 relevant tags.\n"
            f"{existing}\nArticle content:\n{content[:MAX_CONTENT_CHARS]}"
        )
        try:
            text = self._complete(self.tagging_model, TAG_EXTRACTION_SYSTEM_PROMPT, prompt, 1024)
            data = extract_json_from_response(text)
            if data is None:
                return TagExtraction()
            return TagExtraction.model_validate(data)
        except (anthropic.APIError, ExternalServiceError, PydanticValidationError) as e:
            logger.warning("Claude tag extraction failed", extra={"error": str(e)})
            return TagExtraction()

    def summarize(self, content: str) -> SummaryResult:
        prompt = f"Summarize this article:\n\n{content[:MAX_CONTENT_CHARS]}"
        try:
            text = self._complete(self.summary_model, SUMMARIZATION_SYSTEM_PROMPT, prompt, 4096)
        except anthropic.APIError as e:
            raise ExternalServiceError("LLM", "summary request failed", e) from e

        data = extract_json_from_response(text)
        if data is None:
            raise ExternalServiceError("LLM", "summary response had no JSON")
        try:
            return SummaryResult.model_validate(data)
        except PydanticValidationError as e:
            raise ExternalServiceError("LLM", "summary response was incomplete", e) from e


def get_llm_provider(
    api_key: Optional[str],
    tagging_model: str,
    summary_model: str,
) -> LLMProvider:
    if not api_key:
        logger.info("ANTHROPIC_API_KEY not set, using no-op LLM provider")
        return NoopProvider()
    return ClaudeProvider(api_key, tagging_model, summary_model)
