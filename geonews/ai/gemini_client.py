"""
GeminiClient — Async wrapper around Google Generative AI SDK.

Serves as both external oracles of the query pipeline:
  - analyze_query() → QueryAnalysis {intent, entities, keywords}
                      (JSON response mode)
  - summarize()     → one-sentence summary of an article description

Supports two runtime modes (set via AI_MOCK_MODE env var):
  - MOCK mode (default): deterministic responses derived from the input
    text. Use for tests and local dev without API keys.
  - REAL mode: makes actual Gemini API calls.
    Requires GEMINI_API_KEY to be set.

Errors are propagated; the pipeline decides whether a failure is fatal
(analysis) or degrades to a placeholder (summaries).
"""

import json
import logging
import os
import re
from enum import Enum
from typing import Any

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
# Keep this as default-only so users can still override it explicitly.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai

from geonews.core.config import settings
from geonews.models.news import QueryAnalysis

logger = logging.getLogger(__name__)


class GeminiModel(str, Enum):
    FLASH = "gemini-2.5-flash"


_ANALYZE_PROMPT = """Analyze the user's query for a news app. Your task is to extract the user's \
intent and specific entities for a database search.

1. Determine the intent: choose the most fitting intent from this list: "nearby", "category", \
"source", "search". If several apply, return an array.
2. Extract entities: identify specific entities mentioned in the query. Possible entity keys are: \
"person", "organization", "location", "event", "category", "source_name".
3. Extract keywords: provide a clean array of the most important search terms, with \
misspellings corrected.

Return ONLY a valid JSON object with the keys "intent", "entities" and "keywords".

Example
User query: "Latest developments in the Elon Musk Twitter acquisition near Palo Alto"
{{"intent": ["nearby", "search"],
  "entities": {{"person": "Elon Musk", "organization": "Twitter", "location": "Palo Alto"}},
  "keywords": ["Elon Musk", "Twitter", "acquisition"]}}

Example
User query: "Top technology news from the New York Times"
{{"intent": ["category", "source"],
  "entities": {{"category": "Technology", "source_name": "New York Times"}},
  "keywords": ["Technology", "New York Times"]}}

Now analyze the following query.
User query: "{query}"
"""

_SUMMARY_PROMPT = (
    'Summarize the following news article description in one concise sentence: "{text}"'
)

# Words the mock analyzer never treats as keywords.
_MOCK_STOPWORDS = frozenset(
    "a an and about any are at be by for from get give i in is latest me near news "
    "new of on or recent show some tell the to today top what whats with".split()
)
_NEAR_WORDS = frozenset({"near", "nearby", "around", "close"})


def _mock_analysis(query: str) -> dict[str, Any]:
    """Deterministic analysis: non-stopword tokens become keywords."""
    tokens = re.findall(r"[A-Za-z0-9][A-Za-z0-9'\-]*", query)
    keywords: list[str] = []
    for tok in tokens:
        if tok.lower() not in _MOCK_STOPWORDS and tok not in keywords:
            keywords.append(tok)
    intent = ["search"]
    if any(t.lower() in _NEAR_WORDS for t in tokens):
        intent.insert(0, "nearby")
    return {"intent": intent, "entities": {}, "keywords": keywords}


def _mock_summary(text: str) -> str:
    first = re.split(r"(?<=[.!?])\s+", text.strip(), maxsplit=1)[0]
    return f"[MOCK] {first[:200]}"


def _parse_json_payload(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating a ```json fenced block."""
    cleaned = text.strip()
    fence = re.match(r"^```(?:json)?\s*(.*?)\s*```$", cleaned, re.DOTALL)
    if fence:
        cleaned = fence.group(1)
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


class GeminiClient:
    """
    Central Gemini interface. Don't instantiate per-request; use the
    module-level `gemini_client` singleton (tests build their own).
    """

    def __init__(self) -> None:
        self.mock_mode = settings.ai_mock_mode

        if not self.mock_mode:
            if not settings.gemini_api_key:
                logger.warning(
                    "GEMINI_API_KEY not set — falling back to mock mode. "
                    "Set AI_MOCK_MODE=true to silence this warning."
                )
                self.mock_mode = True
            else:
                genai.configure(api_key=settings.gemini_api_key)
                self._genai = genai

        if self.mock_mode:
            logger.info("GeminiClient initialised in MOCK mode")
        else:
            logger.info("GeminiClient initialised in REAL mode (model: %s)", GeminiModel.FLASH.value)

    async def generate(
        self,
        prompt: str,
        model: GeminiModel = GeminiModel.FLASH,
        **generation_kwargs: Any,
    ) -> str:
        """
        Generate text from a Gemini model (real mode only).

        Raises:
            Exception: Propagates Gemini SDK errors.
        """
        try:
            gemini_model = self._genai.GenerativeModel(model.value)
            response = await gemini_model.generate_content_async(prompt, **generation_kwargs)
            return response.text
        except Exception as exc:
            logger.error("Gemini API error (model=%s): %s", model.value, exc)
            raise

    async def analyze_query(self, query: str) -> QueryAnalysis:
        """Extract intent, entities and keywords from a free-text query."""
        if self.mock_mode:
            return QueryAnalysis.model_validate(_mock_analysis(query))

        text = await self.generate(
            _ANALYZE_PROMPT.format(query=query.replace('"', "'")),
            generation_config={"response_mime_type": "application/json"},
        )
        return QueryAnalysis.model_validate(_parse_json_payload(text))

    async def summarize(self, text: str) -> str:
        """One-sentence summary of an article description."""
        if self.mock_mode:
            return _mock_summary(text)

        summary = (await self.generate(_SUMMARY_PROMPT.format(text=text))).strip()
        if not summary:
            raise ValueError("empty summary from Gemini")
        return summary


# Module-level singleton: import and use this everywhere
gemini_client = GeminiClient()
