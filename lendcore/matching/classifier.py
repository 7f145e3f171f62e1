"""External classifiers used by Smart Pass.

A classifier receives one unmatched label plus the code/category vocabulary and
returns its single best suggestion, or None. Two implementations ship:

- ``OpenAIClassifier``: chat-completion call constrained to a JSON object
- ``FuzzyClassifier``: offline RapidFuzz ranking over code names and aliases
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import openai
from rapidfuzz import fuzz

from lendcore.canonical.normalize import is_item_code, normalize_alias, slugify_words
from lendcore.config import LLMConfig
from lendcore.models import (
    ClassificationRequest,
    ClassifierSuggestion,
    DataType,
    ItemCode,
)

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class Classifier(Protocol):
    """Anything that can propose a code for one label."""

    async def classify(self, request: ClassificationRequest) -> ClassifierSuggestion | None:
        ...


def generate_fallback_code(name: str, category: str) -> ItemCode:
    """Derive a code from an item name when no usable code was proposed.

    Examples:
        >>> generate_fallback_code("Site Investigation", "Professional Fees").code
        '<site.investigation>'
    """
    slug = slugify_words(name) or slugify_words(category) or "item"

    lowered = name.lower()
    if "rate" in lowered or "percentage" in lowered or "%" in lowered:
        data_type = DataType.PERCENTAGE
    elif "count" in lowered or "number" in lowered or "units" in lowered:
        data_type = DataType.NUMBER
    else:
        data_type = DataType.CURRENCY

    return ItemCode(code=f"<{slug}>", display_name=name.strip(), category=category, data_type=data_type)


class OpenAIClassifier:
    """LLM-backed classifier (OpenAI chat completions, JSON mode)."""

    SYSTEM_PROMPT = """You are a financial data codification specialist for a real estate
development lender. You map extracted financial line items to standardized item codes.

Code format rules:
- Codes use angle brackets: <category.item> or <item>
- Lowercase, dots for hierarchy, e.g. <stamp.duty>, <build.cost>, <interest.rate>
- Prefer an existing code when one is semantically equivalent
- Propose a new code only when nothing existing fits

Data types: currency (costs, prices, fees), number (counts), percentage (rates),
string (text).

Use confidence 0.9+ for clear matches and 0.7-0.8 for ambiguous ones.

Respond with a JSON object:
{
  "code": "<stamp.duty>",
  "display_name": "Stamp Duty",
  "category": "Site Costs",
  "data_type": "currency",
  "is_new_code": false,
  "confidence": 0.95,
  "reasoning": "SDLT is Stamp Duty Land Tax"
}"""

    def __init__(self, config: LLMConfig | None = None, client: Any = None):
        self.config = config or LLMConfig()
        self.client = client

    def _get_client(self) -> Any:
        if self.client is None:
            self.client = openai.AsyncOpenAI(api_key=self.config.api_key)
        return self.client

    def build_prompt(self, request: ClassificationRequest) -> str:
        """Render the user message: vocabulary first, then the item."""
        lines = ["CATEGORIES:"]
        for category in request.categories:
            examples = ", ".join(category.examples[:6])
            lines.append(f"- {category.name}: {category.description} (e.g. {examples})")

        if request.codes:
            lines.append("")
            lines.append("EXISTING CODES:")
            for code in request.codes:
                aliases = f" aka {', '.join(code.aliases)}" if code.aliases else ""
                lines.append(
                    f"- {code.code} ({code.display_name}) [{code.data_type.value}] "
                    f"in {code.category}{aliases}"
                )
        else:
            lines.append("")
            lines.append("NO EXISTING CODES YET. Propose a new code.")

        lines.append("")
        lines.append("ITEM TO CODIFY:")
        lines.append(
            f'"{request.label}" (value: {request.value}, category: {request.category})'
        )
        return "\n".join(lines)

    async def classify(self, request: ClassificationRequest) -> ClassifierSuggestion | None:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.config.llm_model,
            messages=[
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(request)},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        return self.parse_response(content, request)

    def parse_response(
        self, content: str, request: ClassificationRequest
    ) -> ClassifierSuggestion | None:
        """Parse the model output. Malformed output yields None."""
        try:
            data = json.loads(_FENCE.sub("", content.strip()))
        except json.JSONDecodeError as e:
            logger.error("Failed to parse classifier response as JSON: %s", e)
            logger.debug("Raw response: %s", content)
            return None

        # Some models wrap the answer in a list
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            return None

        code = (data.get("code") or data.get("suggested_code") or "").strip()
        if not code:
            return None

        display_name = data.get("display_name") or request.label
        category = data.get("category") or request.category
        known = {entry.code for entry in request.codes}

        try:
            data_type = DataType(data.get("data_type", "currency"))
        except ValueError:
            data_type = None

        if not is_item_code(code):
            fallback = generate_fallback_code(display_name, category)
            logger.info("Malformed code %r replaced by %s", code, fallback.code)
            code = fallback.code
            data_type = data_type or fallback.data_type

        try:
            confidence = min(max(float(data.get("confidence", 0.0)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.0

        return ClassifierSuggestion(
            code=code,
            confidence=confidence,
            display_name=display_name,
            category=category,
            data_type=data_type,
            is_new_code=code not in known,
            reasoning=data.get("reasoning"),
        )


class FuzzyClassifier:
    """RapidFuzz string similarity over code display names and aliases.

    Confidence is the best ``token_sort_ratio`` / 100. Scores below
    ``min_score`` produce no suggestion.
    """

    def __init__(self, min_score: int = 70):
        self.min_score = min_score

    async def classify(self, request: ClassificationRequest) -> ClassifierSuggestion | None:
        label = normalize_alias(request.label)
        if not label:
            return None

        best = None
        best_score = 0.0
        best_text = ""
        for entry in request.codes:
            for text in (entry.display_name, *entry.aliases):
                score = fuzz.token_sort_ratio(label, normalize_alias(text))
                # Same category breaks ties
                if score > best_score or (
                    score == best_score
                    and best is not None
                    and entry.category == request.category
                    and best.category != request.category
                ):
                    best, best_score, best_text = entry, score, text

        if best is None or best_score < self.min_score:
            return None

        return ClassifierSuggestion(
            code=best.code,
            confidence=round(best_score / 100.0, 4),
            display_name=best.display_name,
            category=best.category,
            data_type=best.data_type,
            is_new_code=False,
            reasoning=f"Fuzzy match on '{best_text}' (score {best_score:.0f})",
        )


def build_classifier(config: LLMConfig, fuzzy_min_score: int = 70) -> Classifier:
    """Pick the configured classifier; without an API key fall back to fuzzy."""
    if config.provider == "openai" and config.api_key:
        return OpenAIClassifier(config)
    if config.provider == "openai":
        logger.warning("OPENAI_API_KEY not set; using the fuzzy classifier")
    return FuzzyClassifier(min_score=fuzzy_min_score)
