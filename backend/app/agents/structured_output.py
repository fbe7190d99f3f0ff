"""Lenient decoding of structured model output.

Model responses requested as JSON can still come back malformed, partial or
with out-of-range values. Decoding happens in two steps: ``decode_json_object``
fails with DataShapeError on anything that is not a JSON object, and the
pydantic models below fill every missing or invalid field with its named
fallback. The ``parse_*`` helpers combine both and never raise.
"""

import json
import logging
import math
import re
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.core.errors import DataShapeError
from app.models.enums import Sentiment, Urgency

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK = "No summary available"
SENTIMENT_FALLBACK = Sentiment.NEUTRAL.value
URGENCY_FALLBACK = Urgency.MEDIUM.value
FORMALITY_FALLBACK = 0.5
AVERAGE_LENGTH_FALLBACK = 100
SIGNATURE_STYLE_FALLBACK = ""
MAX_COMMON_PHRASES = 5

CLASSIFICATION_FALLBACK = "Other"
EMAIL_CATEGORIES = (
    "Work/Professional",
    "Personal",
    "Marketing/Promotional",
    "Social/Notifications",
    "Finance",
    "Travel",
    "Shopping",
    CLASSIFICATION_FALLBACK,
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def decode_json_object(text: str | None) -> dict[str, Any]:
    """Decode model output into a dict.

    Raises:
        DataShapeError: Empty output, invalid JSON, or a non-object value
    """
    if not text or not text.strip():
        raise DataShapeError("Empty structured response")

    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise DataShapeError(f"Invalid JSON in structured response: {e.msg}") from e

    if not isinstance(data, dict):
        raise DataShapeError(f"Expected JSON object, got {type(data).__name__}")
    return data


def _string_list(value: Any, limit: int | None = None) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [str(item).strip() for item in value if item is not None and str(item).strip()]
    return items[:limit] if limit is not None else items


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class SummaryAnalysis(BaseModel):
    summary: str = SUMMARY_FALLBACK
    key_points: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("keyPoints", "key_points"),
    )
    sentiment: str = SENTIMENT_FALLBACK
    urgency: str = URGENCY_FALLBACK
    category: str | None = None

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return SUMMARY_FALLBACK

    @field_validator("key_points", mode="before")
    @classmethod
    def _key_points(cls, v: Any) -> list[str]:
        return _string_list(v)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _sentiment(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in {s.value for s in Sentiment} else SENTIMENT_FALLBACK

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in {u.value for u in Urgency} else URGENCY_FALLBACK

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str | None:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None


class ToneAnalysis(BaseModel):
    formality_level: float = Field(
        default=FORMALITY_FALLBACK,
        validation_alias=AliasChoices("formalityLevel", "formality_level"),
    )
    average_length: int = Field(
        default=AVERAGE_LENGTH_FALLBACK,
        validation_alias=AliasChoices("averageLength", "average_length"),
    )
    common_phrases: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("commonPhrases", "common_phrases"),
    )
    signature_style: str = Field(
        default=SIGNATURE_STYLE_FALLBACK,
        validation_alias=AliasChoices("signatureStyle", "signature_style"),
    )

    @field_validator("formality_level", mode="before")
    @classmethod
    def _formality(cls, v: Any) -> float:
        number = _number(v)
        if number is None:
            return FORMALITY_FALLBACK
        return min(max(number, 0.0), 1.0)

    @field_validator("average_length", mode="before")
    @classmethod
    def _average_length(cls, v: Any) -> int:
        number = _number(v)
        if number is None or number < 1:
            return AVERAGE_LENGTH_FALLBACK
        return int(round(number))

    @field_validator("common_phrases", mode="before")
    @classmethod
    def _common_phrases(cls, v: Any) -> list[str]:
        return _string_list(v, limit=MAX_COMMON_PHRASES)

    @field_validator("signature_style", mode="before")
    @classmethod
    def _signature_style(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else SIGNATURE_STYLE_FALLBACK


def _decode_or_empty(text: str | None, kind: str) -> dict[str, Any]:
    try:
        return decode_json_object(text)
    except DataShapeError as e:
        logger.warning(
            f"Unusable {kind} response, applying defaults",
            extra={"error": e.message}
        )
        return {}


def parse_summary_analysis(text: str | None) -> SummaryAnalysis:
    return SummaryAnalysis.model_validate(_decode_or_empty(text, "summary"))


def parse_tone_analysis(text: str | None) -> ToneAnalysis:
    return ToneAnalysis.model_validate(_decode_or_empty(text, "tone"))


def _label_parts(category: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in category.split("/"))


def parse_category(text: str | None) -> str:
    """Map a classifier answer onto the closed category set.

    Exact (case-insensitive) label first, then one half of a two-part label
    ("Work", "Promotional"), then either form as a word inside a longer
    answer; anything else is ``Other``.
    """
    if not text:
        return CLASSIFICATION_FALLBACK

    answer = text.strip().strip(".\"'` ").lower()
    for category in EMAIL_CATEGORIES:
        if answer == category.lower():
            return category

    for category in EMAIL_CATEGORIES:
        if answer in _label_parts(category):
            return category

    for category in EMAIL_CATEGORIES:
        if category.lower() in answer:
            return category

    words = set(re.findall(r"[a-z]+", answer))
    for category in EMAIL_CATEGORIES:
        if words & set(_label_parts(category)):
            return category

    return CLASSIFICATION_FALLBACK
