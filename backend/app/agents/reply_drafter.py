"""
Tone-matched reply drafting.

Runs inline on the request path rather than through the job queue: the
caller is waiting on the HTTP response and a human edits or approves the
draft before anything is sent.

The tone instruction block is built deterministically from the user's
ToneProfile thresholds, then a single completion call produces the draft.
"""
import logging
from dataclasses import dataclass

from app.agents.completion import CompletionService
from app.agents.prompts import REPLY_SYSTEM_PROMPT, build_reply_prompt
from app.models.tone_profile import ToneProfile

logger = logging.getLogger(__name__)

# Strict ">" comparisons: exactly 0.7 is not "very formal"
FORMAL_THRESHOLD = 0.7
PROFESSIONAL_THRESHOLD = 0.4
DETAILED_LENGTH_THRESHOLD = 150
MODERATE_LENGTH_THRESHOLD = 80
MAX_TONE_PHRASES = 3

DEFAULT_TONE_INSTRUCTIONS = "Use a professional, friendly tone."
DEFAULT_TONE_LABEL = "professional"

REPLY_TEMPERATURE = 0.7
REPLY_MAX_TOKENS = 500


@dataclass
class DraftResult:
    generated_reply: str
    tone: str


def describe_formality(formality_level: float) -> str:
    if formality_level > FORMAL_THRESHOLD:
        return "very formal"
    if formality_level > PROFESSIONAL_THRESHOLD:
        return "professional but friendly"
    return "casual"


def describe_length(average_length: int) -> str:
    if average_length > DETAILED_LENGTH_THRESHOLD:
        return "detailed"
    if average_length > MODERATE_LENGTH_THRESHOLD:
        return "moderate"
    return "concise"


def build_tone_instructions(profile: ToneProfile | None) -> str:
    """Turn a tone profile into the instruction block for the drafting prompt."""
    if profile is None:
        return DEFAULT_TONE_INSTRUCTIONS

    phrases = ", ".join(profile.common_phrases[:MAX_TONE_PHRASES])

    return f"""Tone Instructions:
- Writing style: {describe_formality(profile.formality_level)}
- Response length: {describe_length(profile.average_length)} (aim for ~{profile.average_length} words)
- Common phrases to use: {phrases}
- Sign-off style: {profile.signature_style}"""


def describe_tone(profile: ToneProfile | None) -> str:
    """Coarse tone label stored with the draft."""
    if profile is None:
        return DEFAULT_TONE_LABEL
    if profile.formality_level > FORMAL_THRESHOLD:
        return "formal"
    if profile.formality_level > PROFESSIONAL_THRESHOLD:
        return "professional"
    return "casual"


async def generate_reply(
    completion: CompletionService,
    subject: str,
    body: str,
    shorthand: str,
    profile: ToneProfile | None,
) -> DraftResult:
    """
    Expand a shorthand instruction into a full reply in the user's tone.

    Args:
        completion: Completion service to call once
        subject: Original email subject
        body: Original email body (truncated in the prompt)
        shorthand: The user's terse intent, e.g. "yes, tues 3pm works"
        profile: The user's tone profile, or None for the default tone

    Returns:
        DraftResult with the raw generated text and the tone label

    Raises:
        TransportError: The completion call failed
    """
    tone_instructions = build_tone_instructions(profile)

    logger.info(
        "Generating reply draft",
        extra={"has_tone_profile": profile is not None, "shorthand_length": len(shorthand)}
    )

    generated = await completion.complete(
        REPLY_SYSTEM_PROMPT,
        build_reply_prompt(subject, body, shorthand, tone_instructions),
        temperature=REPLY_TEMPERATURE,
        max_tokens=REPLY_MAX_TOKENS,
    )

    return DraftResult(generated_reply=generated, tone=describe_tone(profile))
