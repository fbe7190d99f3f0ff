"""Prompt templates for the enrichment and drafting calls."""

from app.agents.structured_output import EMAIL_CATEGORIES, MAX_COMMON_PHRASES

SUMMARY_BODY_CHARS = 2000
CLASSIFY_BODY_CHARS = 500
REPLY_BODY_CHARS = 1000
TONE_SAMPLE_SEPARATOR = "\n\n---\n\n"

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert email analyst. Analyze emails and provide structured insights."
)
CLASSIFY_SYSTEM_PROMPT = (
    "You are an email classifier. Respond with only the category name."
)
TONE_SYSTEM_PROMPT = "You are an expert in writing style analysis."
REPLY_SYSTEM_PROMPT = (
    "You are an expert email writer. Generate professional, contextual email replies."
)


def build_summary_prompt(subject: str, body: str) -> str:
    return f"""Analyze the following email and provide:
1. A concise summary (2-3 sentences)
2. Key points (bullet points)
3. Sentiment (positive/neutral/negative)
4. Urgency level (low/medium/high)
5. Suggested category

Email Subject: {subject}
Email Body: {body[:SUMMARY_BODY_CHARS]}

Respond in JSON format with keys: summary, keyPoints (array), sentiment, urgency, category"""


def build_classify_prompt(subject: str, body: str) -> str:
    categories = "\n".join(f"- {category}" for category in EMAIL_CATEGORIES)
    return f"""Classify this email into one of these categories:
{categories}

Email Subject: {subject}
Email Body: {body[:CLASSIFY_BODY_CHARS]}

Return only the category name."""


def build_tone_prompt(samples: list[str]) -> str:
    return f"""Analyze these sent emails and extract the writing style characteristics:

{TONE_SAMPLE_SEPARATOR.join(samples)}

Provide analysis in JSON format with:
- formalityLevel: 0-1 (0=casual, 1=very formal)
- averageLength: average word count
- commonPhrases: array of frequently used phrases (max {MAX_COMMON_PHRASES})
- signatureStyle: description of how they sign off

Respond in JSON format."""


def build_reply_prompt(subject: str, body: str, shorthand: str, tone_instructions: str) -> str:
    return f"""Generate a professional email reply based on the shorthand input.

Original Email Subject: {subject}
Original Email Body: {body[:REPLY_BODY_CHARS]}

Shorthand Reply: {shorthand}

{tone_instructions}

Generate a complete, well-formatted email reply that expands on the shorthand while maintaining the user's tone and style."""
