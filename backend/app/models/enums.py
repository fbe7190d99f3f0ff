"""Closed value sets shared by models, job payloads and integrations."""

from enum import Enum


class Provider(str, Enum):
    OUTLOOK = "outlook"
    GMAIL = "gmail"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class AITaskType(str, Enum):
    SUMMARIZE = "summarize"
    CLASSIFY = "classify"
    DRAFT_REPLY = "draft_reply"
    LEARN_TONE = "learn_tone"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
