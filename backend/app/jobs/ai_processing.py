"""
AI enrichment orchestrator.

Consumes ``ai-processing`` jobs and writes derived artifacts back to the
record store:

- summarize: one structured summary per email, skipped if it already exists
- classify: one label from the closed category set, ``Other`` on any failure
- learn_tone: the user's ToneProfile, rebuilt from their most recent sent mail

Reply drafting runs on the request path (see ``app.agents.reply_drafter``);
a ``draft_reply`` job reaching this queue is skipped.

Completion and store errors propagate so the queue can apply its retry
policy. Malformed model output never fails a job: the structured decoder
fills named defaults instead.
"""

import logging
from enum import Enum

from opentelemetry.trace import Status, StatusCode

from app.agents.completion import CompletionService
from app.agents.prompts import (
    CLASSIFY_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    TONE_SYSTEM_PROMPT,
    build_classify_prompt,
    build_summary_prompt,
    build_tone_prompt,
)
from app.agents.structured_output import (
    CLASSIFICATION_FALLBACK,
    parse_category,
    parse_summary_analysis,
    parse_tone_analysis,
)
from app.core.config import settings
from app.core.errors import InvalidJobPayloadError, RecordNotFoundError
from app.core.tracing import get_tracer, safe_span_attributes
from app.jobs.payloads import AIProcessingJob, parse_payload
from app.jobs.queue import Job
from app.models.email import Email
from app.models.email_summary import EmailSummary
from app.models.enums import AITaskType
from app.store.records import RecordStore

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SUMMARY_TEMPERATURE = 0.3
CLASSIFY_TEMPERATURE = 0.2
CLASSIFY_MAX_TOKENS = 20
TONE_TEMPERATURE = 0.3
TONE_HISTORY_LIMIT = 20
TONE_SAMPLE_LIMIT = 10


class TaskOutcome(str, Enum):
    COMPLETED = "completed"
    # Work already done or nothing to do; not an error
    SKIPPED = "skipped"


class AIProcessingOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        completion: CompletionService,
        classify_model: str | None = None,
    ):
        self.store = store
        self.completion = completion
        self.classify_model = classify_model or settings.OPENAI_CLASSIFY_MODEL

    async def handle(self, job: Job) -> TaskOutcome:
        """Queue handler for the ``ai-processing`` topic."""
        request = parse_payload(AIProcessingJob, job.payload)
        return await self.run(request)

    async def run(self, request: AIProcessingJob) -> TaskOutcome:
        with tracer.start_as_current_span("ai_processing.run") as span:
            span.set_attributes(safe_span_attributes(
                task_type=request.task_type,
                user_id=request.user_id,
                email_id=request.email_id,
            ))

            task = AITaskType(request.task_type)
            if task == AITaskType.SUMMARIZE:
                outcome = await self.summarize(self._require_email(request))
            elif task == AITaskType.CLASSIFY:
                outcome = await self.classify(self._require_email(request))
            elif task == AITaskType.LEARN_TONE:
                outcome = await self.learn_tone(request.user_id)
            else:
                logger.info(
                    "Reply drafting is handled on the request path, skipping job",
                    extra={"user_id": request.user_id, "email_id": request.email_id}
                )
                outcome = TaskOutcome.SKIPPED

            span.set_attribute("outcome", outcome.value)
            span.set_status(Status(StatusCode.OK))
            return outcome

    def _require_email(self, request: AIProcessingJob) -> Email:
        if not request.email_id:
            raise InvalidJobPayloadError(f"{request.task_type} job requires emailId")

        email = self.store.get_email(request.email_id, user_id=request.user_id)
        if email is None:
            raise RecordNotFoundError(f"Email {request.email_id} not found")
        return email

    async def summarize(self, email: Email) -> TaskOutcome:
        """Create the email's summary unless one already exists."""
        if self.store.get_summary(email.id) is not None:
            logger.info("Summary already exists, skipping", extra={"email_id": email.id})
            return TaskOutcome.SKIPPED

        response = await self.completion.complete(
            SUMMARY_SYSTEM_PROMPT,
            build_summary_prompt(email.subject, email.body),
            temperature=SUMMARY_TEMPERATURE,
            json_response=True,
        )
        analysis = parse_summary_analysis(response)

        created = self.store.create_summary_if_absent(EmailSummary(
            email_id=email.id,
            summary=analysis.summary,
            key_points=analysis.key_points,
            sentiment=analysis.sentiment,
            urgency=analysis.urgency,
            category=analysis.category,
        ))
        if not created:
            return TaskOutcome.SKIPPED

        logger.info(
            "Email summarized",
            extra={"email_id": email.id, "urgency": analysis.urgency}
        )
        return TaskOutcome.COMPLETED

    async def classify(self, email: Email) -> TaskOutcome:
        """Tag the email with one category. Never fails on model errors."""
        try:
            response = await self.completion.complete(
                CLASSIFY_SYSTEM_PROMPT,
                build_classify_prompt(email.subject, email.body),
                temperature=CLASSIFY_TEMPERATURE,
                max_tokens=CLASSIFY_MAX_TOKENS,
                model=self.classify_model,
            )
            category = parse_category(response)
        except Exception as e:
            logger.warning(
                "Classification failed, using fallback category",
                extra={"email_id": email.id, "error": str(e)}
            )
            category = CLASSIFICATION_FALLBACK

        self.store.set_email_categories(email.id, [category])
        logger.info("Email classified", extra={"email_id": email.id, "category": category})
        return TaskOutcome.COMPLETED

    async def learn_tone(self, user_id: str) -> TaskOutcome:
        """Rebuild the user's tone profile from their own sent mail."""
        user = self.store.get_user(user_id)
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found")

        bodies = self.store.recent_sent_bodies(user_id, user.email, limit=TONE_HISTORY_LIMIT)
        if not bodies:
            logger.warning(
                "No sent emails to learn tone from, profile left unchanged",
                extra={"user_id": user_id}
            )
            return TaskOutcome.SKIPPED

        samples = bodies[:TONE_SAMPLE_LIMIT]
        response = await self.completion.complete(
            TONE_SYSTEM_PROMPT,
            build_tone_prompt(samples),
            temperature=TONE_TEMPERATURE,
            json_response=True,
        )
        analysis = parse_tone_analysis(response)

        self.store.upsert_tone_profile(
            user_id,
            formality_level=analysis.formality_level,
            average_length=analysis.average_length,
            common_phrases=analysis.common_phrases,
            signature_style=analysis.signature_style,
            sample_count=len(samples),
        )
        logger.info(
            "Tone profile updated",
            extra={"user_id": user_id, "sample_count": len(samples)}
        )
        return TaskOutcome.COMPLETED
