"""Unit tests for the AI enrichment orchestrator."""

import json

import pytest
from sqlmodel import select

from app.core.errors import InvalidJobPayloadError, RecordNotFoundError, TransportError
from app.jobs.ai_processing import AIProcessingOrchestrator, TaskOutcome
from app.jobs.payloads import AIProcessingJob
from app.jobs.queue import AI_TOPIC, Job
from app.models.email_summary import EmailSummary
from app.models.enums import AITaskType


@pytest.fixture
def orchestrator(store, completion) -> AIProcessingOrchestrator:
    return AIProcessingOrchestrator(store, completion, classify_model="gpt-3.5-turbo")


@pytest.fixture
def stored_email(store, user, email_factory):
    email, _ = store.upsert_email(user.id, email_factory("msg-1"))
    return email


def _job(task_type, user_id, email_id=None) -> AIProcessingJob:
    return AIProcessingJob(user_id=user_id, task_type=task_type, email_id=email_id)


SUMMARY_RESPONSE = json.dumps({
    "summary": "Alice asks to move the review to Tuesday.",
    "keyPoints": ["Review moved", "Tuesday 3pm"],
    "sentiment": "positive",
    "urgency": "high",
    "category": "Work/Professional",
})


class TestSummarize:
    @pytest.mark.asyncio
    async def test_creates_summary(self, orchestrator, store, user, stored_email, completion):
        completion.complete.return_value = SUMMARY_RESPONSE

        outcome = await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id, stored_email.id))

        assert outcome == TaskOutcome.COMPLETED
        summary = store.get_summary(stored_email.id)
        assert summary.summary == "Alice asks to move the review to Tuesday."
        assert summary.key_points == ["Review moved", "Tuesday 3pm"]
        assert summary.sentiment == "positive"
        assert summary.urgency == "high"
        assert summary.category == "Work/Professional"
        assert completion.complete.await_args.kwargs["json_response"] is True

    @pytest.mark.asyncio
    async def test_second_summarize_is_a_no_op(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.return_value = SUMMARY_RESPONSE
        request = _job(AITaskType.SUMMARIZE, user.id, stored_email.id)

        first = await orchestrator.run(request)
        second = await orchestrator.run(request)

        assert first == TaskOutcome.COMPLETED
        assert second == TaskOutcome.SKIPPED
        assert completion.complete.await_count == 1

        with store.session() as session:
            rows = session.exec(
                select(EmailSummary).where(EmailSummary.email_id == stored_email.id)
            ).all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_missing_urgency_falls_back_to_medium(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.return_value = json.dumps({
            "summary": "Quarterly numbers attached.",
            "keyPoints": [],
            "sentiment": "neutral",
        })

        await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id, stored_email.id))

        summary = store.get_summary(stored_email.id)
        assert summary.urgency == "medium"
        assert summary.summary == "Quarterly numbers attached."

    @pytest.mark.asyncio
    async def test_malformed_response_still_persists_defaults(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.return_value = "Sorry, I cannot help with that."

        outcome = await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id, stored_email.id))

        assert outcome == TaskOutcome.COMPLETED
        summary = store.get_summary(stored_email.id)
        assert summary.summary == "No summary available"
        assert summary.sentiment == "neutral"
        assert summary.urgency == "medium"
        assert summary.key_points == []

    @pytest.mark.asyncio
    async def test_completion_error_propagates(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.side_effect = TransportError("OpenAI unavailable")

        with pytest.raises(TransportError):
            await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id, stored_email.id))

        assert store.get_summary(stored_email.id) is None

    @pytest.mark.asyncio
    async def test_unknown_email(self, orchestrator, user):
        with pytest.raises(RecordNotFoundError):
            await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id, "no-such-email"))

    @pytest.mark.asyncio
    async def test_email_id_required(self, orchestrator, user):
        with pytest.raises(InvalidJobPayloadError):
            await orchestrator.run(_job(AITaskType.SUMMARIZE, user.id))


class TestClassify:
    @pytest.mark.asyncio
    async def test_sets_category(self, orchestrator, store, user, stored_email, completion):
        completion.complete.return_value = "Finance"

        outcome = await orchestrator.run(_job(AITaskType.CLASSIFY, user.id, stored_email.id))

        assert outcome == TaskOutcome.COMPLETED
        assert store.get_email(stored_email.id).categories == ["Finance"]
        kwargs = completion.complete.await_args.kwargs
        assert kwargs["model"] == "gpt-3.5-turbo"
        assert kwargs["max_tokens"] == 20

    @pytest.mark.asyncio
    async def test_completion_error_falls_back_to_other(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.side_effect = TransportError("OpenAI unavailable")

        outcome = await orchestrator.run(_job(AITaskType.CLASSIFY, user.id, stored_email.id))

        assert outcome == TaskOutcome.COMPLETED
        assert store.get_email(stored_email.id).categories == ["Other"]

    @pytest.mark.asyncio
    async def test_unknown_label_falls_back_to_other(
        self, orchestrator, store, user, stored_email, completion
    ):
        completion.complete.return_value = "Spam"

        await orchestrator.run(_job(AITaskType.CLASSIFY, user.id, stored_email.id))

        assert store.get_email(stored_email.id).categories == ["Other"]


class TestLearnTone:
    TONE_RESPONSE = json.dumps({
        "formalityLevel": 0.8,
        "averageLength": 120,
        "commonPhrases": ["Thanks", "Best regards"],
        "signatureStyle": "Best regards, Owner",
    })

    def _store_sent(self, store, user, email_factory, count):
        for i in range(count):
            store.upsert_email(
                user.id,
                email_factory(f"sent-{i}", sender=user.email, body=f"Sent body {i}"),
            )

    @pytest.mark.asyncio
    async def test_builds_profile_from_sent_mail(
        self, orchestrator, store, user, email_factory, completion
    ):
        self._store_sent(store, user, email_factory, 3)
        completion.complete.return_value = self.TONE_RESPONSE

        outcome = await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        assert outcome == TaskOutcome.COMPLETED
        profile = store.get_tone_profile(user.id)
        assert profile.formality_level == 0.8
        assert profile.average_length == 120
        assert profile.common_phrases == ["Thanks", "Best regards"]
        assert profile.signature_style == "Best regards, Owner"
        assert profile.sample_count == 3

    @pytest.mark.asyncio
    async def test_uses_at_most_ten_samples(
        self, orchestrator, store, user, email_factory, completion
    ):
        self._store_sent(store, user, email_factory, 14)
        completion.complete.return_value = self.TONE_RESPONSE

        await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        assert store.get_tone_profile(user.id).sample_count == 10
        prompt = completion.complete.await_args.args[1]
        assert prompt.count("\n\n---\n\n") == 9

    @pytest.mark.asyncio
    async def test_no_sent_mail_leaves_profile_unchanged(
        self, orchestrator, store, user, stored_email, completion
    ):
        outcome = await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        assert outcome == TaskOutcome.SKIPPED
        assert store.get_tone_profile(user.id) is None
        completion.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_numeric_fields_use_defaults(
        self, orchestrator, store, user, email_factory, completion
    ):
        self._store_sent(store, user, email_factory, 1)
        completion.complete.return_value = json.dumps({"signatureStyle": "Cheers"})

        await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        profile = store.get_tone_profile(user.id)
        assert profile.formality_level == 0.5
        assert profile.average_length == 100
        assert profile.common_phrases == []

    @pytest.mark.asyncio
    async def test_relearning_replaces_profile(
        self, orchestrator, store, user, email_factory, completion
    ):
        self._store_sent(store, user, email_factory, 2)
        completion.complete.return_value = self.TONE_RESPONSE
        await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        completion.complete.return_value = json.dumps({
            "formalityLevel": 0.2,
            "averageLength": 40,
            "commonPhrases": ["cheers"],
            "signatureStyle": "-O",
        })
        await orchestrator.run(_job(AITaskType.LEARN_TONE, user.id))

        profile = store.get_tone_profile(user.id)
        assert profile.formality_level == 0.2
        assert profile.common_phrases == ["cheers"]
        assert profile.signature_style == "-O"

    @pytest.mark.asyncio
    async def test_unknown_user(self, orchestrator):
        with pytest.raises(RecordNotFoundError):
            await orchestrator.run(_job(AITaskType.LEARN_TONE, "missing-user"))


class TestDispatch:
    @pytest.mark.asyncio
    async def test_draft_reply_job_is_skipped(self, orchestrator, user, stored_email, completion):
        outcome = await orchestrator.run(_job(AITaskType.DRAFT_REPLY, user.id, stored_email.id))

        assert outcome == TaskOutcome.SKIPPED
        completion.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handle_rejects_invalid_payload(self, orchestrator):
        job = Job(id="job-1", topic=AI_TOPIC, payload={"userId": "u1", "taskType": "translate"})

        with pytest.raises(InvalidJobPayloadError):
            await orchestrator.handle(job)

    @pytest.mark.asyncio
    async def test_handle_accepts_camel_case(self, orchestrator, user, stored_email, completion):
        completion.complete.return_value = "Personal"
        job = Job(
            id="job-1",
            topic=AI_TOPIC,
            payload={"emailId": stored_email.id, "userId": user.id, "taskType": "classify"},
        )

        assert await orchestrator.handle(job) == TaskOutcome.COMPLETED
