"""Completion service backed by OpenAI chat models through LangChain."""

import logging
import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from app.core.config import settings
from app.core.errors import TransportError
from app.core.tracing import get_tracer, safe_span_attributes
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

JSON_RESPONSE_FORMAT = {"type": "json_object"}


class CompletionService:
    """Single-shot chat completion: one system prompt, one user prompt, text back."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.OPENAI_TIMEOUT_SECONDS

    def _build_llm(self, model: str, temperature: float, max_tokens: int | None):
        llm = ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self.api_key,
            timeout=self.timeout,
        )
        return llm

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_tokens: int | None = None,
        json_response: bool = False,
        model: str | None = None,
    ) -> str:
        """Run one completion and return the generated text.

        With ``json_response`` the model is constrained to emit a JSON object,
        but the text may still be partial; callers decode it leniently.

        Raises:
            TransportError: The OpenAI API was unreachable, timed out or errored
        """
        model = model or self.model

        with tracer.start_as_current_span("completion.complete") as span:
            span.set_attributes(safe_span_attributes(
                model=model,
                temperature=temperature,
                json_response=json_response,
                prompt=user_prompt,
            ))

            llm = self._build_llm(model, temperature, max_tokens)
            if json_response:
                llm = llm.bind(response_format=JSON_RESPONSE_FORMAT)

            try:
                response = await llm.ainvoke([
                    SystemMessage(content=system_prompt),
                    HumanMessage(content=user_prompt),
                ])
            except openai.APIError as e:
                logger.error(
                    "Completion request failed",
                    extra={"model": model, "error_type": type(e).__name__}
                )
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise TransportError(
                    f"Completion service error: {e}",
                    status_code=502,
                    error_code="completion_error",
                ) from e

            content = response.content if isinstance(response.content, str) else ""
            span.set_attribute("response_length", len(content))
            span.set_status(Status(StatusCode.OK))
            return content.strip()
