"""
OpenTelemetry tracing configuration and utilities for the email copilot backend.

Spans cover the critical path of the job pipeline:
- Mail provider calls (Gmail, Microsoft Graph)
- Completion service calls
- Sync and AI enrichment job runs

Sensitive data (tokens, addresses, message bodies) is masked before it is
attached to a span.
"""

import os
import re
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

SENSITIVE_KEYS = ("token", "secret", "key", "password", "credential")
ADDRESS_KEYS = ("email", "sender", "recipient", "to_address")
CONTENT_KEYS = ("body", "content", "message", "prompt", "shorthand")
IDENTIFIER_SUFFIXES = ("_id", "_count")


def _build_exporter(exporter_type: str) -> SpanExporter | None:
    if exporter_type == "otlp":
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        return OTLPSpanExporter(endpoint=endpoint, insecure=True)
    if exporter_type == "console":
        return ConsoleSpanExporter()
    return None


def setup_tracing(service_name: str = "email-copilot-backend") -> TracerProvider:
    """
    Initialize OpenTelemetry tracing for one process (API or worker).

    Environment variables:
    - OTEL_EXPORTER_OTLP_ENDPOINT: OTLP collector endpoint (default: http://localhost:4317)
    - OTEL_TRACES_EXPORTER: "otlp", "console", or "none" (default: none)
    """
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": "0.1.0",
        }
    )
    provider = TracerProvider(resource=resource)

    exporter = _build_exporter(os.getenv("OTEL_TRACES_EXPORTER", "none").lower())
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return provider


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


def mask_token(token: str | None) -> str:
    """Show the first 8 and last 4 characters of a credential, mask the rest."""
    if not token:
        return "<none>"

    if len(token) <= 12:
        return "***"

    return f"{token[:8]}...{token[-4:]}"


def mask_email(email: str | None) -> str:
    """
    Mask an email address for PII protection.

    Handles bare addresses and "Name <address>" headers; shows the first
    character of the local part and the domain.
    """
    if not email:
        return "<none>"

    bracketed = re.search(r"<([^>]+)>", email)
    address = bracketed.group(1) if bracketed else email.strip()

    match = re.match(r"^([^@])([^@]*)(@.+)$", address)
    if match:
        first_char, rest, domain = match.groups()
        return f"{first_char}{'*' * min(len(rest), 5)}{domain}"

    return "***@***"


def sanitize_message_content(content: str | None, max_length: int = 100) -> str:
    """Truncate content for tracing and blank out long token-like strings."""
    if not content:
        return "<empty>"

    if len(content) > max_length:
        content = content[:max_length] + "..."

    return re.sub(r'[A-Za-z0-9_-]{40,}', '***TOKEN***', content)


def safe_span_attributes(**kwargs: Any) -> dict[str, Any]:
    """
    Create span attributes with automatic sanitization.

    - token/secret/key/password/credential keys -> masked token
    - email/sender/recipient keys -> masked address (lists masked per item)
    - body/content/message/prompt keys -> truncated content
    - keys ending in _id or _count pass through unchanged
    - None values are dropped, non-primitive values stringified
    """
    sanitized: dict[str, Any] = {}

    for key, value in kwargs.items():
        if value is None:
            continue

        lowered = key.lower()
        if lowered.endswith(IDENTIFIER_SUFFIXES) and isinstance(value, (str, int)):
            sanitized[key] = value
        elif any(k in lowered for k in SENSITIVE_KEYS):
            sanitized[key] = mask_token(str(value))
        elif any(k in lowered for k in ADDRESS_KEYS):
            if isinstance(value, (list, tuple)):
                sanitized[key] = [mask_email(str(v)) for v in value]
            else:
                sanitized[key] = mask_email(str(value))
        elif any(k in lowered for k in CONTENT_KEYS):
            sanitized[key] = sanitize_message_content(str(value))
        elif isinstance(value, (str, int, float, bool)):
            sanitized[key] = value
        else:
            sanitized[key] = str(value)

    return sanitized
