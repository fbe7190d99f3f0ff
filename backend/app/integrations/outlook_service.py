"""Outlook / Microsoft Graph API service layer.

This module fetches messages from the Microsoft Graph API for Outlook
mailboxes, maps them onto NormalizedEmail, and sends HTML mail.
"""

import logging
from datetime import datetime, timezone
from typing import Any
import httpx

from app.core.config import settings
from app.core.tracing import get_tracer, safe_span_attributes
from app.integrations.http_errors import raise_for_api_error, raise_transport_failure
from app.integrations.schemas import NormalizedEmail
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0/me"
SERVICE_NAME = "Outlook"
GRAPH_MAX_PAGE_SIZE = 1000

MESSAGE_FIELDS = (
    "id,subject,from,toRecipients,ccRecipients,body,bodyPreview,receivedDateTime,"
    "hasAttachments,isRead,importance,categories,conversationId"
)


def _auth_headers(user_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {user_token}",
        "Accept": "application/json",
        "Content-Type": "application/json"
    }


def _format_graph_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_list_params(since: datetime | None = None, top: int = 100) -> dict[str, Any]:
    """Query parameters for one page of messages, newest first."""
    params: dict[str, Any] = {
        "$top": min(top, GRAPH_MAX_PAGE_SIZE),
        "$select": MESSAGE_FIELDS,
        "$orderby": "receivedDateTime DESC",
    }
    if since is not None:
        params["$filter"] = f"receivedDateTime ge {_format_graph_datetime(since)}"
    return params


def _parse_graph_datetime(value: str | None) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _recipient_addresses(recipients: list[dict[str, Any]] | None) -> list[str]:
    return [
        r.get("emailAddress", {}).get("address")
        for r in recipients or []
        if r.get("emailAddress", {}).get("address")
    ]


def normalize_message(message: dict[str, Any]) -> NormalizedEmail:
    """Map a Graph message resource onto NormalizedEmail."""
    return NormalizedEmail(
        external_id=message["id"],
        subject=message.get("subject") or "(No Subject)",
        sender=(message.get("from") or {}).get("emailAddress", {}).get("address", ""),
        to_recipients=_recipient_addresses(message.get("toRecipients")),
        cc_recipients=_recipient_addresses(message.get("ccRecipients")),
        body=(message.get("body") or {}).get("content", ""),
        body_preview=message.get("bodyPreview") or "",
        received_at=_parse_graph_datetime(message.get("receivedDateTime")),
        is_read=bool(message.get("isRead")),
        importance=message.get("importance") or "normal",
        has_attachments=bool(message.get("hasAttachments")),
        categories=list(message.get("categories") or []),
        conversation_id=message.get("conversationId"),
    )


async def fetch_inbox_emails(
    user_token: str,
    since: datetime | None = None,
    top: int = 100,
) -> list[NormalizedEmail]:
    """Fetch the most recent page of messages, newest first.

    Args:
        user_token: Valid Microsoft access token
        since: Only messages received at or after this instant
        top: Page size bound

    Raises:
        AuthError: Credential rejected (401/403)
        TransportError: Rate limit, API error, timeout or network failure
    """
    with tracer.start_as_current_span("outlook.fetch_inbox_emails") as span:
        span.set_attributes(safe_span_attributes(
            operation="fetch_inbox_emails",
            top=top,
            incremental=since is not None,
        ))

        logger.info(
            "Listing Outlook messages",
            extra={"top": top, "incremental": since is not None}
        )

        try:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    f"{GRAPH_API_BASE}/messages",
                    headers=_auth_headers(user_token),
                    params=build_list_params(since, top),
                )
                raise_for_api_error(response, SERVICE_NAME, "list_messages")
                messages = response.json().get("value", []) or []

        except httpx.HTTPError as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise_transport_failure(e, SERVICE_NAME, "fetch_inbox_emails")

        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise

        emails = [normalize_message(message) for message in messages]

        logger.info("Outlook messages fetched", extra={"message_count": len(emails)})
        span.set_status(Status(StatusCode.OK))
        span.set_attribute("message_count", len(emails))
        return emails


async def send_email(user_token: str, to: list[str], subject: str, html_body: str) -> None:
    """Send an HTML email through Graph ``sendMail`` (answers 202 Accepted).

    Raises:
        AuthError: Credential rejected
        TransportError: API, timeout or network failure
    """
    with tracer.start_as_current_span("outlook.send_email") as span:
        span.set_attributes(safe_span_attributes(
            operation="send_email",
            recipient_count=len(to),
            body_html=html_body,
        ))

        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": address}} for address in to],
            }
        }

        try:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    f"{GRAPH_API_BASE}/sendMail",
                    headers=_auth_headers(user_token),
                    json=payload,
                )
                raise_for_api_error(response, SERVICE_NAME, "send_email")

        except httpx.HTTPError as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise_transport_failure(e, SERVICE_NAME, "send_email")

        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise

        logger.info("Email sent via Outlook", extra={"recipient_count": len(to)})
        span.set_status(Status(StatusCode.OK))
