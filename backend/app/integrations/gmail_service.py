"""Gmail API service layer.

This module fetches inbox messages from the Gmail REST API, maps them onto
NormalizedEmail, and sends HTML mail with proper MIME formatting.
"""

import base64
import logging
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import getaddresses, parseaddr
from typing import Any
import httpx

from app.core.config import settings
from app.core.tracing import get_tracer, safe_span_attributes
from app.integrations.http_errors import raise_for_api_error, raise_transport_failure
from app.integrations.schemas import NormalizedEmail
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
SERVICE_NAME = "Gmail"


def _auth_headers(user_token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {user_token}",
        "Accept": "application/json"
    }


def build_inbox_query(since: datetime | None = None) -> str:
    """Build the Gmail search query for an inbox page.

    Gmail's ``after:`` operator takes epoch seconds.
    """
    query = "in:inbox"
    if since is not None:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        query += f" after:{int(since.timestamp())}"
    return query


def _get_header_value(headers: list[dict], name: str) -> str | None:
    """Extract header value from Gmail message headers (case-insensitive)."""
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value")
    return None


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _find_part(payload: dict[str, Any], mime_type: str) -> dict[str, Any] | None:
    if payload.get("mimeType") == mime_type and payload.get("body", {}).get("data"):
        return payload
    for part in payload.get("parts", []) or []:
        found = _find_part(part, mime_type)
        if found:
            return found
    return None


def _extract_body(payload: dict[str, Any]) -> str:
    """Return the message body, preferring HTML over plain text parts."""
    if payload.get("body", {}).get("data"):
        return _decode_base64url(payload["body"]["data"])

    part = _find_part(payload, "text/html") or _find_part(payload, "text/plain")
    if part:
        return _decode_base64url(part["body"]["data"])
    return ""


def _has_attachments(payload: dict[str, Any]) -> bool:
    for part in payload.get("parts", []) or []:
        if part.get("filename") or _has_attachments(part):
            return True
    return False


def _addresses(header_value: str | None) -> list[str]:
    if not header_value:
        return []
    return [address for _, address in getaddresses([header_value]) if address]


def normalize_message(message: dict[str, Any]) -> NormalizedEmail:
    """Map a Gmail ``format=full`` message onto NormalizedEmail."""
    payload = message.get("payload", {}) or {}
    headers = payload.get("headers", []) or []
    label_ids = message.get("labelIds", []) or []

    _, sender = parseaddr(_get_header_value(headers, "From") or "")
    internal_date_ms = int(message.get("internalDate") or 0)

    return NormalizedEmail(
        external_id=message["id"],
        subject=_get_header_value(headers, "Subject") or "(No Subject)",
        sender=sender,
        to_recipients=_addresses(_get_header_value(headers, "To")),
        cc_recipients=_addresses(_get_header_value(headers, "Cc")),
        body=_extract_body(payload),
        body_preview=message.get("snippet", ""),
        received_at=datetime.fromtimestamp(internal_date_ms / 1000, tz=timezone.utc),
        is_read="UNREAD" not in label_ids,
        importance="high" if "IMPORTANT" in label_ids else "normal",
        has_attachments=_has_attachments(payload),
        categories=list(label_ids),
        conversation_id=message.get("threadId"),
    )


async def fetch_inbox_emails(
    user_token: str,
    since: datetime | None = None,
    max_results: int = 100,
) -> list[NormalizedEmail]:
    """Fetch the most recent inbox page, newest first.

    Args:
        user_token: Valid Google access token
        since: Only messages received after this instant (incremental sync)
        max_results: Page size bound

    Returns:
        Normalized emails in Gmail's list order. A message whose detail fetch
        fails is logged and left out; the rest of the page is still returned.

    Raises:
        AuthError: Credential rejected (401/403)
        TransportError: Rate limit, API error, timeout or network failure
    """
    with tracer.start_as_current_span("gmail.fetch_inbox_emails") as span:
        query = build_inbox_query(since)
        span.set_attributes(safe_span_attributes(
            operation="fetch_inbox_emails",
            max_results=max_results,
            incremental=since is not None,
        ))

        logger.info(
            "Listing Gmail inbox messages",
            extra={"max_results": max_results, "incremental": since is not None}
        )

        try:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    f"{GMAIL_API_BASE}/messages",
                    headers=_auth_headers(user_token),
                    params={"q": query, "maxResults": max_results},
                )
                raise_for_api_error(response, SERVICE_NAME, "list_messages")
                message_refs = response.json().get("messages", []) or []

                emails: list[NormalizedEmail] = []
                for ref in message_refs:
                    message_id = ref.get("id")
                    if not message_id:
                        continue
                    try:
                        detail = await client.get(
                            f"{GMAIL_API_BASE}/messages/{message_id}",
                            headers=_auth_headers(user_token),
                            params={"format": "full"},
                        )
                        raise_for_api_error(detail, SERVICE_NAME, "get_message")
                        emails.append(normalize_message(detail.json()))
                    except Exception as e:
                        logger.error(
                            "Error fetching Gmail message",
                            extra={"message_id": message_id, "error": str(e)}
                        )

        except httpx.HTTPError as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise_transport_failure(e, SERVICE_NAME, "fetch_inbox_emails")

        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise

        logger.info(
            "Gmail inbox fetched",
            extra={"listed_count": len(message_refs), "fetched_count": len(emails)}
        )
        span.set_status(Status(StatusCode.OK))
        span.set_attribute("message_count", len(emails))
        return emails


def _build_message_mime(to_addresses: list[str], subject: str, html_body: str) -> str:
    """Build a base64url-encoded MIME message ready for ``messages/send``."""
    message = MIMEMultipart("alternative")
    message["To"] = ", ".join(to_addresses)
    message["Subject"] = subject
    message.attach(MIMEText(html_body, "html", "utf-8"))

    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


async def send_email(user_token: str, to: list[str], subject: str, html_body: str) -> None:
    """Send an HTML email from the authenticated Gmail account.

    Raises:
        AuthError: Credential rejected
        TransportError: API, timeout or network failure
    """
    with tracer.start_as_current_span("gmail.send_email") as span:
        span.set_attributes(safe_span_attributes(
            operation="send_email",
            recipient_count=len(to),
            body_html=html_body,
        ))

        try:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    f"{GMAIL_API_BASE}/messages/send",
                    headers={**_auth_headers(user_token), "Content-Type": "application/json"},
                    json={"raw": _build_message_mime(to, subject, html_body)},
                )
                raise_for_api_error(response, SERVICE_NAME, "send_email")

        except httpx.HTTPError as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise_transport_failure(e, SERVICE_NAME, "send_email")

        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise

        logger.info("Email sent via Gmail", extra={"recipient_count": len(to)})
        span.set_status(Status(StatusCode.OK))
