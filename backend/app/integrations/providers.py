"""Mail provider capability and its Gmail / Outlook variants.

Callers select a provider from the ``Provider`` enum through
``get_mail_provider`` and never branch on the provider string themselves.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from app.core.config import settings
from app.integrations import gmail_service, outlook_service
from app.integrations.schemas import NormalizedEmail
from app.models.enums import Provider


class MailProvider(ABC):
    """Fetch and send capability for one mail provider."""

    provider: Provider

    @abstractmethod
    async def fetch_emails(
        self,
        access_token: str,
        since: datetime | None = None,
        page_size: int | None = None,
    ) -> list[NormalizedEmail]:
        """Return one bounded page of inbox messages, newest first."""

    @abstractmethod
    async def send_email(
        self,
        access_token: str,
        to: list[str],
        subject: str,
        body_html: str,
    ) -> None:
        """Send an HTML message from the account owning ``access_token``."""


class GmailProvider(MailProvider):
    provider = Provider.GMAIL

    async def fetch_emails(self, access_token, since=None, page_size=None):
        return await gmail_service.fetch_inbox_emails(
            access_token,
            since=since,
            max_results=page_size or settings.SYNC_PAGE_SIZE,
        )

    async def send_email(self, access_token, to, subject, body_html):
        await gmail_service.send_email(access_token, to, subject, body_html)


class OutlookProvider(MailProvider):
    provider = Provider.OUTLOOK

    async def fetch_emails(self, access_token, since=None, page_size=None):
        return await outlook_service.fetch_inbox_emails(
            access_token,
            since=since,
            top=page_size or settings.SYNC_PAGE_SIZE,
        )

    async def send_email(self, access_token, to, subject, body_html):
        await outlook_service.send_email(access_token, to, subject, body_html)


MAIL_PROVIDERS: dict[Provider, type[MailProvider]] = {
    Provider.GMAIL: GmailProvider,
    Provider.OUTLOOK: OutlookProvider,
}


def get_mail_provider(provider: Provider | str) -> MailProvider:
    """Instantiate the provider variant for a tagged provider value.

    Raises:
        ValueError: Unknown provider
    """
    return MAIL_PROVIDERS[Provider(provider)]()
