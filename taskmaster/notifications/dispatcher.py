"""Notification dispatcher — renders lifecycle emails and sends them through Resend."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from taskmaster.config import settings
from taskmaster.notifications.templates import render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: str | None = None


class NotificationDispatcher:
    """Sends templated emails. Delivery problems are reported, never raised."""

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.from_email = from_email or settings.resend_from_email
        self.api_url = api_url or settings.resend_api_url
        self.timeout = timeout or settings.email_timeout_seconds
        self._transport = transport

    async def notify(
        self,
        user_id: uuid.UUID,
        template_kind: str,
        locale: str,
        template_args: dict[str, Any],
        *,
        to: str | None,
    ) -> DispatchResult:
        """Render ``template_kind`` for ``locale`` and email it to ``to``."""
        if not to:
            logger.info("No email address for user %s, skipping %s email", user_id, template_kind)
            return DispatchResult(success=False, error="no recipient")

        if not self.api_key:
            logger.info("RESEND_API_KEY not configured, skipping %s email for user %s", template_kind, user_id)
            return DispatchResult(success=False, error="not configured")

        try:
            email = render(template_kind, locale, template_args)
        except (KeyError, ValueError) as e:
            logger.error("Cannot render %s email for user %s: %s", template_kind, user_id, e)
            return DispatchResult(success=False, error=f"template error: {e}")

        payload = {
            "from": self.from_email,
            "to": [to],
            "subject": email.subject,
            "html": email.html,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.error("Email send error for user %s (%s): %s", user_id, template_kind, e)
            return DispatchResult(success=False, error=str(e))

        if response.is_error:
            logger.error(
                "Resend API error for user %s (%s): %s %s",
                user_id,
                template_kind,
                response.status_code,
                response.text,
            )
            return DispatchResult(success=False, error=response.text or f"HTTP {response.status_code}")

        logger.info("Sent %s email to user %s", template_kind, user_id)
        return DispatchResult(success=True)


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency returning a dispatcher configured from settings."""
    return NotificationDispatcher()


async def send_safely(
    dispatcher: NotificationDispatcher,
    user_id: uuid.UUID,
    template_kind: str,
    locale: str,
    template_args: dict[str, Any],
    *,
    to: str | None,
) -> DispatchResult:
    """Call ``dispatcher.notify`` for work that is already committed; nothing escapes."""
    try:
        return await dispatcher.notify(user_id, template_kind, locale, template_args, to=to)
    except Exception as e:
        logger.exception("Email dispatch (%s) for user %s raised", template_kind, user_id)
        return DispatchResult(success=False, error=str(e))
