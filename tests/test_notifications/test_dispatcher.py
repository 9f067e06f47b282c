"""Tests for the Resend-backed notification dispatcher, using httpx.MockTransport."""

import json
import uuid
from unittest.mock import AsyncMock

import httpx

from taskmaster.notifications import templates
from taskmaster.notifications.dispatcher import DispatchResult, NotificationDispatcher, send_safely

ARGS = {"user_name": "Ada", "plan_name": "Pro"}


def _dispatcher(handler, api_key: str = "re_test_key") -> NotificationDispatcher:
    return NotificationDispatcher(
        api_key=api_key,
        from_email="TaskMaster <noreply@test.app>",
        api_url="https://resend.test/emails",
        transport=httpx.MockTransport(handler),
    )


class TestNotify:
    async def test_sends_rendered_email(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "email_123"})

        result = await _dispatcher(handler).notify(
            uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to="ada@test.com"
        )

        assert result.success is True
        assert result.error is None
        request = captured[0]
        assert str(request.url) == "https://resend.test/emails"
        assert request.headers["Authorization"] == "Bearer re_test_key"
        payload = json.loads(request.content)
        assert payload["to"] == ["ada@test.com"]
        assert payload["from"] == "TaskMaster <noreply@test.app>"
        assert payload["subject"] == "Your trial has ended"
        assert "Your Pro trial has ended" in payload["html"]

    async def test_missing_api_key_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _dispatcher(handler, api_key="").notify(
            uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to="ada@test.com"
        )
        assert result.success is False
        assert result.error == "not configured"

    async def test_missing_recipient_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _dispatcher(handler).notify(uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to=None)
        assert result.success is False
        assert result.error == "no recipient"

    async def test_api_error_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, text="invalid from address")

        result = await _dispatcher(handler).notify(
            uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to="ada@test.com"
        )
        assert result.success is False
        assert result.error == "invalid from address"

    async def test_transport_error_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _dispatcher(handler).notify(
            uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to="ada@test.com"
        )
        assert result.success is False
        assert "connection refused" in result.error

    async def test_unknown_template_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _dispatcher(handler).notify(uuid.uuid4(), "invoice_overdue", "en", ARGS, to="ada@test.com")
        assert result.success is False
        assert result.error.startswith("template error")


class TestSendSafely:
    async def test_passes_through_the_dispatch_result(self):
        dispatcher = AsyncMock(spec=NotificationDispatcher)
        dispatcher.notify.return_value = DispatchResult(success=True)
        user_id = uuid.uuid4()

        result = await send_safely(dispatcher, user_id, templates.TRIAL_ENDED, "lt", ARGS, to="ada@test.com")

        assert result == DispatchResult(success=True)
        dispatcher.notify.assert_awaited_once_with(user_id, templates.TRIAL_ENDED, "lt", ARGS, to="ada@test.com")

    async def test_exception_becomes_a_failed_result(self):
        dispatcher = AsyncMock(spec=NotificationDispatcher)
        dispatcher.notify.side_effect = RuntimeError("event loop closed")

        result = await send_safely(dispatcher, uuid.uuid4(), templates.TRIAL_ENDED, "en", ARGS, to="ada@test.com")

        assert result.success is False
        assert result.error == "event loop closed"
