from __future__ import annotations

import logging

import pytest

from utilitysign.persistence.db import StorageContext
from utilitysign.services.auth_audit import record_auth_event, record_auth_failure, record_auth_success, sanitize_data
from utilitysign.services.error_reporting import RequestContext
from utilitysign.stores.auth_log import AuthEvent, AuthLogFilter, AuthLogStore


def test_sanitize_redacts_credentials() -> None:
    payload = {
        "api_key": "us_live_123",
        "headers": {"Authorization": "Bearer abc", "accept": "json"},
        "attempts": [{"password": "hunter2"}],
        "client": "mobile",
    }
    sanitized = sanitize_data(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["headers"]["Authorization"] == "[REDACTED]"
    assert sanitized["headers"]["accept"] == "json"
    assert sanitized["attempts"][0]["password"] == "[REDACTED]"
    assert sanitized["client"] == "mobile"


@pytest.mark.asyncio
async def test_success_and_failure_rows(installed: StorageContext) -> None:
    context = RequestContext(ip_address="8.8.8.8", user_agent="curl/8")
    await record_auth_success(installed, method="api_key", data={"api_key": "secret"}, context=context)
    await record_auth_failure(installed, reason="invalid_signature", method="hmac", site_id=2)

    site_one = await AuthLogStore(installed).query(AuthLogFilter(site_id=1))
    assert [(record.event, record.method) for record in site_one] == [("auth_success", "api_key")]
    assert site_one[0].data == {"api_key": "[REDACTED]"}
    assert site_one[0].ip_address == "8.8.8.8"

    site_two = await AuthLogStore(installed).query(AuthLogFilter(site_id=2))
    assert [(record.event, record.reason) for record in site_two] == [("auth_failure", "invalid_signature")]


@pytest.mark.asyncio
async def test_recording_is_best_effort(ctx: StorageContext) -> None:
    # Tables are missing here; the write fails but the caller still proceeds.
    assert await record_auth_failure(ctx, reason="expired") is None
    assert await record_auth_success(ctx, method="api_key", site_id=0) is None


class _EncodingFailureStore:
    async def append(self, event: AuthEvent) -> int:
        raise UnicodeEncodeError("utf-8", event.event, 0, 1, "surrogates not allowed")


@pytest.mark.asyncio
async def test_undecodable_user_agent_never_blocks_auth(
    installed: StorageContext, caplog: pytest.LogCaptureFixture
) -> None:
    context = RequestContext(ip_address="8.8.8.8", user_agent="ua \udcff")
    with caplog.at_level(logging.WARNING, logger="utilitysign.services.auth_audit"):
        result = await record_auth_event(
            installed, event="auth_failure", event_type="authentication", reason="bad_key", context=context
        )
    assert result is None
    assert "auth_log_write_failed" in caplog.text
    assert await AuthLogStore(installed).count(1) == 0

    # Failures outside the storage taxonomy are contained too.
    store = _EncodingFailureStore()
    assert await record_auth_success(installed, method="api_key", store=store) is None  # type: ignore[arg-type]
