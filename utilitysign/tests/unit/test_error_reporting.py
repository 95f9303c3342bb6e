from __future__ import annotations

import logging
import re

import pytest
from starlette.requests import Request

from utilitysign.core.errors import StorageUnavailableError
from utilitysign.persistence.db import StorageContext
from utilitysign.services.error_reporting import (
    ErrorReporter,
    RequestContext,
    generate_correlation_id,
    request_context_from_request,
    severity_for_level,
)
from utilitysign.stores.error_log import ErrorEntry, ErrorLogFilter, ErrorLogStore


def _request(headers: dict[str, str], *, client: tuple[str, int] = ("10.0.0.5", 4431)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/wp-json/utilitysign/v1/sign",
        "query_string": b"order=42",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "client": client,
    }
    return Request(scope)


class _FailingStore:
    async def append(self, entry: ErrorEntry) -> int:
        raise StorageUnavailableError("storage unavailable: disk detached")


class _EncodingFailureStore:
    async def append(self, entry: ErrorEntry) -> int:
        raise UnicodeEncodeError("utf-8", entry.message, 0, 1, "surrogates not allowed")


def test_correlation_id_format() -> None:
    correlation_id = generate_correlation_id(1700000000)
    assert re.fullmatch(r"err_1700000000_[0-9a-f]{8}", correlation_id)
    assert generate_correlation_id(1700000000) != correlation_id


def test_severity_mapping() -> None:
    assert severity_for_level(logging.CRITICAL) == "critical"
    assert severity_for_level(logging.ERROR) == "error"
    assert severity_for_level(logging.WARNING) == "warning"
    assert severity_for_level(25) == "notice"
    assert severity_for_level(logging.INFO) == "info"
    assert severity_for_level(logging.DEBUG) == "debug"
    assert severity_for_level(logging.NOTSET) == "unknown"


def test_request_context_prefers_public_forwarded_ip() -> None:
    request = _request({"X-Forwarded-For": "8.8.8.8, 10.0.0.1", "User-Agent": "pytest-agent"})
    context = request_context_from_request(request)
    assert context.ip_address == "8.8.8.8"
    assert context.user_agent == "pytest-agent"
    assert context.request_uri == "/wp-json/utilitysign/v1/sign?order=42"
    assert context.request_method == "POST"


def test_request_context_falls_back_to_peer_address() -> None:
    request = _request({"X-Forwarded-For": "192.168.1.10", "Client-IP": "not-an-ip"})
    assert request_context_from_request(request).ip_address == "10.0.0.5"
    assert request_context_from_request(None) == RequestContext()


@pytest.mark.asyncio
async def test_record_exception_captures_location_and_trace(installed: StorageContext) -> None:
    reporter = ErrorReporter(installed)
    try:
        raise ValueError("signature payload is empty")
    except ValueError as exc:
        correlation_id = await reporter.record_exception(
            exc,
            site_id=2,
            context=RequestContext(ip_address="8.8.4.4", request_method="POST"),
        )

    records = await ErrorLogStore(installed).query(ErrorLogFilter(site_id=2))
    assert len(records) == 1
    record = records[0]
    assert record.correlation_id == correlation_id
    assert record.type == "ValueError"
    assert record.severity == "critical"
    assert record.file is not None and record.file.endswith("test_error_reporting.py")
    assert record.line is not None
    assert "signature payload is empty" in (record.stack_trace or "")
    assert record.ip_address == "8.8.4.4"


@pytest.mark.asyncio
async def test_record_message_uses_level_severity(installed: StorageContext) -> None:
    reporter = ErrorReporter(installed)
    await reporter.record_message("quota nearly exhausted", level=logging.WARNING, type="Quota")
    records = await ErrorLogStore(installed).query(ErrorLogFilter(site_id=1))
    assert [(record.type, record.severity) for record in records] == [("Quota", "warning")]


@pytest.mark.asyncio
async def test_reporting_never_raises(installed: StorageContext, caplog: pytest.LogCaptureFixture) -> None:
    reporter = ErrorReporter(installed, store=_FailingStore())  # type: ignore[arg-type]
    with caplog.at_level(logging.ERROR, logger="utilitysign.services.error_reporting"):
        correlation_id = await reporter.record_message("lost row")
    assert correlation_id.startswith("err_")
    assert "error_log_write_failed" in caplog.text

    # Invalid entries are logged rather than raised as well.
    real = ErrorReporter(installed)
    assert await real.report(ErrorEntry(type="X", message="m", severity="fatal")) is None


@pytest.mark.asyncio
async def test_undecodable_text_never_raises(installed: StorageContext, caplog: pytest.LogCaptureFixture) -> None:
    reporter = ErrorReporter(installed)
    with caplog.at_level(logging.ERROR, logger="utilitysign.services.error_reporting"):
        correlation_id = await reporter.record_message("bad path \udcff")
    assert correlation_id.startswith("err_")
    assert "error_log_write_failed" in caplog.text
    assert await ErrorLogStore(installed).count(1) == 0

    # Failures outside the storage taxonomy are contained too.
    driver_failure = ErrorReporter(installed, store=_EncodingFailureStore())  # type: ignore[arg-type]
    assert await driver_failure.report(ErrorEntry(type="X", message="m", severity="error")) is None
