from __future__ import annotations

from dataclasses import dataclass
import ipaddress
import logging
import secrets
import time
import traceback

from starlette.requests import Request

from utilitysign.persistence.db import StorageContext
from utilitysign.stores.error_log import ErrorEntry, ErrorLogStore


logger = logging.getLogger(__name__)

# Checked in order; proxies put the originating client first.
_CLIENT_IP_HEADERS = (
    "cf-connecting-ip",
    "client-ip",
    "x-forwarded-for",
    "x-forwarded",
    "x-cluster-client-ip",
    "forwarded-for",
    "forwarded",
)
_FALLBACK_IP = "0.0.0.0"


@dataclass(frozen=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None
    request_uri: str | None = None
    request_method: str | None = None


def generate_correlation_id(now: float | None = None) -> str:
    # err_<unix seconds>_<8 hex chars>; fits the 50 character column.
    stamp = int(now if now is not None else time.time())
    return f"err_{stamp}_{secrets.token_hex(4)}"


def severity_for_level(level: int) -> str:
    # Map stdlib logging levels onto stored severities.
    if level >= logging.CRITICAL:
        return "critical"
    if level >= logging.ERROR:
        return "error"
    if level >= logging.WARNING:
        return "warning"
    if level > logging.INFO:
        return "notice"
    if level == logging.INFO:
        return "info"
    if level >= logging.DEBUG:
        return "debug"
    return "unknown"


def _public_ip(value: str) -> str | None:
    candidate = value.split(",")[0].strip()
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return None
    if address.is_private or address.is_reserved or address.is_loopback or address.is_unspecified:
        return None
    return candidate


def client_ip(request: Request) -> str:
    for header in _CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            resolved = _public_ip(value)
            if resolved is not None:
                return resolved
    return request.client.host if request.client else _FALLBACK_IP


def request_context_from_request(request: Request | None) -> RequestContext:
    # Extract client hints for error rows without persisting credentials.
    if request is None:
        return RequestContext()
    uri = request.url.path
    if request.url.query:
        uri = f"{uri}?{request.url.query}"
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_uri=uri,
        request_method=request.method,
    )


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


class ErrorReporter:
    """Best-effort writer for the error log.

    Reporting must never turn one failure into two: if the row cannot be
    written the entry is logged through the process logger instead and the
    call still returns normally.
    """

    def __init__(self, ctx: StorageContext, *, store: ErrorLogStore | None = None) -> None:
        self._ctx = ctx
        self._store = store or ErrorLogStore(ctx)

    async def report(self, entry: ErrorEntry) -> int | None:
        try:
            return await self._store.append(entry)
        except Exception as exc:  # noqa: BLE001 - logging must never fail the caller
            logger.error(
                "error_log_write_failed site_id=%s correlation_id=%s type=%s message=%s",
                entry.site_id,
                entry.correlation_id,
                entry.type,
                entry.message,
                exc_info=exc,
            )
            return None

    def _entry(
        self,
        *,
        type: str,
        message: str,
        severity: str,
        site_id: int | None,
        file: str | None,
        line: int | None,
        stack_trace: str | None,
        user_id: int | None,
        correlation_id: str | None,
        context: RequestContext | None,
    ) -> ErrorEntry:
        # Clip free-form values to their column widths so a long path never loses the row.
        request = context or RequestContext()
        return ErrorEntry(
            type=_clip(type, 100) or "Error",
            message=message or type,
            severity=severity,
            site_id=site_id if site_id is not None else self._ctx.default_site_id,
            file=_clip(file, 255),
            line=line,
            correlation_id=correlation_id or generate_correlation_id(self._ctx.now().timestamp()),
            user_id=user_id,
            ip_address=_clip(request.ip_address, 45),
            user_agent=request.user_agent,
            request_uri=_clip(request.request_uri, 500),
            request_method=_clip(request.request_method, 10),
            stack_trace=stack_trace,
            timestamp=self._ctx.now(),
        )

    async def record_exception(
        self,
        exc: BaseException,
        *,
        site_id: int | None = None,
        severity: str = "critical",
        user_id: int | None = None,
        correlation_id: str | None = None,
        context: RequestContext | None = None,
    ) -> str:
        # Returns the correlation id so callers can surface it to the user.
        frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
        last = frames[-1] if frames else None
        entry = self._entry(
            type=type(exc).__name__,
            message=str(exc),
            severity=severity,
            site_id=site_id,
            file=last.filename if last else None,
            line=last.lineno if last else None,
            stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            user_id=user_id,
            correlation_id=correlation_id,
            context=context,
        )
        await self.report(entry)
        return entry.correlation_id or ""

    async def record_message(
        self,
        message: str,
        *,
        level: int = logging.ERROR,
        type: str = "Message",
        site_id: int | None = None,
        user_id: int | None = None,
        correlation_id: str | None = None,
        context: RequestContext | None = None,
    ) -> str:
        entry = self._entry(
            type=type,
            message=message,
            severity=severity_for_level(level),
            site_id=site_id,
            file=None,
            line=None,
            stack_trace=None,
            user_id=user_id,
            correlation_id=correlation_id,
            context=context,
        )
        await self.report(entry)
        return entry.correlation_id or ""
