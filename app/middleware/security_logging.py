"""
Security event logging.

Suspicious request input is flagged before the handler runs. Validation,
CSRF, rate-limit and auth failures are flagged from the response afterwards.
Events go to a SecurityEventSink opened on startup and closed on shutdown.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.logging_config import security_file_handler

logger = logging.getLogger(__name__)

# ===========================
# EVENT TYPES & SEVERITY
# ===========================
SQL_INJECTION_ATTEMPT = "SQL_INJECTION_ATTEMPT"
XSS_ATTEMPT = "XSS_ATTEMPT"
PATH_TRAVERSAL_ATTEMPT = "PATH_TRAVERSAL_ATTEMPT"
COMMAND_INJECTION_ATTEMPT = "COMMAND_INJECTION_ATTEMPT"
CSRF_VIOLATION = "CSRF_VIOLATION"
VALIDATION_FAILURE = "VALIDATION_FAILURE"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"

SEVERITY = {
    SQL_INJECTION_ATTEMPT: "CRITICAL",
    XSS_ATTEMPT: "CRITICAL",
    CSRF_VIOLATION: "HIGH",
    UNAUTHORIZED_ACCESS: "HIGH",
    VALIDATION_FAILURE: "MEDIUM",
    RATE_LIMIT_EXCEEDED: "MEDIUM",
    SUSPICIOUS_ACTIVITY: "MEDIUM",
}

SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "jwt", "csrf")

# Checked in order, first match wins
SUSPICIOUS_PATTERNS = [
    (XSS_ATTEMPT, "Potential XSS attempt", [
        re.compile(r"<script", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
    ]),
    (PATH_TRAVERSAL_ATTEMPT, "Potential path traversal attempt", [
        re.compile(r"\.\."),
    ]),
    (SQL_INJECTION_ATTEMPT, "Potential SQL injection attempt", [
        re.compile(r"\b(union|select|insert|update|delete|drop|create|alter)\b", re.IGNORECASE),
        re.compile(r"['\";]"),
    ]),
    (COMMAND_INJECTION_ATTEMPT, "Potential command injection attempt", [
        re.compile(r"[;&|`$]"),
    ]),
]


def severity_for(event_type: str) -> str:
    return SEVERITY.get(event_type, "LOW")


def detect_suspicious_input(value) -> Optional[dict]:
    """Classify a string against the known attack signatures. None if benign."""
    if not isinstance(value, str) or not value:
        return None
    for event_type, description, patterns in SUSPICIOUS_PATTERNS:
        if any(pattern.search(value) for pattern in patterns):
            return {"type": event_type, "description": description, "input": value[:100]}
    return None


def redact(data):
    if isinstance(data, dict):
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else redact(item)
            for key, item in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


def _iter_strings(data, path=""):
    if isinstance(data, dict):
        for key, item in data.items():
            if any(s in str(key).lower() for s in SENSITIVE_KEYS):
                continue
            yield from _iter_strings(item, f"{path}.{key}" if path else str(key))
    elif isinstance(data, list):
        for index, item in enumerate(data):
            yield from _iter_strings(item, f"{path}[{index}]")
    elif isinstance(data, str):
        yield path, data


# ===========================
# SINKS
# ===========================
@dataclass
class SecurityEvent:
    type: str
    details: dict = field(default_factory=dict)
    ip: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    user_agent: Optional[str] = None
    severity: str = ""
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def __post_init__(self):
        if not self.severity:
            self.severity = severity_for(self.type)
        self.details = redact(self.details)


class SecurityEventSink:
    """Append-only destination for security events."""

    def open(self):
        pass

    def write(self, event: SecurityEvent):
        raise NotImplementedError

    def close(self):
        pass


class RotatingFileSecuritySink(SecurityEventSink):
    """JSON lines in logs/security.log, mirrored to the application log."""

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = log_dir
        self._logger = logging.getLogger("security_events")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._handler = None

    def open(self):
        if self._handler is None:
            self._handler = security_file_handler(self.log_dir)
            self._logger.addHandler(self._handler)

    def write(self, event: SecurityEvent):
        logger.warning(f"Security event {event.type} ({event.severity}) {event.method} {event.path}")
        self._logger.info(json.dumps(asdict(event), default=str))

    def close(self):
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None


def get_sink(request: Request) -> Optional[SecurityEventSink]:
    return getattr(request.app.state, "security_sink", None)


def record_event(request: Request, event_type: str, details: Optional[dict] = None):
    sink = get_sink(request)
    if sink is None:
        return
    event = SecurityEvent(
        type=event_type,
        details=details or {},
        ip=request.client.host if request.client else None,
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("user-agent"),
    )
    try:
        sink.write(event)
    except Exception as e:
        logger.error(f"Failed to write security event {event_type}: {e}")


# ===========================
# POST-RESPONSE HOOKS
# ===========================
@dataclass
class ResponseContext:
    status_code: int
    message: Optional[str] = None
    validation_errors: Optional[list] = None


def validation_failure_hook(ctx: ResponseContext) -> Optional[tuple]:
    if ctx.status_code == 400 and ctx.validation_errors:
        return VALIDATION_FAILURE, {"errors": ctx.validation_errors}
    return None


def csrf_violation_hook(ctx: ResponseContext) -> Optional[tuple]:
    if ctx.status_code == 403 and ctx.message and "CSRF" in ctx.message:
        return CSRF_VIOLATION, {"message": ctx.message}
    return None


def rate_limit_hook(ctx: ResponseContext) -> Optional[tuple]:
    if ctx.status_code == 429:
        return RATE_LIMIT_EXCEEDED, {"message": ctx.message}
    return None


def unauthorized_hook(ctx: ResponseContext) -> Optional[tuple]:
    if ctx.status_code == 401:
        return UNAUTHORIZED_ACCESS, {"message": ctx.message}
    return None


DEFAULT_HOOKS: List[Callable[[ResponseContext], Optional[tuple]]] = [
    validation_failure_hook,
    csrf_violation_hook,
    rate_limit_hook,
    unauthorized_hook,
]


class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, hooks=None):
        super().__init__(app)
        self.hooks = list(hooks if hooks is not None else DEFAULT_HOOKS)

    async def dispatch(self, request: Request, call_next) -> Response:
        # 1. Inspect input before the handler
        await self._inspect_request(request)

        response = await call_next(request)

        # 2. Post-response hooks
        ctx = ResponseContext(
            status_code=response.status_code,
            message=getattr(request.state, "error_message", None),
            validation_errors=getattr(request.state, "validation_errors", None),
        )
        for hook in self.hooks:
            result = hook(ctx)
            if result:
                event_type, details = result
                record_event(request, event_type, details)
        return response

    async def _inspect_request(self, request: Request):
        candidates = list(request.query_params.items())

        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = await request.body()
            if body:
                try:
                    payload = json.loads(body)
                except ValueError:
                    payload = None
                candidates.extend(_iter_strings(payload))

        for location, value in candidates:
            match = detect_suspicious_input(value)
            if match:
                record_event(request, match["type"], {"field": location, **match})
