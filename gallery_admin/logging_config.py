"""
Structured logging and request context

Every log line carries the request id and acting principal; in production
the lines are JSON so flag changes can be correlated with the audit trail
(``admin_audit_logs.request_id``) and the metrics scrape.

The same context variables feed the audit logger: ``current_request_context``
snapshots them once per audit row, outside a request every field is None.
"""

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Optional

from gallery_admin.config import settings

_UNSET = "-"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default=_UNSET)
user_id_ctx: ContextVar[str] = ContextVar("user_id", default=_UNSET)
client_ip_ctx: ContextVar[str] = ContextVar("client_ip", default=_UNSET)
user_agent_ctx: ContextVar[str] = ContextVar("user_agent", default=_UNSET)

# Structured fields lifted from ``extra=`` onto JSON lines
_DOMAIN_FIELDS = ("flag_key", "change_type", "capability", "backend", "attempt", "duration_ms")


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class RequestContext:
    request_id: Optional[str]
    client_ip: Optional[str]
    user_agent: Optional[str]


def _value(var: ContextVar[str]) -> Optional[str]:
    value = var.get()
    return None if value in (_UNSET, "") else value


def current_request_context() -> RequestContext:
    return RequestContext(
        request_id=_value(request_id_ctx),
        client_ip=_value(client_ip_ctx),
        user_agent=_value(user_agent_ctx),
    )


def bind_request_context(request_id: str, client_ip: str, user_agent: Optional[str]) -> list[Token]:
    """Set the per-request variables; returns tokens for ``reset_request_context``."""
    return [
        request_id_ctx.set(request_id),
        user_id_ctx.set(_UNSET),
        client_ip_ctx.set(client_ip),
        user_agent_ctx.set(user_agent or _UNSET),
    ]


def reset_request_context(tokens: list[Token]) -> None:
    for var, token in zip((request_id_ctx, user_id_ctx, client_ip_ctx, user_agent_ctx), tokens):
        var.reset(token)


# ═══════════════════════════════════════════
#  PII Masking
# ═══════════════════════════════════════════

_EMAIL_PATTERN = re.compile(r'([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})')

_SENSITIVE_KEYS = ("password", "token", "secret", "authorization")

_REDACT_PATTERNS = [
    (re.compile(rf'("?{key}"?\s*[:=]\s*)"[^"]*"', re.I), r'\1"***"') for key in _SENSITIVE_KEYS
] + [
    (re.compile(r'(Bearer\s+)[A-Za-z0-9._~+/=-]+'), r'\1***'),
]


def _mask_email(match: re.Match) -> str:
    local, domain = match.group(1), match.group(2)
    if len(local) <= 2:
        return f"{local[0]}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def mask_pii(text: str) -> str:
    """Mask target emails and credentials before they reach a log sink."""
    for pattern, replacement in _REDACT_PATTERNS:
        text = pattern.sub(replacement, text)
    return _EMAIL_PATTERN.sub(_mask_email, text)


# ═══════════════════════════════════════════
#  Formatters
# ═══════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """One JSON object per line for the production log pipeline."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = current_request_context()
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S.000Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_pii(record.getMessage()),
            "request_id": ctx.request_id,
            "principal": _value(user_id_ctx),
            "client_ip": ctx.client_ip,
        }
        for field in _DOMAIN_FIELDS:
            entry[field] = getattr(record, field, None)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {k: v for k, v in entry.items() if v is not None}, ensure_ascii=False, default=str
        )


class HumanFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-26s | [%(request_id)s %(principal)s] %(message)s"

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = request_id_ctx.get()
        record.principal = user_id_ctx.get()
        return super().format(record)


def setup_logging() -> None:
    """Configure the root logger for the current APP_ENV."""
    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if settings.is_production or settings.is_staging:
        handler.setFormatter(JSONFormatter())
        root.setLevel(logging.INFO)
    else:
        handler.setFormatter(HumanFormatter(HumanFormatter.FORMAT, datefmt="%H:%M:%S"))
        root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    for name in ("uvicorn.access", "httpcore", "httpx", "asyncio", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
