import datetime
import json
import logging
import sys
import traceback
from contextvars import ContextVar
from typing import Dict, Optional

# Per-request context injected by middleware/dependencies
_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id_ctx: ContextVar[Optional[int]] = ContextVar("user_id", default=None)
_admin_code_ctx: ContextVar[Optional[str]] = ContextVar("admin_code", default=None)

_RESERVED_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }
)

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "proxy-authorization",
        "x-api-key",
        "x-csrf-token",
    }
)


class JsonFormatter(logging.Formatter):
    """JSON formatter that keeps structured fields and the bound request context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {}
        if isinstance(record.msg, dict):
            payload.update(record.msg)
            payload.setdefault("message", record.msg.get("msg") or record.msg.get("event"))
        else:
            payload["message"] = record.getMessage()

        payload.setdefault("timestamp", datetime.datetime.now(datetime.timezone.utc).isoformat())
        payload.setdefault("level", record.levelname)
        payload.setdefault("logger", record.name)

        for key, ctx in (("request_id", _request_id_ctx), ("user_id", _user_id_ctx), ("admin_code", _admin_code_ctx)):
            value = getattr(record, key, None)
            if value is None:
                value = ctx.get()
            if value is not None:
                payload.setdefault(key, value)

        payload.pop("msg", None)

        context_fields = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RESERVED_RECORD_FIELDS and k not in payload and not k.startswith("_")
        }
        if context_fields:
            payload.setdefault("context", _scrub_header_fields(context_fields))

        payload = _scrub_header_fields(payload)

        if record.exc_info:
            payload["stack"] = "".join(traceback.format_exception(*record.exc_info))
        if record.stack_info:
            payload.setdefault("stack", record.stack_info)

        return json.dumps(payload, default=str)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure the root logger to emit JSON structured logs."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            h.setFormatter(JsonFormatter())
    root.setLevel(level)
    return root


def _bind(ctx: ContextVar, value) -> object:
    return ctx.set(value)


def _clear(ctx: ContextVar, token: object | None) -> None:
    try:
        if token is not None:
            ctx.reset(token)  # type: ignore[arg-type]
        else:
            ctx.set(None)
    except (ValueError, RuntimeError):
        # token created in another context (threadpool dependency); drop the binding instead
        ctx.set(None)


def bind_request_context(request_id: Optional[str]) -> object:
    """Bind the current request_id into a contextvar (returns reset token)."""
    return _bind(_request_id_ctx, request_id)


def clear_request_context(token: object | None = None) -> None:
    _clear(_request_id_ctx, token)


def bind_user_context(user_id: Optional[int]) -> object:
    """Bind the current user_id into a contextvar (returns reset token)."""
    return _bind(_user_id_ctx, user_id)


def clear_user_context(token: object | None = None) -> None:
    _clear(_user_id_ctx, token)


def bind_admin_context(admin_code: Optional[str]) -> object:
    """Bind the admin code handling the current request."""
    return _bind(_admin_code_ctx, admin_code)


def clear_admin_context(token: object | None = None) -> None:
    _clear(_admin_code_ctx, token)


def scrub_sensitive_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Replace values of credential-bearing headers with [REDACTED]."""

    def _is_secretish(header: str) -> bool:
        h = header.lower()
        if h in SENSITIVE_HEADERS:
            return True
        return any(h.endswith(suffix) for suffix in ("-token", "-secret", "-key"))

    return {k: ("[REDACTED]" if _is_secretish(k) else v) for k, v in headers.items()}


def _scrub_header_fields(payload: Dict[str, object]) -> Dict[str, object]:
    header_keys = {"headers", "request_headers", "response_headers"}
    cleaned: Dict[str, object] = {}
    for key, value in payload.items():
        if isinstance(key, str) and key.lower() in header_keys and isinstance(value, dict):
            cleaned[key] = scrub_sensitive_headers(value)
        else:
            cleaned[key] = value
    return cleaned


def log_json(level: int, msg: str, **fields):
    payload = {"event": msg, **fields}
    payload = _scrub_header_fields(payload)
    rid = _request_id_ctx.get()
    if rid:
        payload.setdefault("request_id", rid)
    uid = _user_id_ctx.get()
    if uid is not None:
        payload.setdefault("user_id", uid)
    code = _admin_code_ctx.get()
    if code:
        payload.setdefault("admin_code", code)
    logging.getLogger("crudadmin").log(level, payload)
