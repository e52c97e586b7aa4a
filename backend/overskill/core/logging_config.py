"""Logging setup shared by the API process and the background worker.

``LOG_FORMAT=json`` writes one JSON object per line for log shipping;
``text`` is for a terminal. Two context variables tag records with where
they came from: the API middleware sets ``request_id_var``, the worker
sets ``job_id_var`` while it processes a job.

R2 credentials, presigned URL signatures and LLM provider keys can end
up in botocore and LiteLLM error strings, which this service logs as
``extra={"error": ...}``. Redaction therefore covers the message, its
arguments, string ``extra`` values and exception text.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional


request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default="")

_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {"message", "asctime"}


def _context_fields() -> dict:
    fields = {}
    request_id = request_id_var.get("")
    if request_id:
        fields["request_id"] = request_id
    job_id = job_id_var.get("")
    if job_id:
        fields["job_id"] = job_id
    return fields


class _JsonFormatter(logging.Formatter):
    """One JSON line per record; ``extra`` keys land at the top level.

    ``logger.warning("Object store read failed", extra={"object_key": k})``
    becomes ``{"message": "Object store read failed", "object_key": k, ...}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in entry:
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)

    def formatException(self, ei) -> str:
        return _redact(super().formatException(ei))


class _TextFormatter(logging.Formatter):
    """Human-readable lines, prefixed with the request or job id when set."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = " ".join(f"{k}={v}" for k, v in _context_fields().items())
        return f"{line} [{context}]" if context else line

    def formatException(self, ei) -> str:
        return _redact(super().formatException(ei))


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

_REDACTED = "***REDACTED***"

# Patterns whose first group is a label to keep; the rest is replaced.
_LABELLED_SECRETS = [
    # SigV4 presigned URL parameters and Authorization headers
    re.compile(r"(?i)(x-amz-(?:signature|credential|security-token)=)[^&\s'\"]+"),
    re.compile(r"(?i)(authorization:\s*aws4-hmac-sha256\s+)[^\n'\"]+"),
    re.compile(r"(?i)(bearer\s+)[a-zA-Z0-9._\-]{20,}"),
    re.compile(
        r"(?i)((?:r2_secret_access_key|aws_secret_access_key|secret_access_key|"
        r"r2_access_key_id|access_key_id|display_name_api_key|api_key|password|token)"
        r"['\"]?\s*[=:]\s*['\"]?)[^\s,'\"&]{8,}"
    ),
]

# Patterns replaced whole.
_BARE_SECRETS = [
    re.compile(r"\bsk-(?:ant-|proj-|or-)?[a-zA-Z0-9_\-]{20,}\b"),  # LLM provider keys
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),                          # AWS access key ids
]


def _redact(text: str) -> str:
    for pattern in _LABELLED_SECRETS:
        text = pattern.sub(lambda m: m.group(1) + _REDACTED, text)
    for pattern in _BARE_SECRETS:
        text = pattern.sub(_REDACTED, text)
    return text


class _SecretFilter(logging.Filter):
    """Scrub credentials from messages, arguments, extra fields and tracebacks."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        record.msg = _redact(str(record.msg))
        for key, value in list(record.__dict__.items()):
            if key not in _STANDARD_ATTRS and isinstance(value, str):
                setattr(record, key, _redact(value))
        if record.exc_text:
            record.exc_text = _redact(record.exc_text)
        return True


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install the stdout handler on the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Defaults to INFO.
        log_format: ``"json"`` (default) or ``"text"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_SecretFilter())
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_TextFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # botocore logs every R2 request; SQLAlchemy and LiteLLM are similarly chatty.
    for name in ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "urllib3", "LiteLLM", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging configured", extra={"level": level, "format": fmt})
