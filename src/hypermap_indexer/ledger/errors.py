"""Ledger error taxonomy and classification helpers."""

from __future__ import annotations

from typing import Any


class LedgerError(RuntimeError):
    """Stable, policy-safe error surfaced as a reason code."""

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        *,
        status: int | None = None,
        rpc_code: int | None = None,
    ) -> None:
        self.code = code
        self.detail = detail
        self.status = status
        self.rpc_code = rpc_code
        message = f"{code}:{detail}" if detail else code
        super().__init__(message)


class TransientError(LedgerError):
    """Retryable: rate limiting, timeouts, transient server errors."""


class FatalError(LedgerError):
    """Non-retryable: invalid arguments, malformed remote responses."""


class IngestionCancelled(RuntimeError):
    """Raised when a cancellable wait is interrupted by shutdown."""

    def __init__(self, detail: str | None = None) -> None:
        self.code = "INGESTION_CANCELLED"
        self.detail = detail
        super().__init__(f"{self.code}:{detail}" if detail else self.code)


TRANSIENT_HTTP_STATUSES = frozenset({408, 429, 502, 503, 504})
TRANSIENT_RPC_CODES = frozenset({-32005})
TRANSIENT_CODES = frozenset({"NETWORK_ERROR", "TIMEOUT", "SERVER_ERROR", "RATE_LIMITED"})
TRANSIENT_MESSAGE_TOKENS = (
    "rate limit",
    "too many requests",
    "limit exceeded",
    "exceeded",
    "timeout",
    "timed out",
    "connection reset",
    "connection aborted",
    "server overload",
    "overloaded",
    "bad response",
    "failed response",
    "missing response",
)


def is_transient_error(exc: BaseException) -> bool:
    """Default retry classifier: known transient signatures only."""
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, (FatalError, IngestionCancelled)):
        return False
    status = _int_attr(exc, "status") or _int_attr(exc, "status_code")
    if status in TRANSIENT_HTTP_STATUSES:
        return True
    rpc_code = _int_attr(exc, "rpc_code")
    if rpc_code in TRANSIENT_RPC_CODES:
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.upper() in TRANSIENT_CODES:
        return True
    if isinstance(code, int) and (code == 429 or code in TRANSIENT_RPC_CODES):
        return True
    return is_transient_message(str(exc or ""))


def is_transient_message(text: str) -> bool:
    lowered = text.lower()
    return any(token in lowered for token in TRANSIENT_MESSAGE_TOKENS)


def reason_code(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    if isinstance(exc, (LedgerError, IngestionCancelled)) and isinstance(code, str):
        return code
    text = str(exc or "").strip()
    if text.isupper():
        return text
    if ":" in text:
        head = text.split(":", 1)[0].strip()
        if head.isupper():
            return head
    return "INTERNAL_ERROR"


def _int_attr(exc: BaseException, name: str) -> int | None:
    value: Any = getattr(exc, name, None)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None
