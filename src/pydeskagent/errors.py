from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    QUOTA = "quota"
    CONTEXT = "context"
    PROVIDER = "provider"
    VALIDATION = "validation"
    INTERNAL = "internal"


@dataclass
class AppError:
    """Classified failure of a generation turn, as pushed to the output sink."""

    category: ErrorCategory
    message: str
    technical_detail: str = ""
    retryable: bool = False
    status_code: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "technical_detail": self.technical_detail,
            "retryable": self.retryable,
            "status_code": self.status_code,
        }


class SessionNotFoundError(KeyError):
    pass


class StreamAbortedError(Exception):
    """Raised inside the tool loop when the session's abort signal fires."""


class InvalidTransitionError(RuntimeError):
    pass


FALLBACK_MESSAGE = "The request failed, please try again."

# Tested in order, first match wins.
_ERROR_PATTERNS: list[tuple[re.Pattern[str], ErrorCategory, str, bool]] = [
    (re.compile(r"ECONNREFUSED.*11434"), ErrorCategory.NETWORK, "The local Ollama service is not running.", True),
    (re.compile(r"ECONNREFUSED|connection refused", re.I), ErrorCategory.NETWORK, "Cannot connect to the service, check that it is running.", True),
    (re.compile(r"ETIMEDOUT|ESOCKETTIMEDOUT|timed?\s*out", re.I), ErrorCategory.NETWORK, "The request timed out, check your network and retry.", True),
    (re.compile(r"ENOTFOUND|name or service not known|getaddrinfo", re.I), ErrorCategory.NETWORK, "Cannot resolve the service address, check network or proxy settings.", True),
    (re.compile(r"failed to fetch|fetch failed|network\s*error", re.I), ErrorCategory.NETWORK, "Network connection failed.", True),
    (re.compile(r"ECONNRESET|EPIPE|socket hang up|connection reset", re.I), ErrorCategory.NETWORK, "The connection was interrupted, please retry.", True),
    (re.compile(r"invalid.*api[_\s]?key|api[_\s]?key.*invalid", re.I), ErrorCategory.AUTH, "The API key is invalid, check your settings.", False),
    (re.compile(r"unauthorized|\b401\b", re.I), ErrorCategory.AUTH, "Authentication failed, check the API key.", False),
    (re.compile(r"forbidden|\b403\b", re.I), ErrorCategory.AUTH, "Access denied, check the permissions of the API key.", False),
    (re.compile(r"authentication_error", re.I), ErrorCategory.AUTH, "Authentication failed, check the API key.", False),
    (re.compile(r"insufficient_quota|billing|payment", re.I), ErrorCategory.QUOTA, "Insufficient API balance.", False),
    (re.compile(r"\b429\b|rate[_\s]?limit|too many requests", re.I), ErrorCategory.QUOTA, "Too many requests, please wait and retry.", True),
    (re.compile(r"resource[_\s]?exhausted", re.I), ErrorCategory.QUOTA, "API resources exhausted, retry later.", True),
    (re.compile(r"context[_\s]?length[_\s]?exceeded|maximum.*context", re.I), ErrorCategory.CONTEXT, "The conversation is too long, start a new one or trim history.", False),
    (re.compile(r"max[_\s]?tokens|token[_\s]?limit|too many tokens", re.I), ErrorCategory.CONTEXT, "The message is too long, shorten it and retry.", False),
    (re.compile(r"prompt.*too\s*long|input.*too\s*long", re.I), ErrorCategory.CONTEXT, "The input is too long, shorten it and retry.", False),
    (re.compile(r"model.*(not found|does not exist)|unknown model", re.I), ErrorCategory.PROVIDER, "The configured model does not exist.", False),
    (re.compile(r"overloaded|service unavailable|bad gateway", re.I), ErrorCategory.PROVIDER, "The AI service is temporarily unavailable.", True),
]


def _status_code(error: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        v = getattr(error, attr, None)
        if isinstance(v, int):
            return v
    resp = getattr(error, "response", None)
    if resp is not None:
        for attr in ("status", "status_code"):
            v = getattr(resp, attr, None)
            if isinstance(v, int):
                return v
    return None


def _search_string(error: BaseException) -> str:
    parts = [str(error), type(error).__name__]
    cause = error.__cause__ or error.__context__
    if cause is not None:
        parts.append(str(cause))
        parts.append(type(cause).__name__)
    code = getattr(error, "code", None)
    if isinstance(code, str):
        parts.append(code)
    body = getattr(error, "body", None) or getattr(error, "data", None)
    if body:
        parts.append(str(body))
    return " ".join(parts)


def classify_error(error: BaseException) -> AppError:
    """Map an exception raised by the generation capability to an AppError."""
    text = _search_string(error)
    status = _status_code(error)
    detail = str(error) or type(error).__name__

    for pattern, category, message, retryable in _ERROR_PATTERNS:
        if pattern.search(text):
            return AppError(category, message, detail, retryable, status)

    if isinstance(error, (ConnectionError, TimeoutError)):
        return AppError(ErrorCategory.NETWORK, "Network connection failed.", detail, True, status)

    if status is not None:
        if status in (401, 403):
            return AppError(ErrorCategory.AUTH, "The API key is invalid or expired.", detail, False, status)
        if status == 429:
            return AppError(ErrorCategory.QUOTA, "Too many requests, please wait and retry.", detail, True, status)
        if status >= 500:
            return AppError(ErrorCategory.PROVIDER, "The AI service is temporarily unavailable.", detail, True, status)

    return AppError(ErrorCategory.INTERNAL, FALLBACK_MESSAGE, detail, False, status)
