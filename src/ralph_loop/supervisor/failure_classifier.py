"""Deterministic classification of nonzero backend process exits.

The classification only annotates the error log; a nonzero backend exit
never halts the loop by itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackendExitClass(str, Enum):
    """Normalized reasons for a nonzero backend exit."""

    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    TRANSIENT = "transient"
    INTERRUPTED = "interrupted"
    UNKNOWN = "unknown"


_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "authentication",
    "not logged in",
    "login required",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "temporarily unavailable",
    "connection reset",
    "network error",
    "could not resolve host",
)
_INTERRUPT_EXIT_CODES = (130, 137, 143)


@dataclass(slots=True)
class BackendExitClassification:
    """Normalized failure classification result."""

    exit_class: BackendExitClass
    matched_pattern: str | None

    def describe(self, *, agent: str, exit_code: int) -> str:
        detail = f" (matched {self.matched_pattern!r})" if self.matched_pattern else ""
        return f"BACKEND EXIT: {agent} → exit {exit_code} [{self.exit_class.value}]{detail}"


def classify_backend_exit(*, exit_code: int, stderr: str) -> BackendExitClassification:
    """Classify a nonzero backend exit from its stderr text."""

    haystack = stderr.lower()
    for exit_class, patterns in (
        (BackendExitClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        (BackendExitClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (BackendExitClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (BackendExitClass.TRANSIENT, _TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return BackendExitClassification(exit_class=exit_class, matched_pattern=pattern)

    if exit_code in _INTERRUPT_EXIT_CODES or exit_code < 0:
        return BackendExitClassification(
            exit_class=BackendExitClass.INTERRUPTED,
            matched_pattern=None,
        )
    return BackendExitClassification(exit_class=BackendExitClass.UNKNOWN, matched_pattern=None)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
