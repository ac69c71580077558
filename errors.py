"""
Sanadenta Gateway: Error Taxonomy

Every failure the scheduling engine can surface is one of these types.
Day-rule and working-hours outcomes are NOT exceptions; they travel as
structured results (see graph.state).  Exceptions are reserved for:

    ValidationError     malformed or missing caller input (client error)
    ProviderError       the remote calendar call failed (server error)
    ConfigurationError  startup settings or credentials are unusable
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for all gateway errors."""


# ---------------------------------------------------------------------------
# Caller input
# ---------------------------------------------------------------------------

class ValidationError(SchedulingError):
    """
    Caller input could not be turned into a domain value.

    `reason` is a stable machine-readable tag (e.g. "bad-date") that the
    HTTP layer echoes back; `message` is for humans.
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or reason
        super().__init__(self.message)


class InvalidDuration(ValidationError):
    """Explicit duration override is out of range or not an allowed value."""

    def __init__(self, message: str) -> None:
        super().__init__("invalid-duration", message)


# ---------------------------------------------------------------------------
# Remote calendar
# ---------------------------------------------------------------------------

PROVIDER_ERROR_KINDS = frozenset({
    "auth", "permission", "quota", "not-found", "transient", "bad-response", "unknown",
})


class ProviderError(SchedulingError):
    """
    A Calendar Provider call failed.

    kind:   coarse classification so callers can tell an expired credential
            from a quota hit from a flaky network ("auth", "permission",
            "quota", "not-found", "transient", "bad-response", "unknown").
    code:   HTTP status or provider reason string, when one exists.
    """

    def __init__(self, code: int | str | None, message: str, kind: str = "unknown") -> None:
        if kind not in PROVIDER_ERROR_KINDS:
            kind = "unknown"
        self.code = code
        self.message = message
        self.kind = kind
        super().__init__(f"[{kind}] {code}: {message}" if code is not None else f"[{kind}] {message}")


class ProviderRetryableError(ProviderError):
    """Transient provider failure; only read operations may retry it."""


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

class ConfigurationError(SchedulingError):
    """Settings or credentials are missing or invalid at initialization."""
