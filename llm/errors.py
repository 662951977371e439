"""
Gateway Errors
Normalises failures of the external recognition and solving services.
"""

from enum import Enum
from typing import Optional

import groq


class GatewayErrorKind(str, Enum):
    RATE_LIMITED = "rate-limited"
    QUOTA_EXHAUSTED = "quota-exhausted"
    MALFORMED_RESPONSE = "malformed-response"
    UNREACHABLE = "unreachable"
    UPSTREAM = "upstream"


USER_MESSAGES = {
    GatewayErrorKind.RATE_LIMITED: "Rate limit exceeded. Please try again in a moment.",
    GatewayErrorKind.QUOTA_EXHAUSTED: "AI credits exhausted. Please add funds to continue.",
    GatewayErrorKind.MALFORMED_RESPONSE: "The AI service returned an unreadable response. Please try again.",
    GatewayErrorKind.UNREACHABLE: "The AI service is unreachable. Please try again.",
    GatewayErrorKind.UPSTREAM: "Processing failed. Please try again.",
}


class GatewayError(Exception):
    """A recognition or solving call that did not produce a usable result."""

    def __init__(self, kind: GatewayErrorKind, message: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.kind = kind
        self.message = message or USER_MESSAGES[kind]
        self.status_code = status_code
        super().__init__(self.message)

    @classmethod
    def from_exception(cls, exc: Exception) -> "GatewayError":
        """Map a Groq SDK exception onto the gateway taxonomy."""
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, groq.RateLimitError):
            return cls(GatewayErrorKind.RATE_LIMITED, status_code=429)
        if isinstance(exc, groq.APIStatusError):
            if exc.status_code == 402:
                return cls(GatewayErrorKind.QUOTA_EXHAUSTED, status_code=402)
            return cls(
                GatewayErrorKind.UPSTREAM,
                f"AI API error: {exc.status_code}",
                status_code=exc.status_code,
            )
        # APITimeoutError is a subclass of APIConnectionError
        if isinstance(exc, groq.APIConnectionError):
            return cls(GatewayErrorKind.UNREACHABLE)
        return cls(GatewayErrorKind.UPSTREAM, str(exc) or None)

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, status_code={self.status_code!r})"
