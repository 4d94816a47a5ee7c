"""Exception taxonomy for the research engine."""
from __future__ import annotations

from enum import Enum

import httpx


class ResearchError(Exception):
    """Base class for all engine errors."""

    error_type = "research"


class ValidationError(ResearchError):
    error_type = "validation"


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    INVALID_KEY = "invalid_key"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ProviderError(ResearchError):
    error_type = "provider"

    def __init__(self, message: str, *, kind: ProviderErrorKind = ProviderErrorKind.UNKNOWN, provider: str = ""):
        super().__init__(message)
        self.kind = ProviderErrorKind(kind)
        self.provider = provider

    @property
    def transient(self) -> bool:
        return self.kind == ProviderErrorKind.NETWORK

    @classmethod
    def from_http_error(cls, exc: Exception, provider: str) -> "ProviderError":
        """Map an httpx failure onto a provider error kind."""
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status in (401, 403):
                kind = ProviderErrorKind.INVALID_KEY
            elif status == 429:
                kind = ProviderErrorKind.RATE_LIMITED
            else:
                kind = ProviderErrorKind.UNKNOWN
            return cls(f"{provider} returned HTTP {status}", kind=kind, provider=provider)
        if isinstance(exc, (httpx.TransportError, TimeoutError)):
            return cls(f"{provider} unreachable: {exc}", kind=ProviderErrorKind.NETWORK, provider=provider)
        return cls(f"{provider} failed: {exc}", kind=ProviderErrorKind.UNKNOWN, provider=provider)

    def __repr__(self) -> str:
        return f"ProviderError({self.provider!r}, kind={self.kind.value!r}, {str(self)!r})"


class ProcessingError(ResearchError):
    error_type = "processing"

    def __init__(self, message: str, *, url: str = ""):
        super().__init__(message)
        self.url = url


class SynthesisError(ResearchError):
    error_type = "synthesis"

    def __init__(self, message: str, *, partial_content: str = ""):
        super().__init__(message)
        self.partial_content = partial_content


class CancellationError(ResearchError):
    error_type = "cancelled"


class StallTimeout(ResearchError):
    error_type = "stall_timeout"


class PhaseTransitionError(ResearchError):
    """Raised on an illegal phase transition. Indicates a programming error."""

    error_type = "internal"
