"""
Error taxonomy shared by adapters, the engine and the HTTP layer.

Every failure carries a ``kind`` string that ends up in the JSON result, so
callers can tell a provider that changed its obfuscation (DecodeSchemeChanged)
apart from a flaky network (UpstreamUnavailable / Timeout).
"""
from __future__ import annotations
from typing import Optional


class ExtractionError(Exception):
    kind = "ExtractionError"

    def __init__(self, message: str, *, stage: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.status = status


class InvalidRequest(ExtractionError):
    kind = "InvalidRequest"


class UpstreamUnavailable(ExtractionError):
    kind = "UpstreamUnavailable"


class DecodeSchemeChanged(ExtractionError):
    kind = "DecodeSchemeChanged"


class ProxyFailure(ExtractionError):
    kind = "ProxyFailure"


class ExtractionTimeout(ExtractionError):
    kind = "Timeout"


class AllProvidersExhausted(ExtractionError):
    kind = "AllProvidersExhausted"


# ──────────────────────────────
#  Fetch client failures
# ──────────────────────────────
class FetchError(UpstreamUnavailable):
    """Base for anything the Fetcher raises."""

    def __init__(self, message: str, *, url: str = "", status: Optional[int] = None,
                 body: str = ""):
        super().__init__(message, status=status)
        self.url = url
        self.body = body


class NetworkError(FetchError):
    pass


class Upstream4xx(FetchError):
    pass


class Upstream5xx(FetchError):
    pass


class FetchTimeout(FetchError):
    kind = "Timeout"


# ──────────────────────────────
#  Decode primitive failures
# ──────────────────────────────
class DecodeError(DecodeSchemeChanged):
    """A primitive could not transform its input."""


class KeySizeError(DecodeError):
    def __init__(self, size: int, expected: int = 16):
        super().__init__(f"AES key must be {expected} bytes, got {size}")
        self.size = size
        self.expected = expected
