"""Result type shared by the contribution verifiers.

A verifier answers one of three ways: the claim is real (verified), the
provider answered and the claim is false (rejected), or the provider could
not answer (unavailable). Only the last one is worth retrying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

import httpx

from shardledger.errors import VerificationFailed, VerificationUnavailable

logger = logging.getLogger(__name__)

# 4xx answers that mean "this thing does not exist / is not what was claimed"
_REJECTING_STATUS = {404, 410, 422}


class VerificationStatus(StrEnum):
    VERIFIED = "verified"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


@dataclass
class VerificationResult:
    provider: str
    status: VerificationStatus
    reason: str = ""
    details: dict = field(default_factory=dict)

    @property
    def verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def raise_for_status(self) -> None:
        """Turn a negative result into the matching domain error."""
        if self.status == VerificationStatus.REJECTED:
            raise VerificationFailed(self.provider, self.reason)
        if self.status == VerificationStatus.UNAVAILABLE:
            raise VerificationUnavailable(self.provider, self.reason)


def verified(provider: str, **details) -> VerificationResult:
    return VerificationResult(provider, VerificationStatus.VERIFIED, details=details)


def rejected(provider: str, reason: str, **details) -> VerificationResult:
    return VerificationResult(provider, VerificationStatus.REJECTED, reason, details)


def unavailable(provider: str, reason: str) -> VerificationResult:
    return VerificationResult(provider, VerificationStatus.UNAVAILABLE, reason)


def result_from_http_error(provider: str, exc: httpx.HTTPError) -> VerificationResult:
    """Classify an httpx failure. Timeouts, 5xx, rate limits and auth problems are transient."""
    if isinstance(exc, httpx.TimeoutException):
        logger.warning("%s timed out: %s", provider, exc)
        return unavailable(provider, "timeout")
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code in _REJECTING_STATUS:
            return rejected(provider, f"HTTP {code}")
        logger.warning("%s HTTP %d: %s", provider, code, exc.response.text[:200])
        return unavailable(provider, f"HTTP {code}")
    logger.warning("%s request failed: %s", provider, exc)
    return unavailable(provider, type(exc).__name__)
