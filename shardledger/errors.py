"""Exception hierarchy shared by the store, the ledgers and the job runner."""

from __future__ import annotations


class ShardError(Exception):
    """Base class for every domain error raised by shardledger."""


class InvalidTransition(ShardError):
    """A lifecycle operation was applied to an entity in the wrong state."""

    def __init__(self, entity: str, current: str, action: str) -> None:
        super().__init__(f"cannot {action} {entity} in status '{current}'")
        self.entity = entity
        self.current = current
        self.action = action


class NotFound(ShardError):
    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class ConstraintViolation(ShardError):
    """A uniqueness or business rule would be broken by the write."""


class SelfReferral(ConstraintViolation):
    pass


class DuplicateReferral(ConstraintViolation):
    pass


class ReferralLimitReached(ConstraintViolation):
    pass


class RefereeAlreadyEarning(ConstraintViolation):
    pass


class ActiveSeasonConflict(ConstraintViolation):
    pass


class SeasonOverlap(ConstraintViolation):
    pass


class VerificationUnavailable(ShardError):
    """The provider could not answer (timeout, 5xx, rate limit). Retry later."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class VerificationFailed(ShardError):
    """The provider answered and the claimed action is not real. Never retried."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} rejected claim: {reason}")
        self.provider = provider
        self.reason = reason
