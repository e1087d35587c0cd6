"""
Error taxonomy for the matching core.

Business outcomes (IncompatibleError, InsufficientAuraError) and
integrity guards (DuplicateSwipeError, DuplicateIdentityError) are
raised to the caller as rejected requests. LedgerIntegrityError is fatal
for the affected user: the Aura ledger refuses further writes for them.

Proof verification never raises, it returns False.
"""

from typing import Any, Dict, Optional


class ZKLoveError(Exception):
    """Base class for every error raised by the matching core."""

    reason: str = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidAttributeError(ZKLoveError):
    """Malformed profile input; the caller should re-prompt."""
    reason = "INVALID_ATTRIBUTE"


class IncompatibleError(ZKLoveError):
    """The compatibility predicate is false, or a like carried no valid proof."""
    reason = "INCOMPATIBLE"


class DuplicateSwipeError(ZKLoveError):
    """The (swiper, target) pair was already recorded."""
    reason = "DUPLICATE_SWIPE"


class DuplicateIdentityError(ZKLoveError):
    """The nullifier is already registered (sybil guard)."""
    reason = "DUPLICATE_IDENTITY"


class InsufficientAuraError(ZKLoveError):
    """A debit would drive the balance negative."""
    reason = "INSUFFICIENT_AURA"

    def __init__(self, user_id: str, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"{user_id} needs {required} Aura but has {available}",
            {"required": required, "available": available},
        )


class ProofTimeoutError(ZKLoveError):
    """Proof generation exceeded its budget; retry with a longer timeout."""
    reason = "PROOF_TIMEOUT"


class ProofCancelledError(ZKLoveError):
    """Proof generation was cancelled through its cancel token."""
    reason = "PROOF_CANCELLED"


class LedgerIntegrityError(ZKLoveError):
    """A ledger invariant is broken; writes for the user are halted."""
    reason = "LEDGER_INTEGRITY"

    def __init__(self, user_id: str, message: str):
        self.user_id = user_id
        super().__init__(message, {"user_id": user_id})


class ProfileNotFoundError(ZKLoveError):
    reason = "PROFILE_NOT_FOUND"


class ProfileInactiveError(ZKLoveError):
    reason = "PROFILE_INACTIVE"


class MatchNotFoundError(ZKLoveError):
    reason = "MATCH_NOT_FOUND"


class NotMatchedError(ZKLoveError):
    """Unlocks require a mutual match."""
    reason = "NOT_MATCHED"


class ChatLockedError(ZKLoveError):
    """Messages require an unlocked chat."""
    reason = "CHAT_LOCKED"


class GatewaySubmissionError(ZKLoveError):
    """The ledger-submission collaborator rejected a record."""
    reason = "GATEWAY_REJECTED"
