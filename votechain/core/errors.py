"""
Ledger error taxonomy.

Every error carries a stable ``code`` and a human-readable message so
callers (the HTTP layer, the CLI) can render a precise response without
inspecting exception types.

Only AppendConflict is retried, and only inside the append engine.
Everything else propagates to the caller as-is.
"""

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .validator import ValidationResult


class LedgerError(Exception):
    """Base exception for ledger errors."""
    code = "LEDGER_ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.code, "message": self.message}
        data.update({k: v for k, v in self.details.items() if v is not None})
        return data


# ------------------------------------------------------------
# Data corruption - never retried
# ------------------------------------------------------------

class ValidationFailure(LedgerError):
    """Raised when the stored chain fails verification."""
    code = "VALIDATION_FAILURE"

    def __init__(self, message: str, validation: Optional["ValidationResult"] = None):
        super().__init__(
            message,
            reason=validation.reason.value if validation and validation.reason else None,
            offending_index=validation.offending_index if validation else None,
        )
        self.validation = validation


class ChainCorrupted(ValidationFailure):
    """Raised when an append would extend a broken chain."""
    code = "CHAIN_CORRUPTED"


# ------------------------------------------------------------
# Concurrency - retried internally, then surfaced
# ------------------------------------------------------------

class AppendConflict(LedgerError):
    """Raised when an append keeps losing the race for the chain tail."""
    code = "APPEND_CONFLICT"
    retryable = True


# ------------------------------------------------------------
# Business rules - surfaced directly
# ------------------------------------------------------------

class RuleViolation(LedgerError):
    """Base class for rejected requests."""
    code = "RULE_VIOLATION"


class Forbidden(RuleViolation):
    code = "FORBIDDEN"


class AlreadyVoted(RuleViolation):
    code = "ALREADY_VOTED"


class VoteNotFound(RuleViolation):
    code = "VOTE_NOT_FOUND"


class VoteClosed(RuleViolation):
    code = "VOTE_CLOSED"


class InvalidCandidate(RuleViolation):
    code = "INVALID_CANDIDATE"


class DuplicateVote(RuleViolation):
    """A vote definition with this vote_id already exists."""
    code = "DUPLICATE_VOTE"


class InvalidVoteDefinition(RuleViolation):
    code = "INVALID_VOTE_DEFINITION"


# ------------------------------------------------------------
# Dependency failures
# ------------------------------------------------------------

class IdentityUnavailable(LedgerError):
    """
    The identity service could not answer.

    Treated as a deny, but reported distinctly from Forbidden so callers
    can tell "denied" from "could not determine".
    """
    code = "IDENTITY_UNAVAILABLE"


class StoreUnavailable(LedgerError):
    """The entry store could not be reached or failed mid-operation."""
    code = "STORE_UNAVAILABLE"
