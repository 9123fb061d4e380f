# Core ledger services
from .hasher import Hasher, CanonicalSerializationError
from .errors import (
    LedgerError,
    ValidationFailure,
    ChainCorrupted,
    AppendConflict,
    RuleViolation,
    Forbidden,
    AlreadyVoted,
    VoteNotFound,
    VoteClosed,
    InvalidCandidate,
    DuplicateVote,
    InvalidVoteDefinition,
    IdentityUnavailable,
    StoreUnavailable,
)
from .validator import ChainValidator, FailureReason, ValidationResult
from .identity import (
    ADMIN_ROLE,
    USER_ROLE,
    Identity,
    IdentityResolver,
    StaticIdentityResolver,
    HttpIdentityResolver,
)
from .eligibility import EligibilityChecker
from .config import LedgerConfig
from .ledger import AppendEngine, LedgerService

__all__ = [
    "Hasher",
    "CanonicalSerializationError",
    "LedgerError",
    "ValidationFailure",
    "ChainCorrupted",
    "AppendConflict",
    "RuleViolation",
    "Forbidden",
    "AlreadyVoted",
    "VoteNotFound",
    "VoteClosed",
    "InvalidCandidate",
    "DuplicateVote",
    "InvalidVoteDefinition",
    "IdentityUnavailable",
    "StoreUnavailable",
    "ChainValidator",
    "FailureReason",
    "ValidationResult",
    "ADMIN_ROLE",
    "USER_ROLE",
    "Identity",
    "IdentityResolver",
    "StaticIdentityResolver",
    "HttpIdentityResolver",
    "EligibilityChecker",
    "LedgerConfig",
    "AppendEngine",
    "LedgerService",
]
