"""
Ledger Configuration

CONFIGURATION:
- VOTECHAIN_APPEND_MAX_ATTEMPTS: Append attempts before AppendConflict (default: 5)
- VOTECHAIN_APPEND_BACKOFF_MS: Base backoff between attempts (default: 10)
- VOTECHAIN_APPEND_BACKOFF_MAX_MS: Backoff ceiling (default: 500)
- VOTECHAIN_DEFAULT_VOTE_DAYS: Vote duration when no end_date is given (default: 30)
- VOTECHAIN_IDENTITY_URL: Base URL of the identity service (optional)
- VOTECHAIN_IDENTITY_TIMEOUT: Identity request timeout in seconds (default: 5)
- VOTECHAIN_IDENTITIES_FILE: JSON identity directory, used when no URL is set
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class LedgerConfig:
    """Configuration for the append engine and ledger service."""
    append_max_attempts: int = 5
    append_backoff_ms: int = 10
    append_backoff_max_ms: int = 500
    default_vote_days: int = 30
    identity_url: Optional[str] = None
    identity_timeout_seconds: float = 5.0
    identities_file: Optional[str] = None

    def __post_init__(self):
        if self.append_max_attempts < 1:
            raise ValueError("append_max_attempts must be at least 1")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Load configuration from environment variables."""
        return cls(
            append_max_attempts=int(os.environ.get("VOTECHAIN_APPEND_MAX_ATTEMPTS", "5")),
            append_backoff_ms=int(os.environ.get("VOTECHAIN_APPEND_BACKOFF_MS", "10")),
            append_backoff_max_ms=int(os.environ.get("VOTECHAIN_APPEND_BACKOFF_MAX_MS", "500")),
            default_vote_days=int(os.environ.get("VOTECHAIN_DEFAULT_VOTE_DAYS", "30")),
            identity_url=os.environ.get("VOTECHAIN_IDENTITY_URL") or None,
            identity_timeout_seconds=float(os.environ.get("VOTECHAIN_IDENTITY_TIMEOUT", "5")),
            identities_file=os.environ.get("VOTECHAIN_IDENTITIES_FILE") or None,
        )
