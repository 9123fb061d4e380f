"""
Identity Resolution

The ledger does not own users. It asks an identity service for a user's
role and group and acts on the answer.

Contract:
    resolve(user_id) -> Identity | None

- Identity: the user exists
- None: the identity service has no such user (treated as a deny)
- IdentityUnavailable: the service could not answer (timeout, transport
  error, unexpected response). Never treated as a grant.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote

import httpx

from .errors import IdentityUnavailable
from ..observability import get_logger

logger = get_logger(__name__)


ADMIN_ROLE = "admin"
USER_ROLE = "user"
KNOWN_ROLES = frozenset({ADMIN_ROLE, USER_ROLE})


@dataclass(frozen=True)
class Identity:
    """Resolved role and group of a user."""
    user_id: str
    role: str
    group_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class IdentityResolver(ABC):
    """Resolves a user id to an Identity."""

    @abstractmethod
    def resolve(self, user_id: str) -> Optional[Identity]:
        """
        Look up a user.

        Raises:
            IdentityUnavailable: if the lookup itself failed
        """
        pass


class StaticIdentityResolver(IdentityResolver):
    """
    Identity directory held in memory.

    Suitable for development, tests, and small fixed electorates.
    """

    def __init__(self, identities: Mapping[str, Identity] | None = None):
        self._identities: dict[str, Identity] = dict(identities or {})

    def add(self, user_id: str, role: str = USER_ROLE, group_id: Optional[str] = None) -> Identity:
        identity = Identity(user_id=user_id, role=role, group_id=group_id)
        self._identities[user_id] = identity
        return identity

    def resolve(self, user_id: str) -> Optional[Identity]:
        return self._identities.get(user_id)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticIdentityResolver":
        """
        Load a directory from JSON:

            {"u1": {"role": "user", "group_id": "g1"}, "a1": {"role": "admin"}}
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls({
            user_id: Identity(
                user_id=user_id,
                role=record.get("role", USER_ROLE),
                group_id=record.get("group_id"),
            )
            for user_id, record in raw.items()
        })


class HttpIdentityResolver(IdentityResolver):
    """
    Identity resolver backed by the auth service's role endpoint.

        GET {base_url}/user-role/{user_id}
        200 -> {"userId": "...", "status": "admin"|"user", "groupId": "..."}
        404 -> no such user

    Anything else (timeouts, 5xx, malformed bodies, an answer for another
    userId, an unknown status) raises IdentityUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def resolve(self, user_id: str) -> Optional[Identity]:
        # One path segment; "?", "#" and "/" must not reach another user's record
        url = f"{self._base_url}/user-role/{quote(user_id, safe='')}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Identity service request failed", user_id=user_id, error=str(e))
            raise IdentityUnavailable(f"Identity service unreachable: {e}") from e

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.warning(
                "Identity service returned an error",
                user_id=user_id,
                status_code=response.status_code,
            )
            raise IdentityUnavailable(
                f"Identity service returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
            answered_for = body["userId"]
            role = body["status"] or USER_ROLE
        except (ValueError, KeyError, TypeError) as e:
            raise IdentityUnavailable(f"Malformed identity response: {e}") from e

        if answered_for != user_id:
            logger.warning(
                "Identity service answered for a different user",
                user_id=user_id,
                answered_for=answered_for,
            )
            raise IdentityUnavailable("Identity service answered for a different user")

        if role not in KNOWN_ROLES:
            logger.warning("Identity service returned an unknown role", user_id=user_id, role=role)
            raise IdentityUnavailable(f"Unknown role: {role}")

        return Identity(
            user_id=user_id,
            role=role,
            group_id=body.get("groupId"),
        )

    def close(self) -> None:
        self._client.close()
