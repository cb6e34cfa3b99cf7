"""
Bearer-token resolution against the hosted auth provider.

Session handling lives with the provider; this module only turns an
`Authorization: Bearer <token>` header into a user id.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10  # seconds


class AuthClient(Protocol):
    def get_user_id(self, access_token: str) -> Optional[str]:
        ...


@dataclass
class InMemoryAuthClient:
    """Token table for development and tests."""

    tokens: Dict[str, str] = field(default_factory=dict)

    def issue_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user_id
        return token

    def get_user_id(self, access_token: str) -> Optional[str]:
        return self.tokens.get(access_token)

    def reset(self) -> None:
        self.tokens.clear()


@dataclass
class SupabaseAuthClient:
    """Resolves tokens with the Supabase `GET /auth/v1/user` endpoint."""

    url: str
    anon_key: str

    def get_user_id(self, access_token: str) -> Optional[str]:
        try:
            response = requests.get(
                f"{self.url.rstrip('/')}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "apikey": self.anon_key,
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("Auth provider unreachable: %s", exc)
            return None
        if response.status_code != 200:
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Auth provider returned a non-JSON user payload")
            return None
        if not isinstance(payload, dict):
            return None
        return payload.get("id")


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
