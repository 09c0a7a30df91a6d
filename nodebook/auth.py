"""
Bearer token verification.

Production tokens are Auth0 access tokens signed with RS256 and checked
against the tenant's published key set. Deployments without an Auth0 domain
fall back to HS256 tokens signed with a shared secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import jwt
from jwt import InvalidTokenError, PyJWKClient
from jwt.exceptions import PyJWKClientError

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when a bearer credential cannot be accepted."""

    status_code = 401


class AuthUnavailableError(AuthError):
    """Raised when the identity provider's keys cannot be fetched."""

    status_code = 503


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as described by a verified token."""

    subject: str
    nickname: str = ""


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Principal:
        ...


def _principal_from_claims(claims: dict, nickname_claim: str) -> Principal:
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthError("Token has no subject")
    nickname = claims.get(nickname_claim)
    if not isinstance(nickname, str):
        nickname = ""
    return Principal(subject=subject, nickname=nickname.strip())


class Auth0TokenVerifier:
    """Validates RS256 tokens against an Auth0 tenant's JWKS endpoint."""

    def __init__(
        self,
        domain: str,
        audience: Optional[str] = None,
        *,
        nickname_claim: str = "nickname",
        leeway: int = 60,
    ):
        domain = domain.strip().rstrip("/")
        if domain.startswith("https://"):
            domain = domain[len("https://"):]
        self.issuer = f"https://{domain}/"
        self.audience = audience
        self.nickname_claim = nickname_claim
        self.leeway = leeway
        self.jwk_client = PyJWKClient(f"https://{domain}/.well-known/jwks.json")

    def verify(self, token: str) -> Principal:
        try:
            signing_key = self.jwk_client.get_signing_key_from_jwt(token).key
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"verify_aud": self.audience is not None},
            )
        except PyJWKClientError as exc:
            logger.warning("Could not fetch signing key: %s", exc)
            raise AuthUnavailableError("Identity provider unavailable") from exc
        except InvalidTokenError as exc:
            raise AuthError("Invalid token") from exc
        return _principal_from_claims(claims, self.nickname_claim)


class SharedSecretTokenVerifier:
    """Validates HS256 tokens signed with a shared secret."""

    def __init__(
        self,
        secret: str,
        *,
        audience: Optional[str] = None,
        nickname_claim: str = "nickname",
    ):
        if not secret:
            raise ValueError("A JWT secret key is required")
        self.secret = secret
        self.audience = audience
        self.nickname_claim = nickname_claim

    def verify(self, token: str) -> Principal:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                options={
                    "require": ["exp", "sub"],
                    "verify_aud": self.audience is not None,
                },
            )
        except InvalidTokenError as exc:
            raise AuthError("Invalid token") from exc
        return _principal_from_claims(claims, self.nickname_claim)
