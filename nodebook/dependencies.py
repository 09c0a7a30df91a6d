"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nodebook.auth import (
    Auth0TokenVerifier,
    AuthError,
    Principal,
    SharedSecretTokenVerifier,
    TokenVerifier,
)
from nodebook.config import get_settings
from nodebook.db import ConflictError, DbClient, SqlAlchemyDbClient, UserRecord

_db_client: DbClient | None = None
_token_verifier: TokenVerifier | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so the engine and its pool are shared across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = SqlAlchemyDbClient.in_memory()
    else:
        _db_client = SqlAlchemyDbClient(settings.database_url)
    return _db_client


def get_token_verifier() -> Optional[TokenVerifier]:
    global _token_verifier
    if _token_verifier:
        return _token_verifier

    settings = get_settings()
    if settings.auth0_domain:
        _token_verifier = Auth0TokenVerifier(
            settings.auth0_domain,
            settings.auth0_audience,
            nickname_claim=settings.nickname_claim,
        )
    elif settings.jwt_secret_key:
        _token_verifier = SharedSecretTokenVerifier(
            settings.jwt_secret_key,
            audience=settings.auth0_audience,
            nickname_claim=settings.nickname_claim,
        )
    return _token_verifier


def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_token: Optional[str] = Cookie(default=None),
    verifier: Optional[TokenVerifier] = Depends(get_token_verifier),
) -> Optional[Principal]:
    """
    Return the caller if a token was sent, None for anonymous requests.

    A token that is present but invalid is an error, not an anonymous call.
    """
    token = credentials.credentials if credentials else auth_token
    if not token:
        return None
    if verifier is None:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    try:
        return verifier.verify(token)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def require_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def get_current_user(
    principal: Principal = Depends(require_principal),
    db: DbClient = Depends(get_db_client),
) -> UserRecord:
    """Make sure the caller has a local user row, creating it on first sight."""
    try:
        return db.sync_user(principal.subject, principal.nickname)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
