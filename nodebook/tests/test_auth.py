import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import jwt
from jwt.exceptions import PyJWKClientError

from nodebook.auth import (
    Auth0TokenVerifier,
    AuthError,
    AuthUnavailableError,
    SharedSecretTokenVerifier,
)

SECRET = "test-secret-key-with-enough-bytes-for-hs256"


def _encode(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def _expires_in(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


class SharedSecretTokenVerifierTests(unittest.TestCase):
    def setUp(self):
        self.verifier = SharedSecretTokenVerifier(SECRET)

    def test_valid_token(self):
        token = _encode({"sub": "auth0|1", "nickname": " ada ", "exp": _expires_in(60)})
        principal = self.verifier.verify(token)
        self.assertEqual(principal.subject, "auth0|1")
        self.assertEqual(principal.nickname, "ada")

    def test_expired_token(self):
        token = _encode({"sub": "auth0|1", "exp": _expires_in(-60)})
        with self.assertRaises(AuthError):
            self.verifier.verify(token)

    def test_token_without_expiry_is_rejected(self):
        with self.assertRaises(AuthError):
            self.verifier.verify(_encode({"sub": "auth0|1"}))

    def test_custom_nickname_claim(self):
        verifier = SharedSecretTokenVerifier(
            SECRET, nickname_claim="https://nodebook/nickname"
        )
        token = _encode(
            {
                "sub": "auth0|1",
                "https://nodebook/nickname": "grace",
                "exp": _expires_in(60),
            }
        )
        self.assertEqual(verifier.verify(token).nickname, "grace")

    def test_audience_is_checked_when_configured(self):
        verifier = SharedSecretTokenVerifier(SECRET, audience="nodebook-api")
        token = _encode({"sub": "auth0|1", "aud": "other", "exp": _expires_in(60)})
        with self.assertRaises(AuthError):
            verifier.verify(token)

    def test_empty_secret_is_refused(self):
        with self.assertRaises(ValueError):
            SharedSecretTokenVerifier("")


class Auth0TokenVerifierTests(unittest.TestCase):
    def setUp(self):
        self.verifier = Auth0TokenVerifier("https://tenant.example.auth0.com/", "api")

    def test_issuer_is_normalized(self):
        self.assertEqual(self.verifier.issuer, "https://tenant.example.auth0.com/")

    def test_malformed_token(self):
        with self.assertRaises(AuthError):
            self.verifier.verify("not-a-jwt")

    def test_unreachable_key_set(self):
        self.verifier.jwk_client = MagicMock()
        self.verifier.jwk_client.get_signing_key_from_jwt.side_effect = PyJWKClientError(
            "connection refused"
        )
        with self.assertRaises(AuthUnavailableError) as ctx:
            self.verifier.verify(_encode({"sub": "auth0|1"}))
        self.assertEqual(ctx.exception.status_code, 503)


if __name__ == "__main__":
    unittest.main()
