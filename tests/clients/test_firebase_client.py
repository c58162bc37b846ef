"""Tests for FirebaseTokenVerifier - ID token verification."""

import time
from types import SimpleNamespace
from unittest.mock import Mock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt import PyJWKClient
from jwt.exceptions import PyJWKClientConnectionError, PyJWKClientError

from auth.exceptions import InvalidTokenError, UpstreamUnavailableError
from clients.firebase_client import FirebaseTokenVerifier

PROJECT_ID = "homeschoolsync-test"


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def other_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwk_client(signing_key):
    client = Mock(spec=PyJWKClient)
    client.get_signing_key_from_jwt.return_value = SimpleNamespace(key=signing_key.public_key())
    return client


@pytest.fixture
def verifier(jwk_client):
    return FirebaseTokenVerifier(PROJECT_ID, jwk_client=jwk_client, leeway_seconds=0)


def make_token(key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "aud": PROJECT_ID,
        "sub": "fb-uid-1",
        "iat": now,
        "exp": now + 3600,
        "email": "fed@example.com",
        "email_verified": True,
        "name": "Fed User",
        "picture": "https://img.example.com/f.png",
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, key, algorithm="RS256", headers={"kid": "key-1"})


class TestInit:

    def test_requires_project_id(self, jwk_client):
        with pytest.raises(ValueError):
            FirebaseTokenVerifier("", jwk_client=jwk_client)

    def test_issuer_from_project(self, verifier):
        assert verifier.issuer == f"https://securetoken.google.com/{PROJECT_ID}"


class TestVerify:

    def test_valid_token_claims(self, verifier, signing_key):
        claims = verifier.verify(make_token(signing_key))

        assert claims.uid == "fb-uid-1"
        assert claims.email == "fed@example.com"
        assert claims.email_verified is True
        assert claims.display_name == "Fed User"
        assert claims.photo_url == "https://img.example.com/f.png"

    def test_email_verified_must_be_true(self, verifier, signing_key):
        claims = verifier.verify(make_token(signing_key, email_verified="true"))

        assert claims.email_verified is False

    def test_empty_token(self, verifier):
        with pytest.raises(InvalidTokenError):
            verifier.verify("")

    @pytest.mark.parametrize("overrides", [
        {"aud": "another-project"},
        {"iss": "https://securetoken.google.com/another-project"},
        {"exp": int(time.time()) - 10},
        {"sub": None},
    ])
    def test_rejected_claims(self, verifier, signing_key, overrides):
        with pytest.raises(InvalidTokenError):
            verifier.verify(make_token(signing_key, **overrides))

    def test_forged_signature(self, verifier, other_key):
        with pytest.raises(InvalidTokenError):
            verifier.verify(make_token(other_key))

    def test_unknown_key_id_is_invalid(self, verifier, jwk_client, signing_key):
        jwk_client.get_signing_key_from_jwt.side_effect = PyJWKClientError(
            'Unable to find a signing key that matches: "key-9"'
        )

        with pytest.raises(InvalidTokenError):
            verifier.verify(make_token(signing_key))

    def test_key_fetch_failure_is_upstream(self, verifier, jwk_client, signing_key):
        """Provider outage is never reported as a bad token."""
        jwk_client.get_signing_key_from_jwt.side_effect = PyJWKClientConnectionError("timed out")

        with pytest.raises(UpstreamUnavailableError):
            verifier.verify(make_token(signing_key))

    def test_garbage_token(self, verifier, jwk_client):
        jwk_client.get_signing_key_from_jwt.side_effect = jwt.DecodeError("Not enough segments")

        with pytest.raises(InvalidTokenError):
            verifier.verify("not.a.jwt")
