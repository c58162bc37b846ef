"""
Firebase ID token verification.

Tokens are RS256 JWTs signed by Google's securetoken service account.
Signing keys are fetched (and cached) from the public JWK endpoint, so no
service-account credentials are needed to verify.
"""

import logging

import jwt
from jwt import PyJWKClient
from jwt.exceptions import InvalidTokenError as JWTInvalidTokenError, PyJWKClientError

from auth.exceptions import InvalidTokenError, UpstreamUnavailableError
from auth.types import FederatedClaims

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)
FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


class FirebaseTokenVerifier:
    """
    Verifies Firebase ID tokens and returns their claims.

    Usage:
        verifier = FirebaseTokenVerifier(project_id="homeschoolsync")
        claims = verifier.verify(id_token)
    """

    def __init__(
        self,
        project_id: str,
        jwk_client: PyJWKClient | None = None,
        leeway_seconds: int = 60,
    ):
        """
        Raises:
            ValueError: If project_id is empty
        """
        if not project_id:
            raise ValueError("project_id is required")

        self.project_id = project_id
        self.issuer = f"{FIREBASE_ISSUER_PREFIX}{project_id}"
        self.leeway_seconds = leeway_seconds
        self._jwk_client = jwk_client or PyJWKClient(FIREBASE_JWKS_URL, cache_keys=True)

    def verify(self, id_token: str) -> FederatedClaims:
        """
        Verify signature, audience, issuer and expiry of an ID token.

        Raises:
            InvalidTokenError: Token malformed, forged, expired or for another project.
            UpstreamUnavailableError: Signing keys could not be fetched.
        """
        if not id_token:
            raise InvalidTokenError("ID token is required")

        try:
            signing_key = self._jwk_client.get_signing_key_from_jwt(id_token).key
        except PyJWKClientError as e:
            # Unknown kid is a bad token, not an outage
            if "Unable to find a signing key" in str(e):
                raise InvalidTokenError("ID token signed with unknown key")
            logger.warning(f"Could not fetch Firebase signing keys: {e}")
            raise UpstreamUnavailableError("Identity provider keys unavailable")
        except JWTInvalidTokenError as e:
            raise InvalidTokenError(f"Malformed ID token: {e}")

        try:
            payload = jwt.decode(
                id_token,
                signing_key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
                leeway=self.leeway_seconds,
                options={"require": ["exp", "iat", "sub"]},
            )
        except JWTInvalidTokenError as e:
            raise InvalidTokenError(f"Invalid ID token: {e}")

        uid = payload.get("sub")
        if not isinstance(uid, str) or not uid.strip():
            raise InvalidTokenError("ID token has no subject")

        return FederatedClaims(
            uid=uid,
            email=payload.get("email"),
            email_verified=payload.get("email_verified") is True,
            display_name=payload.get("name"),
            photo_url=payload.get("picture"),
        )
