"""
Transactional email through the HTTP email gateway.

Each request body is compact JSON signed with HMAC-SHA256 (X-Signature)
next to the gateway API key (X-API-Key). The gateway answers
``{"success": bool, "message": str}``.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """The gateway could not be reached or refused the message."""


@dataclass(frozen=True)
class _LinkEmail:
    kind: str
    path: str
    subject: str
    intro: str
    outro: str


_VERIFICATION = _LinkEmail(
    kind="verification",
    path="/verify-email",
    subject="Verify your email - {app}",
    intro=(
        "Thank you for signing up for {app}. To complete your registration, "
        "please verify your email address by visiting this link:"
    ),
    outro="This link will expire in 24 hours.",
)

_PASSWORD_RESET = _LinkEmail(
    kind="password_reset",
    path="/reset-password",
    subject="Reset your password - {app}",
    intro=(
        "We received a request to reset your password for your {app} account. "
        "Visit this link to choose a new password:"
    ),
    outro=(
        "This password reset link will expire in 1 hour. If you didn't request "
        "a password reset, you can safely ignore this email."
    ),
)


class EmailGatewayClient:
    """Signed POSTs to the gateway over one pooled HTTP session."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        app_name: str = "HomeschoolSync",
        timeout: float = 10,
    ):
        """Raises ValueError for any empty credential."""
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.app_name = app_name
        self._hmac_key = hmac_secret.encode("utf-8")
        self._timeout = timeout
        self._http = requests.Session()
        self._http.headers.update({"Content-Type": "application/json", "X-API-Key": api_key})

    def _sign(self, body: str) -> str:
        return hmac.new(self._hmac_key, body.encode("utf-8"), hashlib.sha256).hexdigest()

    def _post(self, payload: dict) -> None:
        body = json.dumps(payload, separators=(",", ":"))
        try:
            response = self._http.post(
                self.gateway_url,
                data=body,
                headers={"X-Signature": self._sign(body)},
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Email gateway returned invalid JSON ({response.status_code})")
            raise EmailGatewayError("Invalid response from gateway") from e

        if not response.ok or not result.get("success"):
            message = result.get("message", "Unknown error")
            logger.error(f"Email gateway rejected {payload['type']} email: {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

    def _send_link(
        self,
        template: _LinkEmail,
        email: str,
        token: str,
        app_url: str,
        first_name: str | None,
    ) -> None:
        link = f"{app_url.rstrip('/')}{template.path}?token={token}"
        greeting = f"Hi {first_name}," if first_name else "Hi,"
        intro = template.intro.format(app=self.app_name)
        self._post({
            "type": template.kind,
            "email": email,
            "subject": template.subject.format(app=self.app_name),
            "body": f"{greeting}\n\n{intro}\n\n{link}\n\n{template.outro}",
            "link": link,
            "sender": "auth",
        })
        logger.info(f"Sent {template.kind} email to {email}")

    def send_verification_email(
        self, email: str, token: str, app_url: str, first_name: str | None = None
    ) -> None:
        """Signup verification link. Raises EmailGatewayError."""
        self._send_link(_VERIFICATION, email, token, app_url, first_name)

    def send_password_reset_email(
        self, email: str, token: str, app_url: str, first_name: str | None = None
    ) -> None:
        """Password reset link. Raises EmailGatewayError."""
        self._send_link(_PASSWORD_RESET, email, token, app_url, first_name)

    def close(self) -> None:
        self._http.close()
