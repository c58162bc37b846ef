"""HTTP client for the auth API.

Attaches the stored session id as a bearer credential on every request and
evicts all stored credentials on any 401, whichever endpoint returned it.
"""

import logging
from typing import Any

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from webclient.storage import CredentialStorage, FEDERATED_SESSION_KEY, SESSION_KEY

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Server answered with an error envelope."""

    def __init__(self, status_code: int, code: str | None, message: str, details: dict | None = None):
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ApiUnavailableError(Exception):
    """Network failure or 5xx. The credential may be fine; try again later."""


class ApiClient:
    """
    Client for the auth endpoints.

    Usage:
        api = ApiClient("http://localhost:5000", CredentialStorage(path))
        api.email_login("a@example.com", "password123")
        me = api.get_me()  # None if not signed in
    """

    def __init__(
        self,
        base_url: str,
        storage: CredentialStorage,
        http: requests.Session | None = None,
        timeout: float = 10,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._http = http or requests.Session()
        self._http.hooks["response"].append(self._evict_on_unauthorized)

    def _evict_on_unauthorized(self, response: requests.Response, *args, **kwargs) -> requests.Response:
        if response.status_code == 401:
            logger.info(f"401 from {response.request.method} {response.request.path_url}, clearing credentials")
            self.storage.clear_all()
        return response

    def _headers(self, federated: bool) -> dict[str, str]:
        headers = {}
        session_id = self.storage.get(SESSION_KEY)
        if session_id:
            headers["Authorization"] = f"Bearer {session_id}"
        if federated:
            federated_id = self.storage.get(FEDERATED_SESSION_KEY)
            if federated_id:
                headers["X-Federated-Session"] = federated_id
        return headers

    def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
        federated: bool = False,
    ) -> Any:
        """Send a request and unwrap the envelope's data.

        Raises:
            ApiUnavailableError: Network error or 5xx.
            ApiError: Any other error status.
        """
        merged = self._headers(federated)
        merged.update(headers or {})
        try:
            response = self._http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=merged,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ApiUnavailableError(f"{method} {path} failed: {e}")

        if response.status_code >= 500:
            raise ApiUnavailableError(f"{method} {path} returned {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("success", False):
            error = body.get("error") or {}
            raise ApiError(
                response.status_code,
                error.get("code"),
                error.get("message") or f"{method} {path} returned {response.status_code}",
                error.get("details"),
            )
        return body.get("data")

    def _with_retries(self, fn, *args, **kwargs):
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=10),
            retry=retry_if_exception_type(ApiUnavailableError),
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

    # -------------------------------------------------------------------------
    # Email/password
    # -------------------------------------------------------------------------

    def has_local_session(self) -> bool:
        return self.storage.get(SESSION_KEY) is not None

    def email_login(self, email: str, password: str) -> dict:
        """Log in and persist the session id. Returns the user."""
        data = self._request("POST", "/api/auth/email-login", json={"email": email, "password": password})
        self.storage.set(SESSION_KEY, data["sessionId"])
        return data["user"]

    def logout(self) -> None:
        try:
            self._request("POST", "/api/auth/logout")
        finally:
            self.storage.remove(SESSION_KEY)

    def get_me(self) -> dict | None:
        """Current user via the local session. None when not signed in.

        Raises:
            ApiUnavailableError: Server unreachable after retries.
        """
        try:
            data = self._with_retries(self._request, "GET", "/api/auth/me")
        except ApiError as e:
            if e.status_code in (401, 404):
                return None
            raise
        return data["user"]

    # -------------------------------------------------------------------------
    # Federated
    # -------------------------------------------------------------------------

    def firebase_login(
        self,
        id_token: str,
        uid: str,
        email: str,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> dict:
        """Exchange a provider ID token for a federated session."""
        data = self._request(
            "POST",
            "/api/auth/firebase-login",
            json={"uid": uid, "email": email, "displayName": display_name, "photoURL": photo_url},
            headers={"Authorization": f"Bearer {id_token}"},
        )
        self.storage.set(FEDERATED_SESSION_KEY, data["federatedSessionId"])
        return data

    def firebase_logout(self) -> None:
        try:
            self._request("POST", "/api/auth/firebase-logout", federated=True)
        finally:
            self.storage.remove(FEDERATED_SESSION_KEY)

    def get_federated_user(self) -> dict | None:
        """Server user for the federated session. None when no local row.

        Raises:
            ApiUnavailableError: Server unreachable after retries.
        """
        try:
            data = self._with_retries(self._request, "GET", "/api/auth/firebase-user", federated=True)
        except ApiError as e:
            if e.status_code in (401, 404):
                return None
            raise
        return data["user"]

    # -------------------------------------------------------------------------
    # Onboarding
    # -------------------------------------------------------------------------

    def update_role(
        self,
        role: str,
        uid: str | None = None,
        email: str | None = None,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> dict:
        """Pick a role. For a new federated sign-in this creates the account."""
        body = {"role": role, "uid": uid, "email": email, "displayName": display_name, "photoURL": photo_url}
        body = {k: v for k, v in body.items() if v is not None}
        data = self._request("PATCH", "/api/users/me/role", json=body, federated=True)
        return data["user"]
