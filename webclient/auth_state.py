"""Client-side auth state: three async identity sources, one routing mode.

Sources, which settle in any order:
- the local session fetch (GET /api/auth/me with the stored bearer)
- the federated listener (long-lived, fires on every provider change)
- the server lookup for the current federated principal
  (GET /api/auth/firebase-user), issued once per distinct principal key

Every change replaces the snapshot and the mode is recomputed from the
whole snapshot by ``reconcile``. Nothing is patched incrementally.

Each fetch and lookup carries a generation number. A result whose request
has been superseded (by a refresh, a logout or a newer sign-in, even of
the same principal) is dropped.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from webclient.federated import FederatedAuthListener, FederatedPrincipal, Subscription
from webclient.http import ApiClient, ApiUnavailableError

logger = logging.getLogger(__name__)


class AuthMode(Enum):
    CHECKING = "checking"
    UNAUTHENTICATED = "unauthenticated"
    FEDERATED_NO_SERVER_USER = "federated_no_server_user"
    NEEDS_ROLE = "needs_role"
    READY = "ready"


class AuthErrorKind(Enum):
    """Why a source produced no user, when it was not a plain 'no user'."""

    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class LookupStatus(Enum):
    IDLE = "idle"  # no principal, nothing to look up
    PENDING = "pending"
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthSnapshot:
    """Everything the sources have reported so far."""

    local_settled: bool = False
    local_user: dict | None = None
    local_error: AuthErrorKind | None = None

    federated_settled: bool = False
    principal: FederatedPrincipal | None = None

    lookup_key: str | None = None
    lookup_status: LookupStatus = LookupStatus.IDLE
    lookup_user: dict | None = None


@dataclass(frozen=True)
class AuthState:
    mode: AuthMode
    user: dict | None = None
    principal: FederatedPrincipal | None = None
    error: AuthErrorKind | None = None
    retryable: bool = False

    @property
    def role(self) -> str | None:
        return self.user.get("role") if self.user else None


def principal_key(principal: FederatedPrincipal | None) -> str | None:
    return principal.uid if principal is not None else None


def _user_state(user: dict, principal: FederatedPrincipal | None) -> AuthState:
    mode = AuthMode.READY if user.get("role") else AuthMode.NEEDS_ROLE
    return AuthState(mode=mode, user=user, principal=principal)


def reconcile(snapshot: AuthSnapshot) -> AuthState:
    """Pure mapping from a snapshot to an AuthState.

    Mirrors the server's priority: while a federated principal exists, its
    server lookup decides, and the local session user only counts when
    there is no principal.
    """
    if not (snapshot.local_settled and snapshot.federated_settled):
        return AuthState(mode=AuthMode.CHECKING)

    principal = snapshot.principal

    if principal is not None:
        if snapshot.lookup_key != principal.uid or snapshot.lookup_status in (
            LookupStatus.PENDING,
            LookupStatus.IDLE,
        ):
            return AuthState(mode=AuthMode.CHECKING, principal=principal)
        if snapshot.lookup_status == LookupStatus.FOUND:
            return _user_state(snapshot.lookup_user, principal)
        if snapshot.lookup_status == LookupStatus.FAILED:
            # Never drop a live provider sign-in because our server hiccuped
            return AuthState(
                mode=AuthMode.FEDERATED_NO_SERVER_USER,
                principal=principal,
                error=AuthErrorKind.UPSTREAM_UNAVAILABLE,
                retryable=True,
            )
        return AuthState(mode=AuthMode.FEDERATED_NO_SERVER_USER, principal=principal)

    if snapshot.local_user is not None:
        return _user_state(snapshot.local_user, None)

    if snapshot.local_error is not None:
        return AuthState(mode=AuthMode.UNAUTHENTICATED, error=snapshot.local_error, retryable=True)
    return AuthState(mode=AuthMode.UNAUTHENTICATED)


def route_for(state: AuthState) -> str | None:
    """Path the UI should be on. None means stay put (loading or retry prompt)."""
    if state.mode == AuthMode.CHECKING or state.retryable:
        return None
    if state.mode == AuthMode.UNAUTHENTICATED:
        return "/login"
    if state.mode in (AuthMode.FEDERATED_NO_SERVER_USER, AuthMode.NEEDS_ROLE):
        return "/onboarding/role"
    return f"/dashboard/{state.role}"


StateCallback = Callable[[AuthState], None]

_NO_KEY = object()


class ClientAuthState:
    """
    Live auth state for the client.

    Usage:
        auth = ClientAuthState(api, listener)
        auth.subscribe(lambda state: navigate(route_for(state)))
        auth.start()
    """

    def __init__(
        self,
        api: ApiClient,
        listener: FederatedAuthListener,
        executor: Executor | None = None,
        check_platform_session: bool = False,
    ):
        self._api = api
        self._listener = listener
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="auth-state")
        self._check_platform_session = check_platform_session

        self._lock = threading.RLock()
        self._snapshot = AuthSnapshot()
        self._state = reconcile(self._snapshot)
        self._current_key: object = _NO_KEY
        # Only the newest request of each source may land
        self._local_generation = 0
        self._lookup_generation = 0
        self._observers: dict[int, StateCallback] = {}
        self._next_observer_id = 0
        self._listener_subscription: Subscription | None = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    def subscribe(self, callback: StateCallback) -> Subscription:
        """Called with every new AuthState."""
        with self._lock:
            observer_id = self._next_observer_id
            self._next_observer_id += 1
            self._observers[observer_id] = callback

        def cancel() -> None:
            with self._lock:
                self._observers.pop(observer_id, None)

        return Subscription(cancel)

    def start(self) -> None:
        """Begin the local session fetch and listen to the provider."""
        self._start_local_fetch()
        if self._listener_subscription is None:
            self._listener_subscription = self._listener.subscribe(self._on_principal)

    def stop(self) -> None:
        if self._listener_subscription is not None:
            self._listener_subscription.cancel()
            self._listener_subscription = None
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def refresh(self) -> None:
        """Re-fetch everything, e.g. after a retryable failure or a logout."""
        self._start_local_fetch()
        with self._lock:
            key = principal_key(self._snapshot.principal)
            if key is None:
                return
            generation = self._next_lookup_generation()
            self._update(lookup_key=key, lookup_status=LookupStatus.PENDING, lookup_user=None)
        self._executor.submit(self._lookup, key, generation)

    # -------------------------------------------------------------------------
    # Local session source
    # -------------------------------------------------------------------------

    def _start_local_fetch(self) -> None:
        with self._lock:
            self._local_generation += 1
            generation = self._local_generation
            if not (self._api.has_local_session() or self._check_platform_session):
                self._update(local_settled=True, local_user=None, local_error=None)
                return
        self._executor.submit(self._fetch_local, generation)

    def _fetch_local(self, generation: int) -> None:
        try:
            user = self._api.get_me()
        except ApiUnavailableError:
            logger.warning("Session fetch failed after retries", exc_info=True)
            self._apply_local(generation, None, AuthErrorKind.UPSTREAM_UNAVAILABLE)
            return
        self._apply_local(generation, user, None)

    def _apply_local(self, generation: int, user: dict | None, error: AuthErrorKind | None) -> None:
        with self._lock:
            if generation != self._local_generation:
                logger.debug(f"Discarding superseded session fetch {generation}")
                return
            self._update(local_settled=True, local_user=user, local_error=error)

    # -------------------------------------------------------------------------
    # Federated source and per-principal lookup
    # -------------------------------------------------------------------------

    def _next_lookup_generation(self) -> int:
        self._lookup_generation += 1
        return self._lookup_generation

    def _on_principal(self, principal: FederatedPrincipal | None) -> None:
        key = principal_key(principal)
        with self._lock:
            new_key = key != self._current_key
            self._current_key = key
            if not new_key:
                self._update(federated_settled=True, principal=principal)
                return
            # Any lookup still in flight belongs to the previous principal
            generation = self._next_lookup_generation()
            if key is None:
                self._update(
                    federated_settled=True,
                    principal=None,
                    lookup_key=None,
                    lookup_status=LookupStatus.IDLE,
                    lookup_user=None,
                )
                return
            self._update(
                federated_settled=True,
                principal=principal,
                lookup_key=key,
                lookup_status=LookupStatus.PENDING,
                lookup_user=None,
            )
        self._executor.submit(self._lookup, key, generation)

    def _lookup(self, key: str, generation: int) -> None:
        try:
            user = self._api.get_federated_user()
        except ApiUnavailableError:
            logger.warning(f"Server lookup for principal {key} failed after retries", exc_info=True)
            self._apply_lookup(key, generation, LookupStatus.FAILED, None)
            return
        status = LookupStatus.FOUND if user is not None else LookupStatus.NOT_FOUND
        self._apply_lookup(key, generation, status, user)

    def _apply_lookup(self, key: str, generation: int, status: LookupStatus, user: dict | None) -> None:
        with self._lock:
            if key != self._current_key or generation != self._lookup_generation:
                logger.debug(f"Discarding stale lookup {generation} for principal {key}")
                return
            self._update(lookup_key=key, lookup_status=status, lookup_user=user)

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    def _update(self, **changes) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            state = reconcile(self._snapshot)
            if state == self._state:
                return
            self._state = state
            observers = list(self._observers.values())

        for callback in observers:
            try:
                callback(state)
            except Exception:
                logger.exception("Auth state observer failed")
