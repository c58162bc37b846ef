"""Client-side auth state and credential handling."""

from webclient.storage import CredentialStorage, SESSION_KEY, FEDERATED_SESSION_KEY
from webclient.http import ApiClient, ApiError, ApiUnavailableError
from webclient.federated import FederatedAuthListener, FederatedPrincipal, Subscription
from webclient.auth_state import (
    AuthErrorKind,
    AuthMode,
    AuthSnapshot,
    AuthState,
    ClientAuthState,
    reconcile,
    route_for,
)
