"""Observer for the federated identity provider's sign-in state.

The provider SDK reports sign-in changes through one long-lived listener
(including sign-out from another tab). This wraps that in an explicit
subscription with a cancel handle instead of module-level state.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FederatedPrincipal:
    """A signed-in provider user as the client sees it."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


PrincipalCallback = Callable[[FederatedPrincipal | None], None]


class Subscription:
    """Handle returned by subscribe(). cancel() is idempotent."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            self._cancelled = True
            self._cancel()


class FederatedAuthListener:
    """
    Fan-out of provider sign-in state to subscribers.

    Like the provider SDK, a subscriber added after the first report is
    immediately called with the current principal.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._callbacks: dict[int, PrincipalCallback] = {}
        self._next_id = 0
        self._principal: FederatedPrincipal | None = None
        self._settled = False

    @property
    def principal(self) -> FederatedPrincipal | None:
        return self._principal

    @property
    def settled(self) -> bool:
        """True once the provider has reported at least once."""
        return self._settled

    def subscribe(self, callback: PrincipalCallback) -> Subscription:
        with self._lock:
            sub_id = self._next_id
            self._next_id += 1
            self._callbacks[sub_id] = callback
            settled, principal = self._settled, self._principal

        if settled:
            callback(principal)

        def cancel() -> None:
            with self._lock:
                self._callbacks.pop(sub_id, None)

        return Subscription(cancel)

    def emit(self, principal: FederatedPrincipal | None) -> None:
        """Report the provider's current principal (None when signed out)."""
        with self._lock:
            self._principal = principal
            self._settled = True
            callbacks = list(self._callbacks.values())

        for callback in callbacks:
            try:
                callback(principal)
            except Exception:
                logger.exception("Federated auth subscriber failed")
