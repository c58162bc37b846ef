"""The admitted user for the current request, carried in a contextvar.

The auth gate sets it after resolving a local identity and clears it when
the response is done. Database connections read it to scope RLS.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from uuid import UUID

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Id of the admitted user.

    Raises RuntimeError outside an admitted request: user-scoped code
    reached without the gate is a wiring bug, never an anonymous caller.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set: user-scoped code ran outside an admitted request"
        )
    return user_id


def set_current_user_id(user_id: UUID) -> None:
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """Pooled workers reuse contexts, so the gate calls this in a finally."""
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID) -> Iterator[UUID]:
    """Act as ``user_id`` for the block, then restore whatever was there.

    Role assignment runs on a public path (a federated-pending caller has no
    local user yet) and enters the new user's context this way.
    """
    token = _current_user_id.set(user_id)
    try:
        yield user_id
    finally:
        _current_user_id.reset(token)
