"""Request-scoped reader identity, carried through the call stack in a contextvar."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get the authenticated reader's ID.

    Raises RuntimeError when called outside an authenticated request.
    Reader-scoped code (credits, ledger) must never run anonymously.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. Reader-scoped code was called "
            "outside of an authenticated request."
        )
    return user_id


def set_current_user_id(user_id: UUID) -> None:
    """Set by AuthMiddleware once the session cookie checks out."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """Reset after the request; AuthMiddleware calls this in a finally block."""
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Temporarily act as a given reader.

    Used by tests and by maintenance jobs that walk over readers
    (for example a bulk credit refill).

    Example:
        with user_context(reader_id):
            history = credit_service.history()
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
