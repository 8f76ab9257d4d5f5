"""Store error taxonomy shared by the reconcilers, the runtime and the gateway.

Reconcilers never decide on retry themselves. A primary fetch that raises
:class:`NotFoundError` means the object is gone and the pass ends cleanly;
everything else propagates to :mod:`dronectl.manager`, which requeues the key
with backoff.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure reported by a resource store."""

    code = "STORE_ERROR"
    status = 500

    def __init__(self, message: str, kind: str | None = None, name: str | None = None):
        self.message = message
        self.kind = kind
        self.name = name
        super().__init__(message)


class NotFoundError(StoreError):
    code = "NOT_FOUND"
    status = 404


class AlreadyExistsError(StoreError):
    code = "ALREADY_EXISTS"
    status = 409


class ConflictError(StoreError):
    """The object changed between our read and our write."""

    code = "CONFLICT"
    status = 409


class StoreUnavailableError(StoreError):
    code = "STORE_UNAVAILABLE"
    status = 503



def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, NotFoundError)


def ignore_not_found(exc: BaseException) -> None:
    """Re-raise *exc* unless it is a :class:`NotFoundError`."""
    if not is_not_found(exc):
        raise exc
