"""Explicit success/failure values returned by the persistence and email adapters.

Adapters never raise for expected failures; callers branch with ``match``::

    match await store.get_cart_session(token):
        case Ok(session): ...
        case Err(ErrorKind.PERSISTENCE_ERROR, detail): ...
"""

from dataclasses import dataclass

from storefront.core.errors import ErrorKind


@dataclass(frozen=True, slots=True)
class Ok[T]:
    """Successful adapter outcome carrying a value."""

    value: T


@dataclass(frozen=True, slots=True)
class Err:
    """Failed adapter outcome carrying an error kind and a short diagnostic."""

    kind: ErrorKind
    detail: str = ""


type Result[T] = Ok[T] | Err
