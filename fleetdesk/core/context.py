import contextvars
from contextlib import contextmanager
from typing import Iterator

# Placeholder written to logs outside a request or before sign-in.
UNSET = "-"

_subject_id: contextvars.ContextVar[str] = contextvars.ContextVar("subject_id", default=UNSET)
_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default=UNSET)


def set_subject_id(subject_id: str | None) -> None:
    _subject_id.set(subject_id or UNSET)


def get_subject_id() -> str:
    return _subject_id.get()


def get_request_id() -> str:
    return _request_id.get()


@contextmanager
def bound_request(request_id: str) -> Iterator[str]:
    """Bind ``request_id`` for one request with no operator yet; restores the outer values on exit."""
    request_token = _request_id.set(request_id or UNSET)
    subject_token = _subject_id.set(UNSET)
    try:
        yield get_request_id()
    finally:
        _subject_id.reset(subject_token)
        _request_id.reset(request_token)
