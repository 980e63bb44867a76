from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

NO_REQUEST_ID = "-"

_request_id: ContextVar[str] = ContextVar("_request_id", default=NO_REQUEST_ID)

def new_request_id() -> str:
    rid = uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid

def get_request_id() -> str:
    return _request_id.get()

@contextmanager
def request_scope(rid: Optional[str] = None) -> Iterator[str]:
    """Bind a request id for work that does not run inside the HTTP middleware."""
    token = _request_id.set(rid or uuid.uuid4().hex[:12])
    try:
        yield _request_id.get()
    finally:
        _request_id.reset(token)
