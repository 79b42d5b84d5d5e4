"""Authentication rejections that carry their own JSON body."""

from typing import Any


class AuthRejected(Exception):
    """
    Raised by request guards that answer with a flat JSON body instead of
    FastAPI's ``{"detail": ...}`` shape. The app registers a handler that
    renders ``body`` with ``status_code``.
    """

    def __init__(self, status_code: int, body: dict[str, Any]):
        self.status_code = status_code
        self.body = body
        super().__init__(body.get("error", "Authentication failed"))
