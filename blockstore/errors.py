"""Client-facing request errors.

Each error carries the fixed code string returned as the response body and
the HTTP status it maps to. Nothing is written to storage once one of these
is raised.
"""

from __future__ import annotations


class BlockStoreError(Exception):
    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.code)
        self.detail = detail


class IndexQueryMalformed(BlockStoreError):
    """The index segment is not an integer or an ``a,b`` integer pair."""

    code = "INDEX_QUERY_MALFORMED"


class NeedsBody(BlockStoreError):
    """A write arrived without a request body."""

    code = "NEEDS_BODY"


class NoContentLength(BlockStoreError):
    """A multi-chunk write arrived without a numeric Content-Length."""

    code = "NO_CONTENT_LEN"


class ClientDisconnected(BlockStoreError):
    """The client went away before the request body was complete."""

    code = "CLIENT_DISCONNECTED"
