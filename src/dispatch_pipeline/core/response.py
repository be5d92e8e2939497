"""Response builder shared by every middleware entry of a request.

Entries and the handler mutate one ResponseBuilder; the pipeline turns it
into an immutable RawResponse for the transport layer once the chain has
unwound.
"""

from dataclasses import dataclass
from typing import Any

from pydantic_core import from_json, to_json
from starlette.datastructures import MutableHeaders

JSON_MEDIA_TYPE = "application/json"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


@dataclass(frozen=True)
class RawResponse:
    """A finished response: status, header pairs, encoded body."""

    status: int
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""

    def header(self, name: str) -> str | None:
        """Return the first value of a header, case-insensitively."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def json(self) -> Any:
        return from_json(self.body)


class ResponseBuilder:
    """Mutable response under construction.

    Usage:
        async def handler(ctx, response):
            response.set_header("Cache-Control", "no-store")
            response.json({"id": ctx.path_params["id"]}, status=200)
    """

    __slots__ = ("_body", "headers", "status")

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.headers = MutableHeaders()
        self._body: bytes | None = None

    @property
    def body(self) -> bytes:
        return self._body or b""

    @property
    def has_body(self) -> bool:
        return self._body is not None

    def set_status(self, status: int) -> "ResponseBuilder":
        self.status = status
        return self

    def set_header(self, name: str, value: str) -> "ResponseBuilder":
        self.headers[name] = value
        return self

    def json(self, data: Any, *, status: int | None = None) -> "ResponseBuilder":
        """Serialize ``data`` as the JSON body.

        Accepts anything pydantic-core can serialize: dicts, lists, pydantic
        models, dataclasses, datetimes.
        """
        self._body = to_json(data)
        self.headers["content-type"] = JSON_MEDIA_TYPE
        if status is not None:
            self.status = status
        return self

    def text(self, content: str, *, status: int | None = None) -> "ResponseBuilder":
        self._body = content.encode("utf-8")
        self.headers["content-type"] = TEXT_MEDIA_TYPE
        if status is not None:
            self.status = status
        return self

    def send_bytes(
        self,
        content: bytes,
        *,
        media_type: str | None = None,
        status: int | None = None,
    ) -> "ResponseBuilder":
        self._body = content
        if media_type is not None:
            self.headers["content-type"] = media_type
        if status is not None:
            self.status = status
        return self

    def build(self) -> RawResponse:
        return RawResponse(
            status=self.status,
            headers=tuple(self.headers.items()),
            body=self.body,
        )

    @classmethod
    def error(cls, status: int, detail: str) -> "ResponseBuilder":
        """A fresh response carrying ``{"detail": ...}``."""
        return cls().json({"detail": detail}, status=status)
