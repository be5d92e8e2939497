"""Per-request state: the raw request, path parameters, typed attributes.

A RequestContext is created by the pipeline for each inbound request and
is owned by that request's task alone, so nothing here is synchronized.
"""

import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, overload

from starlette.datastructures import Headers

from dispatch_pipeline.core.router import RouteMatch
from dispatch_pipeline.exceptions import RequestStateError

T = TypeVar("T")


@dataclass(frozen=True)
class RawRequest:
    """A parsed request as delivered by the transport layer."""

    method: str
    path: str
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    query_string: str = ""

    @property
    def content_length(self) -> int | None:
        """The declared Content-Length, or None when absent or malformed."""
        return declared_content_length(self.headers)


def declared_content_length(headers: Headers) -> int | None:
    value = headers.get("content-length", "")
    if not value.isdecimal():
        return None
    return int(value)


@dataclass(frozen=True)
class AttributeKey(Generic[T]):
    """A typed key into the request attribute bag.

    Values stored under a key must be instances of its declared type:

        USER_ID = AttributeKey("user_id", str)
        ctx.attributes.set(USER_ID, "u-42")
        ctx.attributes.get(USER_ID)  # "u-42"
    """

    name: str
    type: type[T]


JSON_BODY: AttributeKey[Any] = AttributeKey("json_body", object)
"""Parsed JSON request body, set by ``JSONBodyParser``."""


class AttributeBag:
    """Typed key -> value storage middleware use to pass data forward."""

    __slots__ = ("_values",)

    def __init__(self) -> None:
        self._values: dict[AttributeKey[Any], Any] = {}

    def set(self, key: AttributeKey[T], value: T) -> None:
        """Store a value, checking it against the key's declared type.

        Raises:
            TypeError: If the value is not an instance of ``key.type``.
        """
        if not isinstance(value, key.type):
            raise TypeError(
                f"Attribute '{key.name}' expects {key.type.__name__}, "
                f"got {type(value).__name__}"
            )
        self._values[key] = value

    @overload
    def get(self, key: AttributeKey[T]) -> T | None: ...

    @overload
    def get(self, key: AttributeKey[T], default: T) -> T: ...

    def get(self, key: AttributeKey[T], default: T | None = None) -> T | None:
        return self._values.get(key, default)

    def pop(self, key: AttributeKey[T], default: T | None = None) -> T | None:
        return self._values.pop(key, default)

    def __getitem__(self, key: AttributeKey[T]) -> T:
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[AttributeKey[Any]]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


class RequestState(Enum):
    """Lifecycle of a single request through the pipeline."""

    RECEIVED = "received"
    IN_MIDDLEWARE = "in_middleware"
    DISPATCHED = "dispatched"
    RESPONDING = "responding"
    SENT = "sent"
    SENT_ERROR = "sent_error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({RequestState.SENT, RequestState.SENT_ERROR, RequestState.CANCELLED})

_ABORT = {RequestState.SENT_ERROR, RequestState.CANCELLED}

_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.RECEIVED: frozenset(
        {RequestState.IN_MIDDLEWARE, RequestState.DISPATCHED, *_ABORT}
    ),
    RequestState.IN_MIDDLEWARE: frozenset(
        {
            RequestState.IN_MIDDLEWARE,
            RequestState.DISPATCHED,
            RequestState.RESPONDING,
            RequestState.SENT,
            *_ABORT,
        }
    ),
    RequestState.DISPATCHED: frozenset(
        {RequestState.RESPONDING, RequestState.SENT, *_ABORT}
    ),
    RequestState.RESPONDING: frozenset(
        {RequestState.RESPONDING, RequestState.SENT, *_ABORT}
    ),
    RequestState.SENT: frozenset(),
    RequestState.SENT_ERROR: frozenset(),
    RequestState.CANCELLED: frozenset(),
}


@dataclass(eq=False)
class RequestContext:
    """Everything the pipeline knows about one in-flight request.

    Attributes:
        request: The raw request from the transport layer.
        path_params: Parameters captured by the matched route (strings).
        route: The RouteMatch once the router has dispatched, else None.
        attributes: Typed bag for data passed between middleware and handler.
        state: Current lifecycle state.
        position: Middleware chain position for IN_MIDDLEWARE / RESPONDING.
        started_at: ``time.perf_counter()`` when the context was created.
    """

    request: RawRequest
    path_params: dict[str, str] = field(default_factory=dict)
    route: RouteMatch | None = None
    attributes: AttributeBag = field(default_factory=AttributeBag)
    state: RequestState = RequestState.RECEIVED
    position: int | None = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def headers(self) -> Headers:
        return self.request.headers

    @property
    def body(self) -> bytes:
        return self.request.body

    @property
    def cancelled(self) -> bool:
        return self.state is RequestState.CANCELLED

    @property
    def elapsed(self) -> float:
        """Seconds since the request was received."""
        return time.perf_counter() - self.started_at

    def transition(self, state: RequestState, *, position: int | None = None) -> None:
        """Move to a new lifecycle state.

        Raises:
            RequestStateError: If the transition is not allowed.
        """
        if state not in _TRANSITIONS[self.state]:
            raise RequestStateError(
                f"Invalid request state transition {self.state.value} -> {state.value} "
                f"for {self.method} {self.path}"
            )
        self.state = state
        self.position = position
