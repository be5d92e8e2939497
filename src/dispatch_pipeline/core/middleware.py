"""Middleware primitives: the entry signature, continuations, validation.

A middleware entry is any async callable of the form::

    async def entry(ctx: RequestContext, response: ResponseBuilder, call_next: Continuation) -> None:
        ...                 # inbound phase
        await call_next()   # run the rest of the chain (at most once)
        ...                 # outbound phase

Not calling ``call_next`` short-circuits the chain: later entries and the
router never run, but earlier entries still see their outbound phase.
"""

import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeAlias

from dispatch_pipeline.exceptions import DoubleDispatchError, MiddlewareValidationError

if TYPE_CHECKING:
    from dispatch_pipeline.core.context import RequestContext
    from dispatch_pipeline.core.response import ResponseBuilder

MiddlewareEntry: TypeAlias = Callable[
    ["RequestContext", "ResponseBuilder", "Continuation"], Awaitable[None]
]


class Continuation:
    """The rest of the pipeline, handed to one middleware entry.

    Single use: a second call raises DoubleDispatchError and records the
    violation so the pipeline fails the request even if the entry catches it.

    Attributes:
        position: Chain position of the entry holding this continuation.
        entry: Name of that entry, for diagnostics.
        called: Whether the continuation has been invoked.
        violation: The DoubleDispatchError raised on a second call, if any.
    """

    __slots__ = ("_proceed", "called", "entry", "position", "violation")

    def __init__(
        self,
        position: int,
        entry: str,
        proceed: Callable[[], Awaitable[None]],
    ) -> None:
        self.position = position
        self.entry = entry
        self._proceed = proceed
        self.called = False
        self.violation: DoubleDispatchError | None = None

    async def __call__(self) -> None:
        if self.called:
            error = DoubleDispatchError(
                f"Middleware {self.entry} at position {self.position} "
                f"invoked its continuation more than once",
                position=self.position,
                entry=self.entry,
            )
            if self.violation is None:
                self.violation = error
            raise error
        self.called = True
        await self._proceed()

    def __repr__(self) -> str:
        return f"Continuation(position={self.position}, entry={self.entry!r}, called={self.called})"


def middleware_name(middleware: Any) -> str:
    """Human-readable name of a middleware function or object."""
    name = getattr(middleware, "__name__", None)
    if name is None:
        name = type(middleware).__name__
    return name


def is_async_callable(obj: Any) -> bool:
    """Check for ``async def`` functions and objects with an async ``__call__``."""
    if inspect.iscoroutinefunction(obj):
        return True
    call = getattr(obj, "__call__", None)  # noqa: B004
    return call is not None and inspect.iscoroutinefunction(call)


def normalize_middleware(
    middleware_attr: Any,
    *,
    source: str = "",
) -> tuple[Callable[..., Any], ...]:
    """Normalize a middleware value to a tuple of callables.

    Accepts: None, single callable, list, or tuple.
    Returns: tuple of callables (empty if None).

    Args:
        middleware_attr: The middleware value to normalize.
        source: Context for error messages (e.g., "Pipeline.use()").

    Raises:
        MiddlewareValidationError: If middleware_attr is not a valid type.
    """
    if middleware_attr is None:
        return ()
    if callable(middleware_attr) and not isinstance(middleware_attr, (list, tuple)):
        return (middleware_attr,)
    if isinstance(middleware_attr, (list, tuple)):
        return tuple(middleware_attr)
    raise MiddlewareValidationError(
        f"{source + ': ' if source else ''}middleware must be a list or callable, "
        f"got {type(middleware_attr).__name__}"
    )


def validate_middleware(
    middleware: Sequence[Any],
    *,
    start: int = 0,
) -> None:
    """Check that every entry is an async callable.

    Args:
        middleware: Entries to validate.
        start: Chain position of the first entry, for error messages.

    Raises:
        MiddlewareValidationError: If an entry is not callable or not async.
    """
    for i, mw in enumerate(middleware, start=start):
        if not callable(mw):
            raise MiddlewareValidationError(
                f"Non-callable middleware at position {i}: {type(mw).__name__}"
            )
        if not is_async_callable(mw):
            raise MiddlewareValidationError(
                f"Middleware at position {i} must be async, "
                f"got sync function {middleware_name(mw)}"
            )
