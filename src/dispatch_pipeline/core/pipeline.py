"""Middleware pipeline wrapping router dispatch.

Per request the pipeline walks its entries in registration order, each
wrapping the next; the innermost step dispatches through the router and
calls the matched handler. The response then travels back out through the
same entries in reverse.

``Pipeline.handle`` is the single recovery point: any error escaping an
entry or handler is logged and turned into a 500 response there, so one bad
request never affects another.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

import anyio
import anyio.to_thread
from starlette.exceptions import HTTPException

from dispatch_pipeline.config import PipelineConfig
from dispatch_pipeline.core.context import RawRequest, RequestContext, RequestState
from dispatch_pipeline.core.middleware import (
    Continuation,
    MiddlewareEntry,
    is_async_callable,
    middleware_name,
    normalize_middleware,
    validate_middleware,
)
from dispatch_pipeline.core.response import RawResponse, ResponseBuilder
from dispatch_pipeline.core.router import NotFound, Router
from dispatch_pipeline.exceptions import (
    DoubleDispatchError,
    PipelineFrozenError,
    TimeoutFault,
    UnhandledHandlerError,
)

logger = logging.getLogger(__name__)


async def _call_handler(
    handler: Callable[..., Any],
    ctx: RequestContext,
    response: ResponseBuilder,
) -> Any:
    """Call a sync or async handler.

    Sync handlers run in a worker thread. On timeout the thread is abandoned:
    it keeps running, but its result is discarded.
    """
    if is_async_callable(handler):
        return await handler(ctx, response)
    return await anyio.to_thread.run_sync(handler, ctx, response, abandon_on_cancel=True)


def _http_exception_response(response: ResponseBuilder, exc: HTTPException) -> None:
    response.json({"detail": exc.detail}, status=exc.status_code)
    for name, value in (exc.headers or {}).items():
        response.set_header(name, value)


def _log_http_exception(ctx: RequestContext, exc: HTTPException, *, raised_by: str) -> None:
    logger.info(
        "Request ended with HTTP error",
        extra={
            "method": ctx.method,
            "path": ctx.path,
            "status": exc.status_code,
            "detail": exc.detail,
            "raised_by": raised_by,
        },
    )


class _ChainRun:
    """One traversal of the middleware chain for one request."""

    def __init__(
        self,
        entries: Sequence[MiddlewareEntry],
        router: Router,
        ctx: RequestContext,
        response: ResponseBuilder,
    ) -> None:
        self._entries = entries
        self._router = router
        self.ctx = ctx
        self.response = response
        self.continuations: list[Continuation] = []
        self.returned: set[int] = set()
        self.dispatching = False

    async def run(self, index: int = 0) -> None:
        if index == len(self._entries):
            await self._dispatch()
            if index > 0:
                self.ctx.transition(RequestState.RESPONDING, position=index - 1)
            return

        entry = self._entries[index]
        continuation = Continuation(index, middleware_name(entry), lambda: self.run(index + 1))
        self.continuations.append(continuation)

        self.ctx.transition(RequestState.IN_MIDDLEWARE, position=index)
        await entry(self.ctx, self.response, continuation)
        self.returned.add(index)

        # Hand control back to the enclosing entry's outbound phase
        if index > 0:
            self.ctx.transition(RequestState.RESPONDING, position=index - 1)

    async def _dispatch(self) -> None:
        ctx = self.ctx
        ctx.transition(RequestState.DISPATCHED)
        result = self._router.dispatch(ctx.method, ctx.path)

        if isinstance(result, NotFound):
            logger.debug("No route matched", extra={"method": ctx.method, "path": ctx.path})
            self.response.json({"detail": "Not Found"}, status=404)
            return

        ctx.route = result
        ctx.path_params = dict(result.path_params)

        # Left set if the handler is abandoned mid-flight, see stalled_at
        self.dispatching = True
        try:
            value = await _call_handler(result.handler, ctx, self.response)
        except HTTPException as exc:
            self.dispatching = False
            _log_http_exception(ctx, exc, raised_by=result.route.name or result.pattern)
            _http_exception_response(self.response, exc)
            return
        self.dispatching = False

        # Handlers may return the builder itself: `return response.json(...)`
        if value is not None and value is not self.response:
            self.response.json(value)

    def violation(self) -> DoubleDispatchError | None:
        for continuation in self.continuations:
            if continuation.violation is not None:
                return continuation.violation
        return None

    def stalled_at(self) -> tuple[int | None, str]:
        """Locate where the request is stuck: (chain position, entry name).

        Position is None when the handler itself is running.
        """
        if self.dispatching and self.ctx.route is not None:
            return None, self.ctx.route.route.name or self.ctx.route.pattern

        # Innermost entry that has not returned yet
        for continuation in reversed(self.continuations):
            if continuation.position not in self.returned:
                return continuation.position, continuation.entry
        return None, "router"


class Pipeline:
    """Ordered middleware chain in front of a Router.

    Usage:
        router = Router()
        router.mount("/users", users)

        pipeline = Pipeline(router, config=PipelineConfig(port=3000))
        pipeline.use(JSONBodyParser())
        pipeline.use(RequestLogger())
        pipeline.start()

    Middleware can only be added during setup. ``freeze()`` (called by
    ``start()``, by the ASGI lifespan startup and by the first request)
    locks both the chain and the route table.
    """

    def __init__(self, router: Router, *, config: PipelineConfig | None = None) -> None:
        self.router = router
        self.config = config or PipelineConfig()
        self._entries: list[MiddlewareEntry] = []
        self._frozen = False

    # -- setup -----------------------------------------------------------

    def use(self, middleware: MiddlewareEntry | Sequence[MiddlewareEntry]) -> "Pipeline":
        """Append one middleware entry, or several in order.

        Raises:
            PipelineFrozenError: If the pipeline has started.
            MiddlewareValidationError: If an entry is not an async callable.
        """
        if self._frozen:
            raise PipelineFrozenError(
                "Cannot add middleware after the pipeline has started. "
                "Call use() during setup."
            )

        entries = normalize_middleware(middleware, source="Pipeline.use()")
        start = len(self._entries)
        validate_middleware(entries, start=start)
        self._entries.extend(entries)

        for position, entry in enumerate(entries, start=start):
            logger.debug(
                "Added middleware",
                extra={"entry": middleware_name(entry), "position": position},
            )
        return self

    @property
    def middleware(self) -> tuple[MiddlewareEntry, ...]:
        return tuple(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Lock the middleware chain and the route table. Idempotent."""
        if self._frozen:
            return
        self.router.freeze()
        self._frozen = True
        logger.info(
            "Pipeline ready",
            extra={
                "middleware_count": len(self._entries),
                "route_count": len(self.router.routes()),
            },
        )

    def start(self, port: int | None = None) -> None:
        """Freeze the pipeline and serve it until a stop signal arrives.

        Args:
            port: Port to listen on; defaults to ``config.port``.

        Raises:
            PortInUseError: If the port is already bound.
        """
        from dispatch_pipeline.starlette.server import serve

        self.freeze()
        serve(
            self,
            host=self.config.host,
            port=self.config.port if port is None else port,
            drain_timeout=self.config.drain_timeout,
            log_level=self.config.log_level,
        )

    # -- request time ----------------------------------------------------

    async def handle(self, request: RawRequest) -> RawResponse:
        """Run one request through the chain and return the finished response.

        Never raises for request-time failures: they become 404/500 responses.
        Cancellation of the calling task (client disconnect) propagates.
        """
        self.freeze()
        ctx = RequestContext(request=request)
        response = ResponseBuilder()
        chain = _ChainRun(self._entries, self.router, ctx, response)
        deadline = self.config.request_timeout

        try:
            with anyio.move_on_after(deadline) as scope:
                await chain.run()
        except anyio.get_cancelled_exc_class():
            ctx.transition(RequestState.CANCELLED)
            logger.info(
                "Request cancelled",
                extra={
                    "method": ctx.method,
                    "path": ctx.path,
                    "position": ctx.position,
                    "duration": ctx.elapsed,
                },
            )
            raise
        except DoubleDispatchError as exc:
            return self._fail(ctx, exc)
        except HTTPException as exc:
            _log_http_exception(ctx, exc, raised_by=f"middleware at position {ctx.position}")
            error_response = ResponseBuilder()
            _http_exception_response(error_response, exc)
            ctx.transition(RequestState.SENT)
            return error_response.build()
        except Exception as exc:
            fault = UnhandledHandlerError(
                f"Unhandled error while processing {ctx.method} {ctx.path}: {exc!r}"
            )
            fault.__cause__ = exc
            return self._fail(ctx, fault)

        # A chain that finishes past its deadline without a checkpoint still timed out
        expired = scope.cancel_called or anyio.current_time() >= scope.deadline
        if scope.cancelled_caught or expired:
            return self._timeout(ctx, chain)

        violation = chain.violation()
        if violation is not None:
            return self._fail(ctx, violation)

        ctx.transition(RequestState.SENT)
        return response.build()

    def _fail(self, ctx: RequestContext, error: Exception) -> RawResponse:
        logger.error(
            str(error),
            exc_info=error,
            extra={
                "method": ctx.method,
                "path": ctx.path,
                "state": ctx.state.value,
                "position": ctx.position,
                "duration": ctx.elapsed,
            },
        )
        ctx.transition(RequestState.SENT_ERROR)
        return ResponseBuilder.error(500, "Internal Server Error").build()

    def _timeout(self, ctx: RequestContext, chain: _ChainRun) -> RawResponse:
        deadline = self.config.request_timeout or 0.0
        elapsed = ctx.elapsed
        position, entry = chain.stalled_at()

        if position is None:
            where = f"handler {entry}"
        else:
            where = f"middleware {entry} at position {position}"
        fault = TimeoutFault(
            f"{ctx.method} {ctx.path} exceeded its {deadline:g}s deadline in {where} "
            f"after {elapsed:.3f}s",
            position=position,
            entry=entry,
            deadline=deadline,
            elapsed=elapsed,
        )

        logger.error(
            str(fault),
            extra={
                "method": ctx.method,
                "path": ctx.path,
                "position": position,
                "entry": entry,
                "deadline": deadline,
                "elapsed": elapsed,
            },
        )
        ctx.transition(RequestState.SENT_ERROR)
        return ResponseBuilder.error(500, "Internal Server Error").build()
