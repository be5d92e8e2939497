"""Request logging middleware."""

import logging
import time
from collections.abc import Callable

from starlette.exceptions import HTTPException

from dispatch_pipeline.core.context import RequestContext
from dispatch_pipeline.core.middleware import Continuation
from dispatch_pipeline.core.response import ResponseBuilder

logger = logging.getLogger(__name__)

LogFunction = Callable[[str, str, int, float], None]


def log_request(method: str, path: str, status: int, duration: float) -> None:
    """Default collaborator: one info record per request."""
    logger.info(
        "%s %s %d %.1fms",
        method,
        path,
        status,
        duration * 1000,
        extra={"method": method, "path": path, "status": status, "duration": duration},
    )


class RequestLogger:
    """Report every request once its response is known.

    Calls ``log(method, path, status, duration_seconds)`` on the way out.
    If an inner entry or the handler raises, reports status 500 and lets
    the error continue to the pipeline boundary. A request cut short by its
    deadline or by cancellation is reported as 500 too.

    Args:
        log: Collaborator receiving the request summary. Defaults to an
            info record on this module's logger.
    """

    __slots__ = ("log",)

    def __init__(self, log: LogFunction | None = None) -> None:
        self.log = log or log_request

    async def __call__(
        self,
        ctx: RequestContext,
        response: ResponseBuilder,
        call_next: Continuation,
    ) -> None:
        start = time.perf_counter()
        try:
            await call_next()
        except HTTPException as exc:
            self.log(ctx.method, ctx.path, exc.status_code, time.perf_counter() - start)
            raise
        except BaseException:
            self.log(ctx.method, ctx.path, 500, time.perf_counter() - start)
            raise
        self.log(ctx.method, ctx.path, response.status, time.perf_counter() - start)
