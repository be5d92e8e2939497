"""JSON request body parsing.

Register it first so the parsed body is available to every later entry
and to the handler under ``JSON_BODY``.
"""

import logging

from pydantic_core import from_json

from dispatch_pipeline.core.context import JSON_BODY, RequestContext
from dispatch_pipeline.core.middleware import Continuation
from dispatch_pipeline.core.response import JSON_MEDIA_TYPE, ResponseBuilder

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100 * 1024


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class JSONBodyParser:
    """Parse ``application/json`` request bodies.

    Requests with another content type or an empty body pass through
    untouched. Otherwise the chain is short-circuited with:

    - 413 when the declared Content-Length or the body is larger than
      ``limit`` bytes
    - 400 when the body is not valid JSON, or (``strict``) when the top
      level value is neither an object nor an array

    Args:
        limit: Maximum body size in bytes.
        strict: Only accept objects and arrays at the top level.
    """

    __slots__ = ("limit", "strict")

    def __init__(self, *, limit: int = DEFAULT_LIMIT, strict: bool = True) -> None:
        self.limit = limit
        self.strict = strict

    async def __call__(
        self,
        ctx: RequestContext,
        response: ResponseBuilder,
        call_next: Continuation,
    ) -> None:
        if _media_type(ctx.headers.get("content-type", "")) != JSON_MEDIA_TYPE or not ctx.body:
            await call_next()
            return

        declared = ctx.request.content_length
        if (declared is not None and declared > self.limit) or len(ctx.body) > self.limit:
            reason = f"body exceeds {self.limit} bytes"
            self._reject(ctx, response, 413, "Payload Too Large", reason)
            return

        try:
            data = from_json(ctx.body)
        except ValueError as exc:
            self._reject(ctx, response, 400, "Invalid JSON body", str(exc))
            return

        if self.strict and not isinstance(data, (dict, list)):
            self._reject(
                ctx,
                response,
                400,
                "JSON body must be an object or an array",
                f"top level is {type(data).__name__}",
            )
            return

        ctx.attributes.set(JSON_BODY, data)
        await call_next()

    @staticmethod
    def _reject(
        ctx: RequestContext,
        response: ResponseBuilder,
        status: int,
        detail: str,
        reason: str,
    ) -> None:
        logger.info(
            "Rejected request body",
            extra={"method": ctx.method, "path": ctx.path, "status": status, "reason": reason},
        )
        response.json({"detail": detail}, status=status)
