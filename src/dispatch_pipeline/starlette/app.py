"""ASGI adapter: Starlette request/response objects around a Pipeline."""

import logging
from typing import Any

import anyio
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from dispatch_pipeline.core.context import RawRequest, declared_content_length
from dispatch_pipeline.core.pipeline import Pipeline
from dispatch_pipeline.core.response import RawResponse, ResponseBuilder

logger = logging.getLogger(__name__)


class PipelineApp:
    """ASGI 3 application serving a Pipeline.

    - ``lifespan``: startup freezes the pipeline.
    - ``http``: the body is read up to ``config.max_body_size`` (413 past
      it, without running the pipeline), then the request runs through the pipeline
      while a watcher listens for the client going away; on disconnect the
      request's work is cancelled and nothing is sent.
    """

    def __init__(self, pipeline: Pipeline) -> None:
        self.pipeline = pipeline

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        elif scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        else:
            raise ValueError(f"Unsupported ASGI scope type: {scope['type']!r}")

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    self.pipeline.freeze()
                except Exception as exc:
                    logger.exception("Pipeline failed to start")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                logger.info("Pipeline shutting down")
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        try:
            body = await self._read_body(request)
        except ClientDisconnect:
            logger.info(
                "Client disconnected before the request body was read",
                extra={"method": request.method, "path": scope["path"]},
            )
            return

        if body is None:
            limit = self.pipeline.config.max_body_size
            logger.info(
                "Rejected request body",
                extra={
                    "method": request.method,
                    "path": scope["path"],
                    "status": 413,
                    "reason": f"body exceeds {limit} bytes",
                },
            )
            rejected = ResponseBuilder.error(413, "Payload Too Large").build()
            await to_starlette_response(rejected)(scope, receive, send)
            return

        raw = RawRequest(
            method=request.method,
            path=scope["path"],
            headers=request.headers,
            body=body,
            query_string=scope.get("query_string", b"").decode("latin-1"),
        )

        result: RawResponse | None = None
        async with anyio.create_task_group() as task_group:

            async def watch_disconnect() -> None:
                await _wait_for_disconnect(receive)
                task_group.cancel_scope.cancel()

            task_group.start_soon(watch_disconnect)
            result = await self.pipeline.handle(raw)
            task_group.cancel_scope.cancel()

        if result is None:
            # Client went away; the pipeline already logged the cancellation
            return

        await to_starlette_response(result)(scope, receive, send)

    async def _read_body(self, request: Request) -> bytes | None:
        """Read the request body, or None once it exceeds max_body_size."""
        limit = self.pipeline.config.max_body_size
        if limit is None:
            return await request.body()

        declared = declared_content_length(request.headers)
        if declared is not None and declared > limit:
            return None

        chunks: list[bytes] = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > limit:
                return None
            chunks.append(chunk)
        return b"".join(chunks)


async def _wait_for_disconnect(receive: Receive) -> None:
    while True:
        message: Any = await receive()
        if message["type"] == "http.disconnect":
            return


def to_starlette_response(raw: RawResponse) -> Response:
    """Convert a RawResponse into a Starlette Response, keeping repeated headers."""
    response = Response(content=raw.body, status_code=raw.status)
    for name, value in raw.headers:
        if name.lower() == "content-length":
            continue
        response.headers.append(name, value)
    return response


def create_app(pipeline: Pipeline) -> PipelineApp:
    """Create an ASGI application for a pipeline.

    Example:
        from dispatch_pipeline import Pipeline, Router, create_app

        pipeline = Pipeline(Router())
        app = create_app(pipeline)   # uvicorn main:app
    """
    return PipelineApp(pipeline)
