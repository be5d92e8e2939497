"""Shared fixtures for concurrency integration tests.

Builds one pipeline per test whose middleware stores per-request data in
the attribute bag and yields to the event loop between steps, so
concurrent requests interleave at every await point.

App structure:
    stamp_request_id   # Echoes X-Request-ID, starts the trace with "root"
    trace_api          # Appends "api" for /api/* paths
    authenticate       # /api/protected only: short-circuits 401 without a token
    JSONBodyParser     # Parses POST bodies

    GET  /echo                       # Root middleware only
    GET  /api/users/:user_id         # Returns the id it was dispatched with
    GET  /api/protected              # Returns the authenticated user
    POST /api/messages               # Returns the parsed body
    GET  /api/tasks/:task_id         # 404 for "missing-*", 500 for "boom-*"
"""

from typing import Any

import anyio
import httpx
import pytest
from starlette.exceptions import HTTPException

from dispatch_pipeline import (
    JSON_BODY,
    AttributeKey,
    JSONBodyParser,
    Pipeline,
    PipelineApp,
    PipelineConfig,
    Router,
    create_app,
)

CONCURRENT_REQUESTS = 50

REQUEST_ID = AttributeKey("request_id", str)
TRACE = AttributeKey("trace", list)
USER = AttributeKey("user", str)


async def stamp_request_id(ctx, response, call_next) -> None:
    request_id = ctx.headers.get("x-request-id", "")
    ctx.attributes.set(REQUEST_ID, request_id)
    ctx.attributes.set(TRACE, ["root"])
    await anyio.sleep(0)
    await call_next()
    response.set_header("X-Request-ID", request_id)


async def trace_api(ctx, response, call_next) -> None:
    if ctx.path.startswith("/api/"):
        ctx.attributes[TRACE].append("api")
        await anyio.sleep(0)
    await call_next()


async def authenticate(ctx, response, call_next) -> None:
    if ctx.path != "/api/protected":
        await call_next()
        return

    ctx.attributes[TRACE].append("auth")
    authorization = ctx.headers.get("authorization", "")
    await anyio.sleep(0)
    if not authorization.startswith("Bearer "):
        response.json(
            {"detail": "Unauthorized", "request_id": ctx.attributes[REQUEST_ID]},
            status=401,
        )
        return

    ctx.attributes.set(USER, authorization.removeprefix("Bearer "))
    await call_next()


def _summary(ctx) -> dict[str, Any]:
    return {
        "request_id": ctx.attributes[REQUEST_ID],
        "trace": list(ctx.attributes[TRACE]),
    }


def build_pipeline() -> Pipeline:
    router = Router()
    api = Router()

    @router.get("/echo")
    async def echo(ctx, response):
        await anyio.sleep(0)
        return _summary(ctx)

    @api.get("/users/:user_id")
    async def get_user(ctx, response):
        await anyio.sleep(0)
        return {**_summary(ctx), "user_id": ctx.path_params["user_id"]}

    @api.get("/protected")
    async def protected(ctx, response):
        await anyio.sleep(0)
        return {**_summary(ctx), "user_id": ctx.attributes[USER]}

    @api.post("/messages")
    async def post_message(ctx, response):
        body = ctx.attributes.get(JSON_BODY)
        await anyio.sleep(0)
        response.json({**_summary(ctx), "body": body}, status=201)

    @api.get("/tasks/:task_id")
    async def get_task(ctx, response):
        task_id = ctx.path_params["task_id"]
        await anyio.sleep(0)
        if task_id.startswith("missing-"):
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        if task_id.startswith("boom-"):
            raise RuntimeError(f"task {task_id} exploded")
        return {**_summary(ctx), "task_id": task_id}

    router.mount("/api", api)

    pipeline = Pipeline(router, config=PipelineConfig(request_timeout=10.0))
    pipeline.use([stamp_request_id, trace_api, authenticate, JSONBodyParser()])
    return pipeline


@pytest.fixture
def concurrent_requests() -> int:
    """Number of requests fired at once per scenario."""
    return CONCURRENT_REQUESTS


@pytest.fixture
def app() -> PipelineApp:
    """A fresh ASGI app per test."""
    return create_app(build_pipeline())


@pytest.fixture
async def client(app: PipelineApp):
    """httpx client speaking ASGI directly to the app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
