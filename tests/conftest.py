"""Shared pytest fixtures for dispatch-pipeline tests."""

from collections.abc import Callable
from typing import Any

import pytest
from starlette.datastructures import Headers

from dispatch_pipeline import (
    Continuation,
    Pipeline,
    PipelineConfig,
    RawRequest,
    RequestContext,
    ResponseBuilder,
    Router,
)


@pytest.fixture
def make_request() -> Callable[..., RawRequest]:
    """Build a RawRequest the way the transport adapter would.

    Accepts method, path, optional headers dict and body bytes.
    """

    def _create(
        method: str = "GET",
        path: str = "/",
        *,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ) -> RawRequest:
        return RawRequest(
            method=method,
            path=path,
            headers=Headers(headers=headers or {}),
            body=body,
        )

    return _create


@pytest.fixture
def router() -> Router:
    """An empty router."""
    return Router()


@pytest.fixture
def pipeline(router: Router) -> Pipeline:
    """A pipeline over the ``router`` fixture with a short request deadline."""
    return Pipeline(router, config=PipelineConfig(request_timeout=2.0))


@pytest.fixture
def events() -> list[str]:
    """Shared list middleware and handlers append to, to observe call order."""
    return []


@pytest.fixture
def tracing_middleware(events: list[str]) -> Callable[[str], Any]:
    """Factory for middleware that records ``<label>-enter`` / ``<label>-exit``."""

    def _create(label: str) -> Any:
        async def middleware(
            ctx: RequestContext,
            response: ResponseBuilder,
            call_next: Continuation,
        ) -> None:
            events.append(f"{label}-enter")
            await call_next()
            events.append(f"{label}-exit")

        middleware.__name__ = f"trace_{label}"
        return middleware

    return _create
