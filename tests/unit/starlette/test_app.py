"""Tests for the ASGI adapter."""

from typing import Any

import anyio
import pytest
from starlette.testclient import TestClient

from dispatch_pipeline import (
    Pipeline,
    PipelineConfig,
    RawResponse,
    RequestState,
    create_app,
)
from dispatch_pipeline.starlette.app import PipelineApp, to_starlette_response


def _http_scope(
    method: str,
    path: str,
    query_string: bytes = b"",
    headers: list[tuple[bytes, bytes]] | None = None,
) -> dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query_string,
        "headers": headers or [],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


class Sent:
    """ASGI send callable that records messages."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)


class TestHTTP:
    """Requests through Starlette's TestClient."""

    def test_json_response(self, router, pipeline) -> None:
        """Handler return values arrive as JSON with the status set by the pipeline."""

        @router.get("/users/:id")
        async def get_user(ctx, response):
            return {"id": ctx.path_params["id"]}

        client = TestClient(create_app(pipeline))
        response = client.get("/users/7")

        assert response.status_code == 200
        assert response.json() == {"id": "7"}
        assert response.headers["content-type"] == "application/json"

    def test_not_found(self, pipeline) -> None:
        client = TestClient(create_app(pipeline))
        response = client.get("/missing")
        assert response.status_code == 404
        assert response.json() == {"detail": "Not Found"}

    def test_query_string_is_not_part_of_the_path(self, router, pipeline) -> None:
        @router.get("/search")
        async def search(ctx, response):
            return {"query": ctx.request.query_string}

        client = TestClient(create_app(pipeline))
        response = client.get("/search?q=lamp")
        assert response.json() == {"query": "q=lamp"}

    def test_request_headers_and_body_reach_handler(self, router, pipeline) -> None:
        @router.put("/echo")
        async def echo(ctx, response):
            response.send_bytes(ctx.body, media_type=ctx.headers["content-type"])

        client = TestClient(create_app(pipeline))
        response = client.put("/echo", content=b"raw bytes", headers={"Content-Type": "text/x"})
        assert response.content == b"raw bytes"
        assert response.headers["content-type"] == "text/x"

    def test_no_content(self, router, pipeline) -> None:
        @router.delete("/users/:id")
        async def delete_user(ctx, response):
            response.send_bytes(b"", status=204)

        client = TestClient(create_app(pipeline))
        response = client.delete("/users/1")
        assert response.status_code == 204
        assert response.content == b""

    def test_handler_error_is_500(self, router, pipeline) -> None:
        @router.get("/boom")
        async def boom(ctx, response):
            raise RuntimeError("boom")

        client = TestClient(create_app(pipeline), raise_server_exceptions=True)
        response = client.get("/boom")
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal Server Error"}


class TestBodyLimit:
    """Bodies over max_body_size are refused before the pipeline runs."""

    @pytest.fixture
    def limited(self, router):
        calls = []

        @router.post("/upload")
        async def upload(ctx, response):
            calls.append(ctx.body)
            return {"size": len(ctx.body)}

        pipeline = Pipeline(router, config=PipelineConfig(max_body_size=16))
        return create_app(pipeline), calls

    async def test_declared_length_over_limit_is_not_read(self, limited) -> None:
        app, calls = limited
        received = []

        async def receive():
            received.append(True)
            return {"type": "http.request", "body": b"x" * 10, "more_body": False}

        sent = Sent()
        scope = _http_scope("POST", "/upload", headers=[(b"content-length", b"1048576")])
        await app(scope, receive, sent)

        assert sent.messages[0]["status"] == 413
        assert sent.messages[1]["body"] == b'{"detail":"Payload Too Large"}'
        assert received == []
        assert calls == []

    async def test_streamed_body_over_limit(self, limited) -> None:
        """Without Content-Length the read stops once the limit is passed."""
        app, calls = limited
        chunks = [
            {"type": "http.request", "body": b"x" * 10, "more_body": True},
            {"type": "http.request", "body": b"x" * 10, "more_body": True},
            {"type": "http.request", "body": b"x" * 10, "more_body": False},
        ]

        async def receive():
            return chunks.pop(0)

        sent = Sent()
        await app(_http_scope("POST", "/upload"), receive, sent)

        assert sent.messages[0]["status"] == 413
        assert len(chunks) == 1
        assert calls == []

    def test_body_within_limit(self, limited) -> None:
        app, calls = limited
        response = TestClient(app).post("/upload", content=b"x" * 16)
        assert response.status_code == 200
        assert response.json() == {"size": 16}
        assert calls == [b"x" * 16]


class TestLifespan:
    """Lifespan startup freezes the pipeline."""

    def test_startup_freezes_pipeline(self, pipeline) -> None:
        with TestClient(create_app(pipeline)):
            assert pipeline.frozen

    async def test_startup_and_shutdown_messages(self, pipeline) -> None:
        incoming = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
        sent = Sent()

        async def receive() -> dict[str, Any]:
            return incoming.pop(0)

        await PipelineApp(pipeline)({"type": "lifespan"}, receive, sent)

        assert [m["type"] for m in sent.messages] == [
            "lifespan.startup.complete",
            "lifespan.shutdown.complete",
        ]

    async def test_startup_failure_is_reported(self, pipeline, monkeypatch) -> None:
        def broken_freeze() -> None:
            raise RuntimeError("cannot freeze")

        monkeypatch.setattr(pipeline, "freeze", broken_freeze)
        sent = Sent()

        async def receive() -> dict[str, Any]:
            return {"type": "lifespan.startup"}

        await PipelineApp(pipeline)({"type": "lifespan"}, receive, sent)

        assert sent.messages == [{"type": "lifespan.startup.failed", "message": "cannot freeze"}]


class TestDisconnect:
    """A client going away cancels the request and nothing is sent."""

    async def test_disconnect_cancels_in_flight_request(self, router, pipeline) -> None:
        started = anyio.Event()
        contexts = []

        @router.get("/slow")
        async def slow(ctx, response):
            contexts.append(ctx)
            started.set()
            await anyio.sleep(10)

        incoming = [{"type": "http.request", "body": b"", "more_body": False}]

        async def receive() -> dict[str, Any]:
            if incoming:
                return incoming.pop(0)
            await started.wait()
            return {"type": "http.disconnect"}

        sent = Sent()
        with anyio.fail_after(5):
            await create_app(pipeline)(_http_scope("GET", "/slow"), receive, sent)

        assert sent.messages == []
        assert contexts[0].state is RequestState.CANCELLED

    async def test_disconnect_before_body(self, router, pipeline) -> None:
        calls = []
        router.post("/upload")(lambda ctx, response: calls.append(ctx))

        async def receive() -> dict[str, Any]:
            return {"type": "http.disconnect"}

        sent = Sent()
        await create_app(pipeline)(_http_scope("POST", "/upload"), receive, sent)

        assert sent.messages == []
        assert calls == []


class TestAdapter:
    async def test_unsupported_scope(self, pipeline) -> None:
        async def receive() -> dict[str, Any]:
            return {}

        with pytest.raises(ValueError, match="Unsupported ASGI scope type: 'websocket'"):
            await PipelineApp(pipeline)({"type": "websocket"}, receive, Sent())

    def test_to_starlette_response_keeps_repeated_headers(self) -> None:
        raw = RawResponse(
            status=201,
            headers=(
                ("content-type", "application/json"),
                ("set-cookie", "a=1"),
                ("set-cookie", "b=2"),
                ("content-length", "999"),
            ),
            body=b"{}",
        )
        response = to_starlette_response(raw)

        assert response.status_code == 201
        assert response.body == b"{}"
        assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]
        assert response.headers.getlist("content-length") == ["2"]
