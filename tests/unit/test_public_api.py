"""Tests for the package's public surface."""

import dispatch_pipeline


class TestPublicAPI:
    def test_all_names_are_importable(self) -> None:
        for name in dispatch_pipeline.__all__:
            assert hasattr(dispatch_pipeline, name), name

    def test_no_duplicates_in_all(self) -> None:
        assert len(dispatch_pipeline.__all__) == len(set(dispatch_pipeline.__all__))

    def test_version(self) -> None:
        assert dispatch_pipeline.__version__ == "0.1.0"

    def test_primary_api(self) -> None:
        from dispatch_pipeline import Pipeline, PipelineConfig, Router, create_app

        router = Router()
        app = create_app(Pipeline(router, config=PipelineConfig()))
        assert app.pipeline.router is router

    def test_middleware_subpackage(self) -> None:
        from dispatch_pipeline.middleware import JSONBodyParser, RequestLogger, log_request

        assert dispatch_pipeline.JSONBodyParser is JSONBodyParser
        assert dispatch_pipeline.RequestLogger is RequestLogger
        assert callable(log_request)
