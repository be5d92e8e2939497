"""Starlette/uvicorn transport for the pipeline."""

from dispatch_pipeline.starlette.app import PipelineApp, create_app
from dispatch_pipeline.starlette.server import serve

__all__ = ["PipelineApp", "create_app", "serve"]
