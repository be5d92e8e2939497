"""Request dispatch and middleware pipeline for Python HTTP services."""

# Configuration
from dispatch_pipeline.config import PipelineConfig

# Core: routing, pipeline, request-time types
from dispatch_pipeline.core.context import (
    JSON_BODY,
    AttributeBag,
    AttributeKey,
    RawRequest,
    RequestContext,
    RequestState,
)
from dispatch_pipeline.core.middleware import Continuation, MiddlewareEntry
from dispatch_pipeline.core.parser import PathSegment, SegmentType
from dispatch_pipeline.core.pipeline import Pipeline
from dispatch_pipeline.core.response import RawResponse, ResponseBuilder
from dispatch_pipeline.core.router import NotFound, Route, RouteMatch, Router

# Exceptions
from dispatch_pipeline.exceptions import (
    ConfigurationError,
    DispatchPipelineError,
    DoubleDispatchError,
    DuplicateRouteError,
    MiddlewareValidationError,
    MountConflictError,
    PathParseError,
    PipelineFrozenError,
    PortInUseError,
    RequestStateError,
    TimeoutFault,
    UnhandledHandlerError,
)

# Built-in middleware and ASGI transport
from dispatch_pipeline.middleware import JSONBodyParser, RequestLogger
from dispatch_pipeline.starlette.app import PipelineApp, create_app

__all__ = [
    # Primary API
    "Router",
    "Pipeline",
    "PipelineConfig",
    "create_app",
    "PipelineApp",
    # Built-in middleware
    "JSONBodyParser",
    "RequestLogger",
    # Request-time types
    "AttributeBag",
    "AttributeKey",
    "Continuation",
    "JSON_BODY",
    "MiddlewareEntry",
    "NotFound",
    "PathSegment",
    "RawRequest",
    "RawResponse",
    "RequestContext",
    "RequestState",
    "ResponseBuilder",
    "Route",
    "RouteMatch",
    "SegmentType",
    # Exceptions
    "ConfigurationError",
    "DispatchPipelineError",
    "DoubleDispatchError",
    "DuplicateRouteError",
    "MiddlewareValidationError",
    "MountConflictError",
    "PathParseError",
    "PipelineFrozenError",
    "PortInUseError",
    "RequestStateError",
    "TimeoutFault",
    "UnhandledHandlerError",
]

__version__ = "0.1.0"
