"""Built-in middleware entries."""

from dispatch_pipeline.middleware.json_body import JSONBodyParser
from dispatch_pipeline.middleware.request_logger import RequestLogger, log_request

__all__ = ["JSONBodyParser", "RequestLogger", "log_request"]
