"""Pipeline configuration.

PipelineConfig is a frozen dataclass, immutable after creation. Override
what you need::

    config = PipelineConfig(port=8080, request_timeout=5.0)
"""

from dataclasses import dataclass

from dispatch_pipeline.exceptions import ConfigurationError

LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


@dataclass(frozen=True)
class PipelineConfig:
    """Server and per-request settings.

    Attributes:
        host: Interface to bind.
        port: TCP port to listen on.
        request_timeout: Per-request deadline in seconds; None disables it.
        drain_timeout: Seconds to wait for in-flight requests on shutdown.
        max_body_size: Largest request body in bytes the server reads; larger
            requests get a 413 before the pipeline runs. None disables it.
        log_level: Level passed to the uvicorn server.
    """

    host: str = "127.0.0.1"
    port: int = 3000
    request_timeout: float | None = 30.0
    drain_timeout: float = 10.0
    max_body_size: int | None = 1024 * 1024
    log_level: str = "info"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"port must be between 0 and 65535, got {self.port}")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError(
                f"request_timeout must be positive or None, got {self.request_timeout}"
            )
        if self.drain_timeout < 0:
            raise ConfigurationError(
                f"drain_timeout must not be negative, got {self.drain_timeout}"
            )
        if self.max_body_size is not None and self.max_body_size < 0:
            raise ConfigurationError(
                f"max_body_size must not be negative, got {self.max_body_size}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )
