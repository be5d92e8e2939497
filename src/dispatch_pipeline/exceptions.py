"""Exception hierarchy for routing and pipeline errors."""


class DispatchPipelineError(Exception):
    """Base exception for all dispatch-pipeline errors.

    Catching this exception will catch every error raised by the
    package, setup-time and request-time alike.

    Example:
        try:
            pipeline.start()
        except DispatchPipelineError as e:
            logger.error(f"Server failed: {e}")
    """


class ConfigurationError(DispatchPipelineError):
    """Raised when the application is wired up incorrectly.

    Always raised during setup (registration, mounting, ``use()``,
    ``start()``), never while serving a request. Fatal for the process.
    """


class PathParseError(ConfigurationError):
    """Raised when a route pattern or mount prefix is malformed.

    Examples of invalid patterns:
        - Missing leading slash: users/:id
        - Empty segment: /users//:id
        - Duplicate parameter: /teams/:id/users/:id
        - Invalid parameter name: /users/:1st

    Example:
        PathParseError("Invalid pattern '/users//:id': empty segment at position 2")
    """


class DuplicateRouteError(ConfigurationError):
    """Raised when two routes resolve to the same method and pattern.

    Parameter names do not distinguish routes: ``/users/:id`` and
    ``/users/:uid`` are the same pattern. Mounted routers are checked
    against the effective route table of the whole tree.

    Example:
        DuplicateRouteError("Duplicate route: GET /users/:id")
    """


class MountConflictError(ConfigurationError):
    """Raised when a router cannot be mounted.

    This exception is raised when:
        - Another router is already mounted at the exact same prefix
        - The router is already mounted somewhere else
        - Mounting would create a cycle
    """


class MiddlewareValidationError(ConfigurationError):
    """Raised when a middleware entry is invalid.

    This exception is raised when:
        - The middleware is not callable
        - The middleware is not async

    Example:
        MiddlewareValidationError(
            "Middleware at position 2 must be async, got sync function timing"
        )
    """


class PipelineFrozenError(ConfigurationError):
    """Raised when the route table or middleware chain is mutated after start."""


class PortInUseError(ConfigurationError):
    """Raised by ``start()`` when the listening port is already bound."""


class TimeoutFault(ConfigurationError):
    """A request exceeded its deadline.

    Usually means a middleware entry never invoked its continuation. Never
    raised out of the pipeline; it is logged and turned into a 500.

    Attributes:
        position: Chain position of the offending entry, or ``None`` if the
            handler itself was running.
        entry: Name of the offending middleware entry or handler.
        deadline: Configured deadline in seconds.
        elapsed: Seconds spent on the request before it was abandoned.
    """

    def __init__(
        self,
        message: str,
        *,
        position: int | None,
        entry: str,
        deadline: float,
        elapsed: float,
    ) -> None:
        super().__init__(message)
        self.position = position
        self.entry = entry
        self.deadline = deadline
        self.elapsed = elapsed


class DoubleDispatchError(DispatchPipelineError):
    """Raised when a middleware entry invokes its continuation twice.

    The second call fails; the request ends with a 500 response even if
    the entry catches this exception.

    Attributes:
        position: Chain position of the offending entry.
        entry: Name of the offending middleware entry.
    """

    def __init__(self, message: str, *, position: int, entry: str) -> None:
        super().__init__(message)
        self.position = position
        self.entry = entry


class UnhandledHandlerError(DispatchPipelineError):
    """Wraps any exception escaping a handler or middleware entry.

    Created at the pipeline's outer boundary, logged, and converted into
    a 500 response. The original exception is available as ``__cause__``.
    """


class RequestStateError(DispatchPipelineError):
    """Raised on an invalid request lifecycle transition."""
