"""Route table with registration-order matching and prefix mounting.

Routes are registered during setup and frozen before the server accepts
connections. Matching walks routes and mounts together in registration order;
the slots taken by mounts are tried longest prefix first. The first full
match wins, so ordering is part of the usage contract:

    router.get("/users/me")(me)       # must come before
    router.get("/users/:id")(by_id)   # or "me" is captured as an id
"""

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from dispatch_pipeline.core.parser import (
    PathSegment,
    parse_pattern,
    parse_prefix,
    pattern_shape,
    segments_to_pattern,
    split_path,
)
from dispatch_pipeline.exceptions import (
    ConfigurationError,
    DuplicateRouteError,
    MountConflictError,
    PipelineFrozenError,
)

logger = logging.getLogger(__name__)

HTTP_METHODS: frozenset[str] = frozenset(
    {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}
)

_Shape = tuple[str | None, ...]
Handler = Callable[..., Any]
_Decorator = Callable[[Handler], Handler]


@dataclass(frozen=True)
class Route:
    """A registered (method, pattern, handler) binding. Immutable."""

    method: str
    pattern: str
    segments: tuple[PathSegment, ...]
    handler: Callable[..., Any]
    name: str | None = None

    def match(self, parts: Sequence[str]) -> dict[str, str] | None:
        """Match split request path segments against this route.

        Returns:
            Dict of path parameters if the path matches, None otherwise.
        """
        if len(parts) != len(self.segments):
            return None

        params: dict[str, str] = {}
        for segment, value in zip(self.segments, parts):
            if not segment.matches(value):
                return None
            if segment.is_parameter:
                params[segment.name] = value
        return params


@dataclass(frozen=True)
class RouteMatch:
    """Result of a successful dispatch.

    Attributes:
        route: The matched route.
        path_params: Parameter values, always strings.
        pattern: Full pattern including mount prefixes, e.g. ``/users/:id``.
    """

    route: Route
    path_params: dict[str, str]
    pattern: str

    @property
    def handler(self) -> Callable[..., Any]:
        return self.route.handler


@dataclass(frozen=True)
class NotFound:
    """Result of a dispatch that matched no route. An outcome, not an error."""

    method: str
    path: str


@dataclass(frozen=True)
class _Mount:
    prefix: str
    segments: tuple[str, ...]
    router: "Router"


def _normalize_method(method: str) -> str:
    if not isinstance(method, str) or method.upper() not in HTTP_METHODS:
        raise ConfigurationError(
            f"Unsupported HTTP method {method!r}. "
            f"Expected one of: {', '.join(sorted(HTTP_METHODS))}"
        )
    return method.upper()


class Router:
    """Maps (method, path) pairs to handlers.

    Usage:
        users = Router()

        @users.get("/")
        async def list_users(ctx, response): ...

        @users.get("/:id")
        async def get_user(ctx, response): ...

        app = Router()
        app.mount("/users", users)

        match = app.dispatch("GET", "/users/42")
        # match.path_params == {"id": "42"}
    """

    def __init__(self) -> None:
        self._mounts: list[_Mount] = []
        # Routes and mounts in registration order
        self._entries: list[Route | _Mount] = []
        self._parent: Router | None = None
        self._prefix: tuple[str, ...] = ()
        self._frozen = False

    # -- setup -----------------------------------------------------------

    def register(
        self,
        method: str,
        pattern: str,
        handler: Callable[..., Any],
        *,
        name: str | None = None,
    ) -> Route:
        """Register a handler for a method and pattern.

        Args:
            method: HTTP method, case-insensitive.
            pattern: Route pattern such as ``/users/:id``.
            handler: Sync or async callable receiving ``(ctx, response)``.
            name: Optional route name for introspection.

        Returns:
            The registered Route.

        Raises:
            PipelineFrozenError: If the router has been frozen.
            ConfigurationError: If the method is unknown or the handler not callable.
            PathParseError: If the pattern is malformed.
            DuplicateRouteError: If the method and pattern are already registered
                anywhere in the effective route table.
        """
        self._ensure_mutable()
        method = _normalize_method(method)
        if not callable(handler):
            raise ConfigurationError(
                f"Handler for {method} {pattern} must be callable, got {type(handler).__name__}"
            )

        segments = parse_pattern(pattern)
        absolute_prefix = self._absolute_prefix()
        key = (method, absolute_prefix + pattern_shape(segments))
        if key in self._root()._effective_keys():
            raise DuplicateRouteError(
                f"Duplicate route: {method} {segments_to_pattern(segments, absolute_prefix)}"
            )

        route = Route(
            method=method,
            pattern=pattern,
            segments=segments,
            handler=handler,
            name=name or getattr(handler, "__name__", None),
        )
        self._entries.append(route)

        logger.debug(
            "Registered route",
            extra={
                "method": method,
                "path": segments_to_pattern(segments, absolute_prefix),
                "handler": route.name,
            },
        )
        return route

    def route(
        self,
        method: str,
        pattern: str,
        *,
        name: str | None = None,
    ) -> _Decorator:
        """Decorator form of :meth:`register`. Returns the handler unchanged."""

        def decorator(handler: Handler) -> Handler:
            self.register(method, pattern, handler, name=name)
            return handler

        return decorator

    def get(self, pattern: str, **kwargs: Any) -> _Decorator:
        """Register a GET handler."""
        return self.route("GET", pattern, **kwargs)

    def post(self, pattern: str, **kwargs: Any) -> _Decorator:
        """Register a POST handler."""
        return self.route("POST", pattern, **kwargs)

    def put(self, pattern: str, **kwargs: Any) -> _Decorator:
        """Register a PUT handler."""
        return self.route("PUT", pattern, **kwargs)

    def patch(self, pattern: str, **kwargs: Any) -> _Decorator:
        """Register a PATCH handler."""
        return self.route("PATCH", pattern, **kwargs)

    def delete(self, pattern: str, **kwargs: Any) -> _Decorator:
        """Register a DELETE handler."""
        return self.route("DELETE", pattern, **kwargs)

    def mount(self, prefix: str, router: "Router") -> None:
        """Attach a sub-router under a static prefix.

        The sub-router becomes owned by this router: every one of its routes
        is matched under ``prefix`` followed by the route's own pattern.

        Raises:
            PipelineFrozenError: If this router has been frozen.
            PathParseError: If the prefix is malformed or has parameters.
            MountConflictError: If the prefix is already mounted, the router is
                already mounted elsewhere, or mounting would create a cycle.
            DuplicateRouteError: If a sub-route collides with an existing route.
        """
        self._ensure_mutable()
        if not isinstance(router, Router):
            raise ConfigurationError(
                f"Can only mount a Router at '{prefix}', got {type(router).__name__}"
            )

        segments = parse_prefix(prefix)

        if router is self or router._is_ancestor_of(self):
            raise MountConflictError(f"Mounting at '{prefix}' would create a cycle")
        if router._parent is not None:
            raise MountConflictError(
                f"Router is already mounted at '/{'/'.join(router._absolute_prefix())}'"
            )
        for existing in self._mounts:
            if existing.segments == segments:
                raise MountConflictError(
                    f"A router is already mounted at '{existing.prefix}'"
                )

        base = self._absolute_prefix() + segments
        taken = self._root()._effective_keys()
        for method, shape, route_prefix, route in router._iter_effective(()):
            if (method, base + shape) in taken:
                raise DuplicateRouteError(
                    f"Duplicate route: {method} "
                    f"{segments_to_pattern(route.segments, base + route_prefix)}"
                )

        router._parent = self
        router._prefix = segments
        mount = _Mount(prefix=prefix, segments=segments, router=router)
        self._mounts.append(mount)
        self._entries.append(mount)

        logger.debug(
            "Mounted router",
            extra={"prefix": "/" + "/".join(base), "route_count": len(router.routes())},
        )

    def freeze(self) -> None:
        """Lock this router and every mounted router against changes."""
        self._frozen = True
        for mount in self._mounts:
            mount.router.freeze()

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- request time ----------------------------------------------------

    def dispatch(self, method: str, path: str) -> RouteMatch | NotFound:
        """Find the handler for a request.

        Args:
            method: Request method.
            path: Request path, without query string.

        Returns:
            RouteMatch for the first matching route, or NotFound.
        """
        found = self._match(method.upper(), split_path(path), ())
        if found is None:
            return NotFound(method=method, path=path)
        return found

    def _match(
        self,
        method: str,
        parts: list[str],
        prefix: tuple[str, ...],
    ) -> RouteMatch | None:
        for entry in self._dispatch_order():
            if isinstance(entry, _Mount):
                size = len(entry.segments)
                if tuple(parts[:size]) != entry.segments:
                    continue
                found = entry.router._match(method, parts[size:], prefix + entry.segments)
                if found is not None:
                    return found
                continue

            if entry.method != method:
                continue
            params = entry.match(parts)
            if params is not None:
                return RouteMatch(
                    route=entry,
                    path_params=params,
                    pattern=segments_to_pattern(entry.segments, prefix),
                )

        return None

    # -- introspection ---------------------------------------------------

    def routes(self) -> list[tuple[str, str, Route]]:
        """Return the effective route table as (method, full pattern, route)."""
        return [
            (method, segments_to_pattern(route.segments, route_prefix), route)
            for method, _shape, route_prefix, route in self._iter_effective(())
        ]

    def __iter__(self) -> Iterator[tuple[str, str, Route]]:
        return iter(self.routes())

    def _dispatch_order(self) -> list[Route | _Mount]:
        """Registration order, with mount slots refilled longest prefix first."""
        # sorted() is stable: equal prefixes keep mount order
        mounts = iter(sorted(self._mounts, key=lambda m: len(m.segments), reverse=True))
        return [next(mounts) if isinstance(entry, _Mount) else entry for entry in self._entries]

    def _iter_effective(
        self,
        prefix: tuple[str, ...],
    ) -> Iterator[tuple[str, _Shape, tuple[str, ...], Route]]:
        for entry in self._entries:
            if isinstance(entry, _Mount):
                yield from entry.router._iter_effective(prefix + entry.segments)
            else:
                yield entry.method, prefix + pattern_shape(entry.segments), prefix, entry

    def _effective_keys(self) -> set[tuple[str, _Shape]]:
        return {(method, shape) for method, shape, _prefix, _route in self._iter_effective(())}

    def _root(self) -> "Router":
        node = self
        while node._parent is not None:
            node = node._parent
        return node

    def _absolute_prefix(self) -> tuple[str, ...]:
        prefix: tuple[str, ...] = ()
        node: Router | None = self
        while node is not None:
            prefix = node._prefix + prefix
            node = node._parent
        return prefix

    def _is_ancestor_of(self, other: "Router") -> bool:
        node = other._parent
        while node is not None:
            if node is self:
                return True
            node = node._parent
        return False

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise PipelineFrozenError(
                "Cannot change routes after the server has started. "
                "Register and mount routers during setup."
            )
