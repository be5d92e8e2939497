"""Route pattern parser.

Converts pattern strings into typed segments:
- users -> static segment (matched literally, case-sensitive)
- :id   -> parameter segment (matches any single non-empty segment)

Request paths are split with the same rules so both sides line up.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from dispatch_pipeline.exceptions import PathParseError


class SegmentType(Enum):
    """Type of a URL path segment."""

    STATIC = "static"
    PARAM = "param"


@dataclass(frozen=True)
class PathSegment:
    """A parsed URL path segment with type and name."""

    name: str
    segment_type: SegmentType
    original: str

    @property
    def is_parameter(self) -> bool:
        """Check if this segment represents a path parameter."""
        return self.segment_type is SegmentType.PARAM

    def matches(self, value: str) -> bool:
        """Check whether a request path segment satisfies this segment."""
        if self.segment_type is SegmentType.PARAM:
            return bool(value)
        return value == self.name


_PARAM_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_segment(segment: str, *, pattern: str = "", position: int = 0) -> PathSegment:
    """Parse a single pattern segment into a PathSegment.

    Args:
        segment: Text between two slashes.
        pattern: Full pattern, for error messages.
        position: 1-based segment index, for error messages.

    Raises:
        PathParseError: If the segment is empty or has an invalid parameter name.

    Examples:
        "users" -> PathSegment(name="users", segment_type=STATIC, ...)
        ":id" -> PathSegment(name="id", segment_type=PARAM, ...)
    """
    where = f"Invalid pattern '{pattern}'" if pattern else "Invalid segment"

    if not segment:
        raise PathParseError(f"{where}: empty segment at position {position}")

    if segment.startswith(":"):
        name = segment[1:]
        if not _PARAM_NAME_PATTERN.match(name):
            raise PathParseError(
                f"{where}: invalid parameter name '{segment}'. "
                f"Use :name with letters, digits and underscores."
            )
        return PathSegment(name=name, segment_type=SegmentType.PARAM, original=segment)

    return PathSegment(name=segment, segment_type=SegmentType.STATIC, original=segment)


def _pattern_parts(pattern: str) -> list[str]:
    if not isinstance(pattern, str) or not pattern.startswith("/"):
        raise PathParseError(f"Invalid pattern {pattern!r}: must start with '/'")
    if pattern == "/":
        return []
    # One trailing slash is insignificant
    if pattern.endswith("/"):
        pattern = pattern[:-1]
    return pattern[1:].split("/")


def parse_pattern(pattern: str) -> tuple[PathSegment, ...]:
    """Parse a route pattern into PathSegments.

    Args:
        pattern: Route pattern such as ``/users/:id``.

    Returns:
        Tuple of parsed segments. ``/`` parses to an empty tuple.

    Raises:
        PathParseError: If the pattern is malformed or repeats a parameter name.

    Examples:
        "/users" -> (PathSegment(STATIC, "users"),)
        "/users/:id" -> (PathSegment(STATIC, "users"), PathSegment(PARAM, "id"))
        "/users/" -> (PathSegment(STATIC, "users"),)
    """
    segments = []
    seen_params: set[str] = set()

    for position, part in enumerate(_pattern_parts(pattern), start=1):
        segment = parse_segment(part, pattern=pattern, position=position)
        if segment.is_parameter:
            if segment.name in seen_params:
                raise PathParseError(
                    f"Invalid pattern '{pattern}': duplicate parameter '{segment.name}'"
                )
            seen_params.add(segment.name)
        segments.append(segment)

    return tuple(segments)


def parse_prefix(prefix: str) -> tuple[str, ...]:
    """Parse a mount prefix into its static segments.

    Raises:
        PathParseError: If the prefix is malformed or contains parameters.

    Examples:
        "/users" -> ("users",)
        "/api/v1/" -> ("api", "v1")
        "/" -> ()
    """
    segments = parse_pattern(prefix)
    for segment in segments:
        if segment.is_parameter:
            raise PathParseError(
                f"Invalid mount prefix '{prefix}': parameters are not allowed "
                f"in prefixes, found '{segment.original}'"
            )
    return tuple(segment.name for segment in segments)


def split_path(path: str) -> list[str]:
    """Split a request path into segments.

    A trailing slash is ignored, except for the root path itself. Empty
    interior segments are kept so that ``/users//7`` matches nothing.

    Examples:
        "/users/42" -> ["users", "42"]
        "/users/" -> ["users"]
        "/" -> []
    """
    if path in ("", "/"):
        return []
    if path.endswith("/"):
        path = path[:-1]
    return path.removeprefix("/").split("/")


def segments_to_pattern(
    segments: Sequence[PathSegment], prefix: Sequence[str] = ()
) -> str:
    """Convert PathSegments back to a canonical pattern string.

    ``prefix`` holds the static segments of the mounts above the route.

    Examples:
        (STATIC("users"), PARAM("id")) -> "/users/:id"
        (PARAM("id"),), prefix=("api", "users") -> "/api/users/:id"
        () -> "/"
    """
    return "/" + "/".join([*prefix, *(segment.original for segment in segments)])


def pattern_shape(segments: tuple[PathSegment, ...]) -> tuple[str | None, ...]:
    """Return the matching shape of a pattern: literals kept, parameters as None.

    Two patterns with the same shape match exactly the same paths.
    """
    return tuple(None if segment.is_parameter else segment.name for segment in segments)
