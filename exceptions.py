"""Exceptions raised by the Forge routing core.

Build-time problems (bad route declarations, unwritable cache directories)
are raised eagerly so they surface during a deploy step rather than on a
live request. Runtime outcomes such as 404 and 405 are not exceptions.
"""


class RoutingError(Exception):
    """Base class for all routing errors."""

    status_code = 500


class InvalidArgument(RoutingError, ValueError):
    """Raised when a route, group, middleware or pattern declaration is invalid."""


class RouteCacheError(RoutingError, OSError):
    """Raised when the route cache cannot be written or holds malformed data."""


class MiddlewareResolutionError(RoutingError, LookupError):
    """Raised when a middleware id cannot be resolved to a callable."""


class HandlerResolutionError(RoutingError, LookupError):
    """Raised when a route handler reference cannot be turned into a callable."""


class RouterNotLoaded(RoutingError, RuntimeError):
    """Raised when dispatch is attempted without a route source."""
