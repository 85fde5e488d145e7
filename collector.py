"""Route collection for Forge routing.

RouteCollector is the build-time registration API. An application hands a
``definition(collector)`` callable to the compiler step; the callable
declares routes, groups and error handlers, and the collector records flat,
normalized RouteDefinition entries for the compiler.

Example:
    def routes(r):
        r.get("/", "app.controllers:Home@index")
        with r.grouped(prefix="/admin", middleware=["auth"]):
            r.get("/users", "app.controllers:Users@index").middleware("audit")
        r.error(404, "app.controllers:Errors@not_found")
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from forge_routing.exceptions import InvalidArgument
from forge_routing.handlers import HandlerRef, handler_ref
from forge_routing.middleware import MiddlewareSpec, merge_middleware

logger = logging.getLogger(__name__)

ANY_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


@dataclass(frozen=True)
class RouteDefinition:
    """A single (method, path, handler, middleware) declaration."""

    method: str
    path: str
    handler: HandlerRef
    middleware: List[MiddlewareSpec] = field(default_factory=list)


@dataclass(frozen=True)
class ErrorDefinition:
    """A status-code handler with the middleware active at registration."""

    handler: HandlerRef
    middleware: List[MiddlewareSpec] = field(default_factory=list)


@dataclass(frozen=True)
class Group:
    """A registration scope contributing a prefix and middleware."""

    prefix: str = ""
    middleware: List[MiddlewareSpec] = field(default_factory=list)


def normalize_path(path: str) -> str:
    """Ensure a leading slash and drop trailing slashes, except for root."""
    path = (path or "").strip()
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def normalize_prefix(prefix: str) -> str:
    prefix = (prefix or "").strip()
    if prefix in ("", "/"):
        return ""
    if not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix.rstrip("/")


def join_paths(a: str, b: str) -> str:
    if not a:
        return normalize_path(b)
    if b in ("", "/"):
        return normalize_path(a)
    return normalize_path(a + "/" + b.lstrip("/"))


class RouteHandle:
    """Fluent handle on a registered route for attaching middleware."""

    def __init__(self, collector: "RouteCollector", index: int) -> None:
        self._collector = collector
        self._index = index

    @property
    def definition(self) -> RouteDefinition:
        return self._collector.routes[self._index]

    def middleware(self, mw: Any, params: Optional[Mapping[str, Any]] = None) -> "RouteHandle":
        """Append middleware to this route.

        Usage:
            .middleware("auth")
            .middleware("auth", {"roles": "admin", "redirect": "/login"})
            .middleware(["auth", "limiter"])
            .middleware([{"id": "auth", "params": {"roles": "admin"}}])

        Entries already present with identical canonical params are not
        added twice.
        """
        if isinstance(mw, str):
            spec = MiddlewareSpec.create(mw, params)
            add = [spec] if spec is not None else []
        elif params:
            raise InvalidArgument("Params can only be given with a single middleware id.")
        else:
            add = mw

        current = self.definition
        self._collector._replace_route(
            self._index, replace(current, middleware=merge_middleware(current.middleware, add))
        )
        return self


class RouteCollector:
    """Collects route declarations, groups and error handlers."""

    def __init__(self) -> None:
        self._routes: List[RouteDefinition] = []
        self._errors: Dict[int, ErrorDefinition] = {}
        self._group_stack: List[Group] = [Group()]

    # HTTP verbs

    def get(self, path: str, handler: Any) -> RouteHandle:
        return self.add("GET", path, handler)

    def post(self, path: str, handler: Any) -> RouteHandle:
        return self.add("POST", path, handler)

    def put(self, path: str, handler: Any) -> RouteHandle:
        return self.add("PUT", path, handler)

    def patch(self, path: str, handler: Any) -> RouteHandle:
        return self.add("PATCH", path, handler)

    def delete(self, path: str, handler: Any) -> RouteHandle:
        return self.add("DELETE", path, handler)

    def options(self, path: str, handler: Any) -> RouteHandle:
        return self.add("OPTIONS", path, handler)

    def match(self, methods: Iterable[str], path: str, handler: Any) -> RouteHandle:
        """Register the same handler for several methods.

        Returns:
            The handle of the last registered route.

        Raises:
            InvalidArgument: If no method survives trimming.
        """
        if isinstance(methods, str):
            methods = [methods]

        handle = None
        for method in methods:
            method = str(method).strip().upper()
            if not method:
                continue
            handle = self.add(method, path, handler)

        if handle is None:
            raise InvalidArgument("No valid HTTP methods provided for match().")
        return handle

    def any(self, path: str, handler: Any) -> RouteHandle:
        return self.match(ANY_METHODS, path, handler)

    def add(self, method: str, path: str, handler: Any) -> RouteHandle:
        """Register a route under the innermost active group.

        Raises:
            InvalidArgument: If the method is blank or the handler is invalid.
        """
        method = (method or "").strip().upper()
        if not method:
            raise InvalidArgument("HTTP method cannot be empty.")
        if handler is None:
            raise InvalidArgument(f"Route {method} {path} has no handler.")

        group = self._current_group()
        route = RouteDefinition(
            method=method,
            path=join_paths(group.prefix, normalize_path(path)),
            handler=handler_ref(handler),
            middleware=list(group.middleware),
        )
        self._routes.append(route)
        return RouteHandle(self, len(self._routes) - 1)

    # Groups

    def group(self, options: Optional[Mapping[str, Any]], callback: Callable[["RouteCollector"], Any]) -> None:
        """Run ``callback(self)`` inside a group scope.

        Options:
            prefix: path prefix joined onto the parent prefix.
            middleware: a string id or a list of ids / structured entries,
                appended after the parent middleware.
        """
        options = options or {}
        with self.grouped(options.get("prefix", ""), options.get("middleware")):
            callback(self)

    @contextmanager
    def grouped(self, prefix: str = "", middleware: Any = None) -> Iterator["RouteCollector"]:
        """Context-manager form of ``group``; the frame is always popped."""
        parent = self._current_group()
        child = normalize_prefix(prefix)
        frame = Group(
            prefix=join_paths(parent.prefix, child) if child else parent.prefix,
            middleware=merge_middleware(parent.middleware, middleware),
        )
        self._group_stack.append(frame)
        try:
            yield self
        finally:
            self._group_stack.pop()

    def _current_group(self) -> Group:
        return self._group_stack[-1]

    # Error handlers

    def error(self, code: int, handler: Any) -> None:
        """Register a handler for an HTTP error status (400-599).

        The active group middleware is attached to the handler.
        """
        if isinstance(code, bool) or not isinstance(code, int) or code < 400 or code > 599:
            raise InvalidArgument(f"Error code must be 400-599, got {code}.")
        self._errors[code] = ErrorDefinition(
            handler=handler_ref(handler),
            middleware=list(self._current_group().middleware),
        )

    # Reading

    @property
    def routes(self) -> List[RouteDefinition]:
        return list(self._routes)

    @property
    def errors(self) -> Dict[int, ErrorDefinition]:
        return dict(self._errors)

    @property
    def depth(self) -> int:
        """Number of open groups above the root scope."""
        return len(self._group_stack) - 1

    def clear(self) -> None:
        self._routes = []
        self._errors = {}
        self._group_stack = [Group()]

    def _replace_route(self, index: int, route: RouteDefinition) -> None:
        self._routes[index] = route


def collect(definition: Callable[[RouteCollector], Any]) -> RouteCollector:
    """Run a route definition callable against a fresh collector."""
    collector = RouteCollector()
    definition(collector)
    logger.debug("Collected %d routes and %d error handlers", len(collector.routes), len(collector.errors))
    return collector
