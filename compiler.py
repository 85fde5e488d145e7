"""Route compilation for Forge routing.

The compiler turns the collector's flat route list into per-method
buckets. Each bucket holds an exact-match map for static paths and an
ordered list of dynamic entries whose path templates are compiled to
anchored regular expressions with named groups:

    /users/{id}          ->  ^/users/(?P<id>[^/]+)$
    /users/{id:\\d+}      ->  ^/users/(?P<id>\\d+)$

Alongside the buckets it builds the path index used by the router to tell
405 from 404. The index is keyed by a hash of the literal declared path, so
two different templates that happen to match the same request path are not
unified.
"""

import functools
import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from forge_routing.collector import ErrorDefinition, RouteDefinition
from forge_routing.exceptions import InvalidArgument
from forge_routing.handlers import HandlerRef, handler_from_data, handler_ref, handler_to_data
from forge_routing.middleware import MiddlewareSpec, merge_middleware

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)(?::([^}]+))?\}")
DEFAULT_CONSTRAINT = "[^/]+"
FORBIDDEN_IN_CONSTRAINT = ("~", "^", "$", "\\A", "\\Z", "\\z")

PathIndex = Dict[str, List[str]]


def path_key(path: str) -> str:
    """Index key for a literal path: ``p:`` + sha1 of the path text."""
    return "p:" + hashlib.sha1(path.encode("utf-8")).hexdigest()


@functools.lru_cache(maxsize=None)
def _matcher(regex: str) -> "re.Pattern[str]":
    return re.compile(regex)


@dataclass(frozen=True)
class CompiledRoute:
    """A route entry as stored in a method bucket or the error map."""

    handler: HandlerRef
    middleware: Tuple[MiddlewareSpec, ...] = ()
    pattern: str = ""
    regex: Optional[str] = None
    variables: Tuple[str, ...] = ()

    @property
    def is_dynamic(self) -> bool:
        return self.regex is not None

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """Match a full request path, returning the captured variables."""
        if self.regex is None:
            return {} if path == self.pattern else None
        m = _matcher(self.regex).fullmatch(path)
        if m is None:
            return None
        return {name: m.group(name) for name in self.variables}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "handler": handler_to_data(self.handler),
            "middleware": [spec.to_dict() for spec in self.middleware],
        }
        if self.pattern:
            data["pattern"] = self.pattern
        if self.regex is not None:
            data["regex"] = self.regex
            data["vars"] = list(self.variables)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompiledRoute":
        return cls(
            handler=handler_from_data(data["handler"]),
            middleware=tuple(MiddlewareSpec.from_dict(m) for m in data.get("middleware", [])),
            pattern=data.get("pattern", ""),
            regex=data.get("regex"),
            variables=tuple(data.get("vars", ())),
        )


@dataclass
class MethodBucket:
    """Compiled routes for one HTTP method."""

    static: Dict[str, CompiledRoute] = field(default_factory=dict)
    dynamic: List[CompiledRoute] = field(default_factory=list)

    def match(self, path: str) -> Optional[Tuple[CompiledRoute, Dict[str, str]]]:
        """Static lookup first, then dynamic entries in declaration order."""
        route = self.static.get(path)
        if route is not None:
            return route, {}
        for route in self.dynamic:
            params = route.match(path)
            if params is not None:
                return route, params
        return None

    def __len__(self) -> int:
        return len(self.static) + len(self.dynamic)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "static": {path: route.to_dict() for path, route in self.static.items()},
            "dynamic": [route.to_dict() for route in self.dynamic],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MethodBucket":
        return cls(
            static={path: CompiledRoute.from_dict(r) for path, r in data["static"].items()},
            dynamic=[CompiledRoute.from_dict(r) for r in data["dynamic"]],
        )


@dataclass
class CompiledRoutes:
    """Result of a compile: one bucket per method plus the path index."""

    buckets: Dict[str, MethodBucket] = field(default_factory=dict)
    index: PathIndex = field(default_factory=dict)

    def bucket(self, method: str) -> MethodBucket:
        return self.buckets.get(method.upper(), MethodBucket())

    @property
    def methods(self) -> List[str]:
        return sorted(self.buckets)


def _coerce_route(route: Union[RouteDefinition, Mapping[str, Any]]) -> RouteDefinition:
    if isinstance(route, RouteDefinition):
        method, path, handler, middleware = route.method, route.path, route.handler, route.middleware
    elif isinstance(route, Mapping):
        for key in ("method", "path", "handler"):
            if route.get(key) is None:
                raise InvalidArgument(f"Invalid route definition: missing '{key}'")
        method, path, handler = route["method"], route["path"], route["handler"]
        middleware = route.get("middleware")
    else:
        raise InvalidArgument(f"Invalid route definition: {route!r}")

    if not isinstance(method, str) or not method.strip():
        raise InvalidArgument("Invalid route definition: method must be non-empty string")
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidArgument(f"Invalid route definition: path must start with '/', got {path!r}")

    return RouteDefinition(
        method=method.strip().upper(),
        path=path,
        handler=handler_ref(handler),
        middleware=merge_middleware(middleware),
    )


def sanitize_constraint(constraint: str) -> str:
    """Reject constraints that could alter the anchoring of the pattern."""
    for forbidden in FORBIDDEN_IN_CONSTRAINT:
        if forbidden in constraint:
            raise InvalidArgument(f"Invalid constraint: {constraint}")
    return constraint


def is_dynamic(path: str) -> bool:
    return TOKEN_RE.search(path) is not None


def to_regex(pattern: str) -> Tuple[str, Tuple[str, ...]]:
    """Compile a path template into an anchored regex and its variable names.

    Raises:
        InvalidArgument: On stray braces, a forbidden constraint, or a
            pattern ``re`` refuses (bad syntax, duplicate variable names).
    """
    leftover = TOKEN_RE.sub("", pattern)
    if "{" in leftover or "}" in leftover:
        raise InvalidArgument(f"Malformed parameter token in route path '{pattern}'")

    parts: List[str] = []
    variables: List[str] = []
    offset = 0

    for m in TOKEN_RE.finditer(pattern):
        parts.append(re.escape(pattern[offset:m.start()]))
        name = m.group(1)
        constraint = (m.group(2) or "").strip()
        constraint = sanitize_constraint(constraint) if constraint else DEFAULT_CONSTRAINT
        variables.append(name)
        parts.append(f"(?P<{name}>{constraint})")
        offset = m.end()

    parts.append(re.escape(pattern[offset:]))
    regex = "^" + "".join(parts) + "$"

    try:
        re.compile(regex)
    except re.error as e:
        raise InvalidArgument(f"Invalid route regex compiled from '{pattern}': {regex} ({e})") from e

    return regex, tuple(variables)


class RouteCompiler:
    """Compiles route definitions into method buckets and a path index."""

    def compile(self, routes: Iterable[Union[RouteDefinition, Mapping[str, Any]]]) -> CompiledRoutes:
        """Compile routes.

        Static routes are keyed by exact path; a later duplicate replaces an
        earlier one. Dynamic routes keep declaration order.

        Raises:
            InvalidArgument: For any invalid route, path template or constraint.
        """
        compiled = CompiledRoutes()
        index: Dict[str, set] = {}

        for raw in routes:
            route = _coerce_route(raw)
            bucket = compiled.buckets.setdefault(route.method, MethodBucket())
            middleware = tuple(route.middleware)

            if is_dynamic(route.path):
                regex, variables = to_regex(route.path)
                bucket.dynamic.append(CompiledRoute(
                    handler=route.handler,
                    middleware=middleware,
                    pattern=route.path,
                    regex=regex,
                    variables=variables,
                ))
            else:
                if "{" in route.path or "}" in route.path:
                    raise InvalidArgument(f"Malformed parameter token in route path '{route.path}'")
                bucket.static[route.path] = CompiledRoute(
                    handler=route.handler,
                    middleware=middleware,
                    pattern=route.path,
                )

            index.setdefault(path_key(route.path), set()).add(route.method)

        compiled.index = {key: sorted(methods) for key, methods in index.items()}
        return compiled

    def normalize_errors(
        self, errors: Optional[Mapping[int, Union[ErrorDefinition, Mapping[str, Any]]]]
    ) -> Dict[int, CompiledRoute]:
        """Normalize an error-handler map.

        Raises:
            InvalidArgument: For codes outside 400-599 or missing handlers.
        """
        out: Dict[int, CompiledRoute] = {}
        for code, definition in (errors or {}).items():
            try:
                code = int(code)
            except (TypeError, ValueError) as e:
                raise InvalidArgument(f"Invalid error code: {code!r}") from e
            if code < 400 or code > 599:
                raise InvalidArgument(f"Error code must be 400-599, got {code}.")

            if isinstance(definition, ErrorDefinition):
                handler, middleware = definition.handler, definition.middleware
            elif isinstance(definition, Mapping):
                handler, middleware = definition.get("handler"), definition.get("middleware")
            else:
                handler, middleware = definition, None
            if handler is None:
                raise InvalidArgument(f"Error handler for {code} is missing.")

            out[code] = CompiledRoute(
                handler=handler_ref(handler),
                middleware=tuple(merge_middleware(middleware)),
            )
        return dict(sorted(out.items()))

    def compile_to_cache_dir(
        self,
        routes: Iterable[Union[RouteDefinition, Mapping[str, Any]]],
        cache_dir: Union[str, Path],
        errors: Optional[Mapping[int, Any]] = None,
    ) -> CompiledRoutes:
        """Compile routes and write every cache artifact into ``cache_dir``.

        Raises:
            InvalidArgument: For invalid routes or non-persistable handlers.
            RouteCacheError: If the directory cannot be created or written.
        """
        from forge_routing.cache import RouteCacheStore

        compiled = self.compile(routes)
        error_map = self.normalize_errors(errors)
        RouteCacheStore(cache_dir).write_all(compiled, error_map)

        logger.info(
            "Compiled %d routes for %s into %s",
            sum(len(b) for b in compiled.buckets.values()),
            ", ".join(compiled.methods) or "no methods",
            cache_dir,
        )
        return compiled
