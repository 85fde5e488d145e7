"""Runtime router for Forge routing.

The router reads compiled method buckets (from the route cache directory or
an in-memory table) and dispatches one request at a time:

    redirects -> static match -> dynamic match -> fallback -> 405 / 404

A matched route runs its middleware chain around the handler. Unmatched
requests are handed to the registered error handler for the status code,
or get a plain-text response with the status phrase.
"""

import enum
import inspect
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from forge_routing.cache import RouteCacheStore
from forge_routing.collector import RouteCollector, collect
from forge_routing.compiler import CompiledRoute, CompiledRoutes, MethodBucket, PathIndex, RouteCompiler, path_key
from forge_routing.exceptions import InvalidArgument, RouterNotLoaded, RoutingError
from forge_routing.handlers import HandlerResolver, handler_ref
from forge_routing.interfaces import MiddlewareResolver
from forge_routing.middleware import build_pipeline
from forge_routing.response import status_phrase

logger = logging.getLogger(__name__)

STATE_ATTRIBUTE = "routing.state"

_SLASHES = re.compile(r"/{2,}")


class DispatchState(enum.Enum):
    """Where a request is in the router's dispatch flow."""

    NOT_DISPATCHED = "not_dispatched"
    METHOD_LOADED = "method_loaded"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    DISPATCHING = "dispatching"
    ERROR_HANDLING = "error_handling"
    DONE = "done"


@dataclass(frozen=True)
class RouteMatch:
    """Result of a successful lookup."""

    method: str
    route: CompiledRoute
    params: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RedirectRule:
    """A redirect applied before route matching.

    ``source`` is either an exact path or ``~`` followed by a regular
    expression; in the regex form ``target`` may use group references.
    """

    source: str
    target: str
    status: int = 301

    def apply(self, path: str) -> Optional[str]:
        if self.source.startswith("~"):
            pattern = re.compile(self.source[1:])
            if pattern.search(path) is None:
                return None
            return pattern.sub(self.target, path)
        return self.target if path == self.source else None


Fallback = Callable[[Any, Any, str], Any]


class Router:
    """Dispatches requests against compiled routes."""

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        middleware_resolver: Optional[MiddlewareResolver] = None,
        handler_resolver: Optional[HandlerResolver] = None,
        base_path: str = "",
        middleware_enabled: bool = True,
    ) -> None:
        self._store: Optional[RouteCacheStore] = None
        self._compiled: Optional[CompiledRoutes] = None
        self._errors: Optional[Dict[int, CompiledRoute]] = None
        self._middleware_resolver = middleware_resolver
        self._handlers = handler_resolver or HandlerResolver()
        self._base_path = self._clean_base_path(base_path)
        self._middleware_enabled = middleware_enabled
        self._redirects: List[RedirectRule] = []
        self._fallback: Optional[Fallback] = None
        self._compiler = RouteCompiler()
        if cache_dir:
            self.set_cache_dir(cache_dir)

    # Configuration

    @staticmethod
    def _clean_base_path(base_path: str) -> str:
        base_path = (base_path or "").strip().rstrip("/")
        if base_path and not base_path.startswith("/"):
            base_path = "/" + base_path
        return base_path

    def set_cache_dir(self, cache_dir: Union[str, Path]) -> None:
        self._store = RouteCacheStore(cache_dir)

    @property
    def store(self) -> Optional[RouteCacheStore]:
        return self._store

    def set_middleware_resolver(self, resolver: Optional[MiddlewareResolver]) -> None:
        self._middleware_resolver = resolver

    def set_handler_resolver(self, resolver: HandlerResolver) -> None:
        self._handlers = resolver

    def enable_middleware(self, enabled: bool = True) -> None:
        self._middleware_enabled = enabled

    def set_base_path(self, base_path: str) -> None:
        self._base_path = self._clean_base_path(base_path)

    def set_fallback(self, fallback: Optional[Fallback]) -> None:
        """Install a resolver consulted after core routes, before 404/405.

        It is called as ``fallback(request, response, path)`` and returns
        None, or a ``(handler, params)`` pair where ``handler`` is any form
        accepted for a route or a ``CompiledRoute``. It may be a coroutine.
        """
        self._fallback = fallback

    def add_redirect(self, source: str, target: str, status: int = 301) -> None:
        if not source or not target:
            raise InvalidArgument("Redirect rules need both a source and a target.")
        if status < 300 or status > 399:
            raise InvalidArgument(f"Redirect status must be 3xx, got {status}.")
        if source.startswith("~"):
            try:
                re.compile(source[1:])
            except re.error as e:
                raise InvalidArgument(f"Invalid redirect pattern '{source}': {e}") from e
        self._redirects.append(RedirectRule(source, target, status))

    def load_redirects(self, file_path: Union[str, Path]) -> int:
        """Load redirect rules from a YAML list of ``{from, to, status}``.

        A missing file is ignored. Rules lacking ``from`` or ``to`` are
        skipped. Returns the number of rules loaded.
        """
        path = Path(file_path)
        if not path.is_file():
            return 0
        with open(path, "r") as f:
            rules = yaml.safe_load(f)
        if rules is None:
            return 0
        if not isinstance(rules, list):
            raise InvalidArgument(f"Redirects file must contain a list: {path}")

        loaded = 0
        for rule in rules:
            if not isinstance(rule, Mapping) or not rule.get("from") or not rule.get("to"):
                continue
            self.add_redirect(str(rule["from"]), str(rule["to"]), int(rule.get("status", 301)))
            loaded += 1
        logger.info("Loaded %d redirect rules from %s", loaded, path)
        return loaded

    @property
    def redirects(self) -> List[RedirectRule]:
        return list(self._redirects)

    # Route sources

    def set_routes(self, compiled: CompiledRoutes, errors: Optional[Mapping[int, Any]] = None) -> None:
        """Use an in-memory route table instead of the cache directory."""
        self._compiled = compiled
        self._errors = self._compiler.normalize_errors(errors)

    def compile_and_cache(self, definition: Callable[[RouteCollector], Any], force: bool = False) -> bool:
        """Collect and compile routes into the cache directory.

        Skipped when the index artifact already exists, unless ``force``.
        Returns True when the cache was written.

        Raises:
            RouterNotLoaded: If no cache directory is configured.
        """
        if self._store is None:
            raise RouterNotLoaded("No route cache directory configured.")
        if not force and self._store.exists():
            logger.debug("Route cache present in %s, skipping compile", self._store.directory)
            return False

        collector = collect(definition)
        self._compiler.compile_to_cache_dir(collector.routes, self._store.directory, collector.errors)
        self._compiled = None
        self._errors = None
        return True

    def compile_in_memory(self, definition: Callable[[RouteCollector], Any]) -> CompiledRoutes:
        """Collect and compile routes straight into the in-memory table."""
        collector = collect(definition)
        compiled = self._compiler.compile(collector.routes)
        self.set_routes(compiled, collector.errors)
        return compiled

    def _require_source(self) -> None:
        if self._compiled is None and self._store is None:
            raise RouterNotLoaded("Router not loaded. Configure a cache directory or call set_routes().")

    def load_from_cache_dir(self, method: str = "GET") -> MethodBucket:
        """Load the bucket for one method; an absent artifact gives an empty bucket."""
        self._require_source()
        method = (method or "").strip().upper() or "GET"
        if self._compiled is not None:
            return self._compiled.bucket(method)
        bucket = self._store.read_bucket(method)
        return bucket if bucket is not None else MethodBucket()

    def _index(self) -> PathIndex:
        if self._compiled is not None:
            return self._compiled.index
        return self._store.read_index() if self._store is not None else {}

    def _error_map(self) -> Dict[int, CompiledRoute]:
        if self._errors is not None:
            return self._errors
        return self._store.read_errors() if self._store is not None else {}

    def has_error_handler(self, code: int) -> bool:
        return code in self._error_map()

    # Matching

    def normalize(self, path: str) -> str:
        """Strip the query, collapse slashes, drop the base path and trailing slash."""
        path = (path or "").split("?", 1)[0]
        path = _SLASHES.sub("/", path)
        if not path.startswith("/"):
            path = "/" + path
        if self._base_path:
            if path == self._base_path:
                path = "/"
            elif path.startswith(self._base_path + "/"):
                path = path[len(self._base_path):]
        if len(path) > 1:
            path = path.rstrip("/") or "/"
        return path

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """Look up a route without running anything."""
        method = (method or "").strip().upper() or "GET"
        found = self.load_from_cache_dir(method).match(self.normalize(path))
        if found is None:
            return None
        route, params = found
        return RouteMatch(method, route, params)

    def allowed_methods(self, path: str) -> List[str]:
        """Methods registered for the literal path, from the path index."""
        return list(self._index().get(path_key(self.normalize(path)), []))

    # Dispatch

    def _set_state(self, request: Any, state: DispatchState) -> None:
        attributes = getattr(request, "attributes", None)
        if attributes is not None:
            attributes[STATE_ATTRIBUTE] = state

    async def dispatch(self, request: Any, response: Any) -> None:
        """Route one request and run the matched handler or an error handler.

        Raises:
            RouterNotLoaded: If neither a cache directory nor a table is set.
            MiddlewareResolutionError: If a route middleware cannot be resolved.
            HandlerResolutionError: If the handler cannot be resolved.
        """
        self._set_state(request, DispatchState.NOT_DISPATCHED)
        self._require_source()
        path = self.normalize(request.path)

        if self._apply_redirects(path, response):
            self._set_state(request, DispatchState.DONE)
            return

        method = (request.method or "").strip().upper() or "GET"
        bucket = self.load_from_cache_dir(method)
        self._set_state(request, DispatchState.METHOD_LOADED)

        found = bucket.match(path)
        if found is None:
            found = await self._consult_fallback(request, response, path)

        if found is not None:
            route, params = found
            self._set_state(request, DispatchState.MATCHED)
            logger.debug("Matched %s %s -> %s", method, path, route.handler)
            await self._run(route, request, response, params, DispatchState.DISPATCHING)
            self._set_state(request, DispatchState.DONE)
            return

        self._set_state(request, DispatchState.UNMATCHED)
        allowed = self.allowed_methods(path)
        if allowed and method not in allowed:
            logger.debug("Method %s not allowed for %s (allowed: %s)", method, path, allowed)
            response.with_header("Allow", ", ".join(allowed))
            await self.dispatch_error(405, request, response)
        else:
            logger.debug("No route for %s %s", method, path)
            await self.dispatch_error(404, request, response)
        self._set_state(request, DispatchState.DONE)

    async def dispatch_error(self, code: int, request: Any, response: Any) -> None:
        """Run the registered handler for ``code`` or write a generic body."""
        self._set_state(request, DispatchState.ERROR_HANDLING)
        response.with_status(code)
        route = self._error_map().get(code)
        if route is None:
            response.text(status_phrase(code))
            return
        await self._run(route, request, response, {"code": str(code)}, DispatchState.ERROR_HANDLING)

    def _apply_redirects(self, path: str, response: Any) -> bool:
        for rule in self._redirects:
            target = rule.apply(path)
            if target is not None:
                logger.debug("Redirecting %s -> %s (%d)", path, target, rule.status)
                response.redirect(target, rule.status)
                return True
        return False

    async def _consult_fallback(
        self, request: Any, response: Any, path: str
    ) -> Optional[Tuple[CompiledRoute, Dict[str, str]]]:
        if self._fallback is None:
            return None
        result = self._fallback(request, response, path)
        if inspect.isawaitable(result):
            result = await result
        if result is None:
            return None
        if not isinstance(result, tuple) or len(result) != 2:
            raise RoutingError("Invalid route format returned by the fallback resolver.")

        target, params = result
        if target is None:
            return None
        route = target if isinstance(target, CompiledRoute) else CompiledRoute(handler=handler_ref(target))
        return route, dict(params or {})

    async def _run(
        self,
        route: CompiledRoute,
        request: Any,
        response: Any,
        params: Dict[str, str],
        state: DispatchState,
    ) -> None:
        request.path_params = dict(params)
        self._set_state(request, state)

        async def core() -> None:
            await self._handlers.invoke(route.handler, request, response, params)

        if not self._middleware_enabled or not route.middleware:
            await core()
            return

        pipeline = build_pipeline(route.middleware, core, request, response, self._middleware_resolver)
        await pipeline()
