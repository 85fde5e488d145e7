"""HTTP kernel for Forge routing.

This module provides the Kernel class: the outermost request boundary. It
runs the global middleware pipeline around the router, converts anything
that escapes into an error response, and serves the result over ASGI.
"""

import logging
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from forge_routing.collector import RouteCollector
from forge_routing.config import Config
from forge_routing.interfaces import IRequest, MiddlewareResolver
from forge_routing.middleware import MiddlewareStack
from forge_routing.request import Request
from forge_routing.response import Response, status_phrase
from forge_routing.router import Router

logger = logging.getLogger(__name__)

ERROR_ATTRIBUTE = "error"


@dataclass(frozen=True)
class ErrorInfo:
    """Details of a failure, handed to the registered error handler."""

    status: int
    message: str
    detail: Optional[str] = None


def _error_status(exception: BaseException) -> int:
    status = getattr(exception, "status_code", 500)
    if isinstance(status, bool) or not isinstance(status, int) or status < 400 or status > 599:
        return 500
    return status


class Kernel:
    """HTTP kernel for Forge applications.

    This class handles HTTP request processing: global middleware, route
    dispatch and error recovery. ``handle`` never raises.
    """

    def __init__(
        self,
        router: Router,
        config: Optional[Config] = None,
        middleware_resolver: Optional[MiddlewareResolver] = None,
        global_middleware: Optional[Iterable[Any]] = None,
        routes_definition: Optional[Callable[[RouteCollector], Any]] = None,
    ) -> None:
        """Initialize a new HTTP kernel.

        Args:
            router: The router requests are dispatched to.
            config: Application configuration; defaults to ``Config()``.
            middleware_resolver: Resolves global middleware ids.
            global_middleware: Middleware ids run around every request.
            routes_definition: Route declarations recompiled on each request
                in development.
        """
        self._router = router
        self._config = config or Config()
        self._middleware = MiddlewareStack(global_middleware)
        self._middleware_resolver = middleware_resolver
        self._routes_definition = routes_definition
        self._server_config = HypercornConfig()
        self._running = False

    @property
    def router(self) -> Router:
        return self._router

    @property
    def config(self) -> Config:
        return self._config

    @property
    def middleware(self) -> MiddlewareStack:
        """Get the global middleware stack."""
        return self._middleware

    def set_global_middleware(self, middleware: Iterable[Any]) -> None:
        self._middleware.replace(middleware)

    def set_middleware_resolver(self, resolver: Optional[MiddlewareResolver]) -> None:
        self._middleware_resolver = resolver

    def set_routes_definition(self, definition: Optional[Callable[[RouteCollector], Any]]) -> None:
        self._routes_definition = definition

    @property
    def _detailed_errors(self) -> bool:
        return self._config.debug or self._config.is_development

    def _refresh_routes(self) -> None:
        if not self._config.is_development or self._routes_definition is None:
            return
        if self._router.store is not None:
            self._router.compile_and_cache(self._routes_definition, force=True)
        else:
            self._router.compile_in_memory(self._routes_definition)

    async def handle(self, request: IRequest, response: Optional[Response] = None) -> Response:
        """Handle an HTTP request.

        Args:
            request: The request to handle.
            response: The response sink; a new one is created when omitted.

        Returns:
            The response, or an error response built from whatever escaped.
        """
        response = response if response is not None else Response()

        async def core() -> None:
            await self._router.dispatch(request, response)

        try:
            self._refresh_routes()
            await self._middleware.process(request, response, core, self._middleware_resolver)
        except Exception as e:
            logger.exception("Unhandled error while handling %s %s", request.method, request.path)
            return await self._handle_error(e, request)
        return response

    def _error_info(self, exception: Exception) -> ErrorInfo:
        status = _error_status(exception)
        if not self._detailed_errors:
            return ErrorInfo(status, status_phrase(status))
        detail = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
        return ErrorInfo(status, f"{type(exception).__name__}: {exception}", detail)

    async def _handle_error(self, exception: Exception, request: IRequest) -> Response:
        """Create a response for an unhandled exception.

        The registered error handler for the status runs when there is one;
        if it fails too, the generic rendering is used.
        """
        info = self._error_info(exception)
        attributes = getattr(request, "attributes", None)
        if attributes is not None:
            attributes[ERROR_ATTRIBUTE] = info

        try:
            if self._router.has_error_handler(info.status):
                response = Response(status_code=info.status)
                await self._router.dispatch_error(info.status, request, response)
                return response
        except Exception:
            logger.exception("Error handler for status %d failed", info.status)

        return self._render_error(info)

    def _render_error(self, info: ErrorInfo) -> Response:
        body = info.message
        if info.detail:
            body = f"{info.message}\n\n{info.detail}"
        return Response(status_code=info.status).text(body)

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        """ASGI entry point."""
        if scope.get("type") == "lifespan":
            await self._lifespan(receive, send)
            return
        await self._handle_request(scope, receive, send)

    async def _lifespan(self, receive: Any, send: Any) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_request(self, scope: Any, receive: Any, send: Any) -> None:
        """Handle an ASGI HTTP request.

        Args:
            scope: The ASGI scope.
            receive: The ASGI receive function.
            send: The ASGI send function.
        """
        if scope.get("type", "http") != "http":
            return
        try:
            request = await self._create_request(scope, receive)
        except Exception as e:
            logger.exception("Could not read request")
            response = Response(status_code=_error_status(e)).text(status_phrase(_error_status(e)))
        else:
            response = await self.handle(request)
        await self._send_response(response, send)

    async def _create_request(self, scope: Any, receive: Any) -> Request:
        """Create a request object from an ASGI scope and receive function."""
        return await Request.from_asgi(scope, receive)

    async def _send_response(self, response: Response, send: Any) -> None:
        """Send a response using an ASGI send function."""
        await response.to_asgi(send)

    async def run(self) -> None:
        """Serve the kernel with Hypercorn on the configured host and port."""
        http = self._config.http
        self._server_config.bind = [f"{http.get('host', '0.0.0.0')}:{http.get('port', 8000)}"]
        self._server_config.use_reloader = self._config.debug
        self._running = True
        logger.info("Serving on %s", ", ".join(self._server_config.bind))
        try:
            await serve(self, self._server_config)
        finally:
            self._running = False
            logger.info("HTTP kernel stopped")

    @property
    def running(self) -> bool:
        return self._running
