"""Application wiring for Forge routing.

This module provides the Application class that ties configuration, the
kink container, middleware and handler resolution, the router and the
kernel together. It is the entry point for applications and for the CLI.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

from kink import Container

from forge_routing.collector import RouteCollector
from forge_routing.config import Config
from forge_routing.exceptions import RouterNotLoaded
from forge_routing.handlers import HandlerResolver
from forge_routing.interfaces import IRequest
from forge_routing.kernel import Kernel
from forge_routing.middleware import MiddlewareRegistry
from forge_routing.response import Response
from forge_routing.router import Router

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

T = TypeVar("T")


def configure_logging(level: str = "INFO") -> None:
    """Apply a log level to the ``forge_routing`` loggers.

    A stream handler is installed on the root logger only when nothing has
    configured logging yet.
    """
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("forge_routing").setLevel(level.upper())


class Application:
    """Forge routing application.

    Example:
        app = Application(config)

        @app.routes
        def routes(r):
            r.get("/", "myapp.controllers:Home@index")

        @app.middleware("auth")
        async def auth(request, response, next, params):
            await next()

        app.boot()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        container: Optional[Container] = None,
    ) -> None:
        """Initialize a new application.

        Args:
            config: Optional configuration object. If not provided, default config is used.
            container: Optional dependency injection container. If not provided, a new one is created.
        """
        self._config = config or Config()
        self._container = container or Container()
        self._middleware = MiddlewareRegistry(self._container)
        self._handlers = HandlerResolver(self._container)
        self._routes_definition: Optional[Callable[[RouteCollector], Any]] = None
        self._booted = False

        routing = self._config.routing
        self._router = Router(
            cache_dir=routing.get("cache_dir") or None,
            middleware_resolver=self._middleware,
            handler_resolver=self._handlers,
            base_path=routing.get("base_path", ""),
            middleware_enabled=routing.get("middleware", True),
        )
        self._kernel = Kernel(
            self._router,
            config=self._config,
            middleware_resolver=self._middleware,
        )

        self._container[Application] = lambda di: self
        self._container[Config] = lambda di: self._config
        self._container[Router] = lambda di: self._router
        self._container[Kernel] = lambda di: self._kernel

    @classmethod
    def create(cls, **kwargs: Any) -> "Application":
        """Create a new application instance."""
        return cls(**kwargs)

    def routes(self, definition: Callable[[RouteCollector], Any]) -> Callable[[RouteCollector], Any]:
        """Set the route declarations. Usable as a decorator."""
        self._routes_definition = definition
        self._kernel.set_routes_definition(definition)
        return definition

    def middleware(self, id: str, middleware: Any = None) -> Any:
        """Register a middleware under an id.

        Called with only an id it returns a decorator:

            @app.middleware("auth")
            async def auth(request, response, next, params): ...
        """
        if middleware is None:
            def decorator(inner: T) -> T:
                self._middleware.register(id, inner)
                return inner
            return decorator
        self._middleware.register(id, middleware)
        return middleware

    def use(self, *ids: Any) -> None:
        """Append global middleware run around every request."""
        for id in ids:
            self._kernel.middleware.add(id)

    def boot(self) -> None:
        """Configure logging, load redirects and make the routes available."""
        if self._booted:
            return
        configure_logging(self._config.log_level)

        redirects_file = self._config.routing.get("redirects_file")
        if redirects_file:
            self._router.load_redirects(redirects_file)

        self.init_routes()
        self._booted = True
        logger.info("Application booted (env=%s)", self._config.env)

    def init_routes(self) -> None:
        """Compile routes in development; require a cache otherwise.

        Without a cache directory the routes are compiled in memory.

        Raises:
            RouterNotLoaded: Outside development when the cache has not
                been built and no route declarations are available.
        """
        store = self._router.store
        if store is None:
            if self._routes_definition is None:
                raise RouterNotLoaded("No route cache directory and no route declarations configured.")
            self._router.compile_in_memory(self._routes_definition)
            return

        if self._config.is_development and self._routes_definition is not None:
            self._router.compile_and_cache(self._routes_definition, force=True)
            return

        if not store.exists():
            if self._routes_definition is None:
                raise RouterNotLoaded(
                    f"Route cache not found in {store.directory}. Run 'forge-routes cache' first."
                )
            self._router.compile_and_cache(self._routes_definition)

    async def handle(self, request: IRequest, response: Optional[Response] = None) -> Response:
        """Handle a request through the kernel."""
        if not self._booted:
            self.boot()
        return await self._kernel.handle(request, response)

    def handle_request(self, request: IRequest) -> Response:
        """Handle a request synchronously."""
        return asyncio.run(self.handle(request))

    def run(self) -> None:
        """Boot the application and serve it with Hypercorn."""
        self.boot()
        asyncio.run(self._kernel.run())

    @property
    def config(self) -> Config:
        """Get the application configuration."""
        return self._config

    @property
    def container(self) -> Container:
        """Get the dependency injection container."""
        return self._container

    @property
    def middleware_registry(self) -> MiddlewareRegistry:
        return self._middleware

    @property
    def router(self) -> Router:
        return self._router

    @property
    def kernel(self) -> Kernel:
        """Get the HTTP kernel."""
        return self._kernel
