"""Forge Routing - request routing for the Forge framework.

This package compiles declarative route definitions into a per-method
dispatch table persisted as cache artifacts, and dispatches requests
against it through an ordered middleware chain.
"""

# Define version
__version__ = "0.1.0"

__all__ = [
    "Application",
    "CompiledRoutes",
    "Config",
    "DispatchState",
    "ErrorInfo",
    "Kernel",
    "Middleware",
    "MiddlewareRegistry",
    "MiddlewareSpec",
    "Request",
    "Response",
    "RouteCacheStore",
    "RouteCollector",
    "RouteCompiler",
    "Router",
    "RoutingError",
]

from forge_routing.exceptions import RoutingError
from forge_routing.config import Config
from forge_routing.request import Request
from forge_routing.response import Response
from forge_routing.middleware import Middleware, MiddlewareRegistry, MiddlewareSpec
from forge_routing.collector import RouteCollector
from forge_routing.compiler import CompiledRoutes, RouteCompiler
from forge_routing.cache import RouteCacheStore
from forge_routing.router import DispatchState, Router
from forge_routing.kernel import ErrorInfo, Kernel
from forge_routing.app import Application
