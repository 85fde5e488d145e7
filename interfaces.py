"""Interfaces for the Forge routing core.

This module defines the protocols the routing core consumes at its
boundaries: the request it reads, the response sink handlers write into,
and the middleware and handler callables it invokes. Keeping them as
protocols lets applications plug in their own HTTP wrappers.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Protocol, Union


class IRequest(Protocol):
    """Protocol defining the interface for HTTP requests."""

    @property
    def method(self) -> str:
        """Get the HTTP method."""
        ...

    @property
    def path(self) -> str:
        """Get the request path, without the query string."""
        ...

    @property
    def attributes(self) -> MutableMapping[str, Any]:
        """Per-request scratch space shared by middleware and handlers."""
        ...

    path_params: Dict[str, str]


class IResponse(Protocol):
    """Protocol defining the interface for the mutable response sink."""

    status_code: int
    headers: MutableMapping[str, str]
    content: bytes

    def with_status(self, status_code: int) -> "IResponse":
        """Change the status code."""
        ...

    def with_header(self, name: str, value: str) -> "IResponse":
        """Add or replace a header."""
        ...

    def text(self, content: str, status_code: Optional[int] = None) -> "IResponse":
        """Write a plain-text body."""
        ...

    def redirect(self, location: str, status_code: int = 302) -> "IResponse":
        """Turn the response into a redirect."""
        ...


Next = Callable[[], Awaitable[None]]
"""Continuation handed to middleware; awaiting it runs the rest of the chain."""

MiddlewareCallable = Callable[[Any, Any, Next, Mapping[str, str]], Awaitable[None]]
"""Middleware shape: ``(request, response, next, params) -> awaitable``."""

MiddlewareResolver = Callable[[str], MiddlewareCallable]
"""Turns a middleware id into an invocable middleware."""

HandlerCallable = Callable[[Any, Any, Dict[str, str]], Union[None, Awaitable[None]]]
"""Handler shape: ``(request, response, params)``, sync or async."""
