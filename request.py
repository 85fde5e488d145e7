"""HTTP request handling for Forge routing.

This module provides the Request class the router reads from. It is a thin
wrapper: method, path, headers, query parameters, body, the path parameters
filled in by the router, and an attribute bag for middleware.
"""

from typing import Any, Dict, Iterable, Optional, Tuple, Union
from urllib.parse import parse_qsl

import orjson
from multidict import CIMultiDict, MultiDict


class RequestParsingError(Exception):
    """Exception raised when a request body cannot be parsed."""

    status_code = 400


class Request:
    """HTTP request for Forge applications."""

    def __init__(
        self,
        method: str,
        url: str,
        headers: Optional[Union[Dict[str, str], Iterable[Tuple[str, str]]]] = None,
        body: Optional[bytes] = None,
        query_params: Optional[Dict[str, str]] = None,
        path_params: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialize a new HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.).
            url: Request target. The path is kept as sent (repeated slashes
                included); a query string, if present, is split off into
                ``query_params``.
            headers: HTTP headers.
            body: Request body.
            query_params: Query parameters, merged over those in ``url``.
            path_params: Path parameters from URL.
        """
        self.method = method.strip().upper()
        self.url = url
        path, _, query = url.partition("?")
        self._path = path.partition("#")[0] or "/"
        self.headers: CIMultiDict = CIMultiDict(headers or {})
        self.body = body or b""
        self.query_params: MultiDict = MultiDict(parse_qsl(query.partition("#")[0], keep_blank_values=True))
        if query_params:
            self.query_params.update(query_params)
        self.path_params: Dict[str, str] = dict(path_params or {})
        self.attributes: Dict[str, Any] = {}

    @classmethod
    async def from_asgi(cls, scope: Dict[str, Any], receive: Any) -> "Request":
        """Build a request from an ASGI HTTP scope, reading the full body."""
        body = b""
        more_body = True
        while more_body:
            message = await receive()
            body += message.get("body", b"")
            more_body = message.get("more_body", False)

        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in scope.get("headers", [])
        ]
        url = scope.get("path", "/")
        query_string = scope.get("query_string", b"")
        if query_string:
            url = f"{url}?{query_string.decode('latin-1')}"

        return cls(method=scope.get("method", "GET"), url=url, headers=headers, body=body)

    @property
    def path(self) -> str:
        """Get request path."""
        return self._path

    @property
    def content_type(self) -> str:
        """Get the content type of the request."""
        content_type = self.headers.get("Content-Type", "")
        if ";" in content_type:
            return content_type.split(";")[0].strip()
        return content_type

    def json(self) -> Any:
        """Parse the request body as JSON.

        Raises:
            RequestParsingError: If the body is not valid JSON
        """
        if not self.body:
            return {}

        try:
            return orjson.loads(self.body)
        except orjson.JSONDecodeError as e:
            raise RequestParsingError(f"Failed to parse JSON body: {str(e)}") from e

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a header value."""
        return self.headers.get(name, default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a query parameter value."""
        return self.query_params.get(name, default)

    def get_path_param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a path parameter value."""
        return self.path_params.get(name, default)

    def get_attribute(self, name: str, default: Optional[Any] = None) -> Optional[Any]:
        """Get an attribute value."""
        return self.attributes.get(name, default)

    def set_attribute(self, name: str, value: Any) -> None:
        """Set an attribute value."""
        self.attributes[name] = value

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"
