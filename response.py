"""HTTP response sink for Forge applications.

Handlers and middleware receive one mutable Response per request and write
into it; the kernel emits it once the pipeline finishes.
"""

from http import HTTPStatus
from typing import Any, Dict, Optional, Union

import orjson


class ResponseError(Exception):
    """Exception raised for errors related to response creation."""
    pass


def _check_status(status_code: Any) -> int:
    if not isinstance(status_code, int) or status_code < 100 or status_code > 599:
        raise ResponseError(f"Invalid status code: {status_code}")
    return status_code


def status_phrase(status_code: int) -> str:
    """Reason phrase for a status code, or the bare number when unknown."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return str(status_code)


class Response:
    """Represents an HTTP response under construction."""

    def __init__(
        self,
        content: Union[str, bytes] = "",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize a new response.

        Args:
            content: Response body
            status_code: HTTP status code
            headers: HTTP headers

        Raises:
            ResponseError: If the status code is invalid
        """
        self.status_code = _check_status(status_code)
        self.headers: Dict[str, str] = dict(headers or {})
        self.content = content.encode("utf-8") if isinstance(content, str) else content

    def _write(self, content: Union[str, bytes], content_type: str, status_code: Optional[int]) -> "Response":
        if status_code is not None:
            self.status_code = _check_status(status_code)
        self.headers["Content-Type"] = content_type
        self.content = content.encode("utf-8") if isinstance(content, str) else content
        return self

    def text(self, content: str, status_code: Optional[int] = None) -> "Response":
        """Write a plain-text body.

        Args:
            content: Text content
            status_code: New status code, or None to keep the current one

        Returns:
            Self for method chaining
        """
        return self._write(content, "text/plain; charset=utf-8", status_code)

    def html(self, content: str, status_code: Optional[int] = None) -> "Response":
        """Write an HTML body."""
        return self._write(content, "text/html; charset=utf-8", status_code)

    def json(self, data: Any, status_code: Optional[int] = None) -> "Response":
        """Write a JSON body.

        Raises:
            ResponseError: If data cannot be serialized to JSON
        """
        try:
            content = orjson.dumps(data)
        except TypeError as e:
            raise ResponseError(f"Failed to serialize data to JSON: {str(e)}") from e
        return self._write(content, "application/json", status_code)

    def redirect(self, location: str, status_code: int = 302) -> "Response":
        """Turn the response into a redirect."""
        self.status_code = _check_status(status_code)
        self.headers["Location"] = location
        self.content = b""
        return self

    def with_header(self, name: str, value: str) -> "Response":
        """Add or update a header in the response.

        Returns:
            Self for method chaining
        """
        self.headers[name] = value
        return self

    def with_status(self, status_code: int) -> "Response":
        """Change the status code of the response.

        Raises:
            ResponseError: If the status code is invalid
        """
        self.status_code = _check_status(status_code)
        return self

    @property
    def reason(self) -> str:
        return status_phrase(self.status_code)

    async def to_asgi(self, send: Any) -> None:
        """Emit the response through an ASGI ``send`` callable."""
        headers = [
            (name.lower().encode("latin-1"), str(value).encode("latin-1"))
            for name, value in self.headers.items()
        ]
        if b"content-length" not in {name for name, _ in headers}:
            headers.append((b"content-length", str(len(self.content)).encode("latin-1")))
        await send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": headers,
        })
        await send({"type": "http.response.body", "body": self.content})

    def __repr__(self) -> str:
        return f"<Response {self.status_code}>"
