"""Test fixtures and configuration for forge_routing."""

import pytest

from forge_routing.config import Config
from forge_routing.middleware import MiddlewareRegistry
from forge_routing.request import Request
from forge_routing.response import Response

import sample_app


@pytest.fixture
def config():
    """Create a test configuration instance."""
    return Config()


@pytest.fixture
def cache_dir(tmp_path):
    """A fresh route cache directory."""
    return tmp_path / "cache" / "routes"


@pytest.fixture
def request_factory():
    """Create a factory function for test requests."""
    def _create_request(
        method="GET",
        url="/",
        headers=None,
        body=None,
        query_params=None,
        path_params=None
    ):
        return Request(
            method=method,
            url=url,
            headers=headers,
            body=body,
            query_params=query_params,
            path_params=path_params
        )
    return _create_request


@pytest.fixture
def response_factory():
    """Create a factory function for test responses."""
    def _create_response(
        content="",
        status_code=200,
        headers=None
    ):
        return Response(
            content=content,
            status_code=status_code,
            headers=headers
        )
    return _create_response


@pytest.fixture
def registry():
    """A middleware registry with the ids used by the sample routes."""
    registry = MiddlewareRegistry()
    registry.register("auth", sample_app.trail("auth"))
    registry.register("audit", sample_app.trail("audit"))
    registry.register("role", sample_app.Recorder)
    registry.register("deny", sample_app.deny)
    return registry


@pytest.fixture
def json_request():
    """Create a test JSON request."""
    return Request(
        method="POST",
        url="/api/data",
        headers={"Content-Type": "application/json"},
        body=b'{"name": "test", "value": 123}'
    )
