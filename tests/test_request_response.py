"""Tests for the Request and Response classes."""

import pytest

import orjson

from forge_routing.request import Request, RequestParsingError
from forge_routing.response import Response, ResponseError, status_phrase


def test_request_initialization():
    """Test that the Request can be initialized correctly."""
    request = Request(
        method="get",
        url="/test?page=2",
        headers={"Content-Type": "application/json"},
        query_params={"q": "search"},
        path_params={"id": "123"},
        body=b'{"key": "value"}'
    )

    assert request.method == "GET"
    assert request.url == "/test?page=2"
    assert request.path == "/test"
    assert request.headers["content-type"] == "application/json"
    assert request.query_params["q"] == "search"
    assert request.query_params["page"] == "2"
    assert request.path_params["id"] == "123"
    assert request.body == b'{"key": "value"}'


def test_request_keeps_leading_double_slash_in_path():
    """Test that a target starting with // is not read as a host."""
    request = Request(method="GET", url="//admin/users?page=2")

    assert request.path == "//admin/users"
    assert request.query_params["page"] == "2"


def test_request_attributes():
    """Test that request attributes can be set and retrieved."""
    request = Request(method="GET", url="/test")

    assert len(request.attributes) == 0

    request.set_attribute("user_id", 123)
    request.attributes["authenticated"] = True

    assert request.get_attribute("user_id") == 123
    assert request.get_attribute("missing", "x") == "x"
    assert request.attributes["authenticated"] is True


def test_request_content_type():
    request = Request(
        method="POST",
        url="/api",
        headers={"Content-Type": "application/json; charset=utf-8"}
    )

    assert request.content_type == "application/json"


def test_request_json(json_request):
    body = json_request.json()
    assert body == {"name": "test", "value": 123}


def test_request_json_invalid():
    request = Request(method="POST", url="/api", body=b"{not json")

    with pytest.raises(RequestParsingError) as exc:
        request.json()
    assert exc.value.status_code == 400


async def test_request_from_asgi():
    messages = [
        {"type": "http.request", "body": b"hel", "more_body": True},
        {"type": "http.request", "body": b"lo", "more_body": False},
    ]

    async def receive():
        return messages.pop(0)

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/items",
        "query_string": b"a=1",
        "headers": [(b"x-token", b"abc")],
    }
    request = await Request.from_asgi(scope, receive)

    assert request.method == "POST"
    assert request.path == "/items"
    assert request.get_query("a") == "1"
    assert request.get_header("X-Token") == "abc"
    assert request.body == b"hello"


def test_response_initialization(response_factory):
    response = response_factory(
        content=b'{"result": "success"}',
        headers={"Content-Type": "application/json"}
    )

    assert response.content == b'{"result": "success"}'
    assert response.status_code == 200
    assert response.headers["Content-Type"] == "application/json"


def test_response_writers():
    response = Response().text("Hello, world!")
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
    assert response.content == b"Hello, world!"

    response = Response().json({"name": "test"}, 201)
    assert response.status_code == 201
    assert response.headers["Content-Type"] == "application/json"
    assert orjson.loads(response.content) == {"name": "test"}

    response = Response().html("<h1>Hello</h1>")
    assert response.headers["Content-Type"] == "text/html; charset=utf-8"


def test_response_redirect():
    response = Response("body").redirect("/new-location")

    assert response.status_code == 302
    assert response.headers["Location"] == "/new-location"
    assert response.content == b""

    assert Response().redirect("/permanent", 301).status_code == 301


def test_response_invalid_status():
    with pytest.raises(ResponseError):
        Response(status_code=42)
    with pytest.raises(ResponseError):
        Response().with_status(600)


def test_status_phrase():
    assert status_phrase(404) == "Not Found"
    assert Response(status_code=405).reason == "Method Not Allowed"
    assert status_phrase(499) == "499"


async def test_response_to_asgi():
    sent = []

    async def send(message):
        sent.append(message)

    await Response().with_header("X-Test", "1").text("ok").to_asgi(send)

    start, body = sent
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    assert (b"x-test", b"1") in start["headers"]
    assert (b"content-length", b"2") in start["headers"]
    assert body == {"type": "http.response.body", "body": b"ok"}
