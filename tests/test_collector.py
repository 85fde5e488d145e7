"""Tests for route collection."""

import pytest

from forge_routing.collector import ANY_METHODS, RouteCollector, collect, join_paths, normalize_path
from forge_routing.exceptions import InvalidArgument
from forge_routing.handlers import NamedHandler
from forge_routing.middleware import MiddlewareSpec

import sample_app


def ids(route):
    return [spec.id for spec in route.middleware]


def test_normalize_path():
    assert normalize_path("") == "/"
    assert normalize_path("/") == "/"
    assert normalize_path("users/") == "/users"
    assert normalize_path("/users//") == "/users"
    assert join_paths("/admin", "/") == "/admin"
    assert join_paths("", "users") == "/users"
    assert join_paths("/api", "/v1/users/") == "/api/v1/users"


def test_verb_helpers():
    r = RouteCollector()
    r.get("/a", sample_app.home)
    r.post("/a", sample_app.home)
    r.put("/a", sample_app.home)
    r.patch("/a", sample_app.home)
    r.delete("/a", sample_app.home)
    r.options("/a", sample_app.home)

    assert [route.method for route in r.routes] == ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    assert all(route.handler == NamedHandler("sample_app:home") for route in r.routes)


def test_add_validation():
    r = RouteCollector()
    with pytest.raises(InvalidArgument):
        r.add("  ", "/x", sample_app.home)
    with pytest.raises(InvalidArgument):
        r.add("GET", "/x", None)
    r.add(" get ", "x/", sample_app.home)
    assert r.routes[0].method == "GET"
    assert r.routes[0].path == "/x"


def test_match_and_any():
    r = RouteCollector()
    handle = r.match([" get", "", "post "], "/form", sample_app.home)
    assert [route.method for route in r.routes] == ["GET", "POST"]
    assert handle.definition.method == "POST"

    with pytest.raises(InvalidArgument):
        r.match(["", "  "], "/nothing", sample_app.home)

    r = RouteCollector()
    r.any("/all", sample_app.home)
    assert tuple(route.method for route in r.routes) == ANY_METHODS


def test_nested_groups_join_prefix_and_middleware():
    r = RouteCollector()

    def outer(r):
        r.get("/dashboard", sample_app.home)

        def inner(r):
            r.get("/users", sample_app.home)

        r.group({"prefix": "/v1", "middleware": ["audit", "auth"]}, inner)

    r.group({"prefix": "admin/", "middleware": "auth"}, outer)
    r.get("/after", sample_app.home)

    dashboard, users, after = r.routes
    assert dashboard.path == "/admin/dashboard"
    assert ids(dashboard) == ["auth"]
    assert users.path == "/admin/v1/users"
    assert ids(users) == ["auth", "audit"]
    assert after.path == "/after"
    assert ids(after) == []


def test_group_frame_popped_on_failure():
    r = RouteCollector()

    def failing(r):
        r.get("/inside", sample_app.home)
        raise RuntimeError("declaration failed")

    with pytest.raises(RuntimeError):
        r.group({"prefix": "/broken", "middleware": ["auth"]}, failing)

    assert r.depth == 0
    r.get("/outside", sample_app.home)
    assert r.routes[-1].path == "/outside"
    assert ids(r.routes[-1]) == []


def test_grouped_context_manager_and_empty_prefix():
    r = RouteCollector()
    with r.grouped(prefix="/api"):
        with r.grouped(middleware=["auth"]):
            r.get("/", sample_app.home)
            assert r.depth == 2
    assert r.depth == 0

    route = r.routes[0]
    assert route.path == "/api"
    assert ids(route) == ["auth"]


def test_group_middleware_then_route_middleware():
    r = RouteCollector()
    with r.grouped(prefix="/admin", middleware=["auth"]):
        r.get("/users", sample_app.home).middleware(["audit"])

    route = r.routes[0]
    assert route.path == "/admin/users"
    assert ids(route) == ["auth", "audit"]


def test_colon_tokens_with_whitespace_collapse():
    r = RouteCollector()
    r.get("/panel", sample_app.home).middleware("role:admin,editor").middleware("role:admin, editor")

    assert r.routes[0].middleware == [MiddlewareSpec("role:admin,editor")]


def test_route_middleware_forms():
    r = RouteCollector()
    handle = r.get("/x", sample_app.home)
    handle.middleware("auth", {"redirect": "/login", "strict": True})
    handle.middleware([{"id": "auth", "params": {"strict": "1", "redirect": "/login"}}, "limiter"])
    handle.middleware(MiddlewareSpec("audit"))
    handle.middleware("")

    route = r.routes[0]
    assert [(s.id, s.as_dict()) for s in route.middleware] == [
        ("auth", {"redirect": "/login", "strict": "1"}),
        ("limiter", {}),
        ("audit", {}),
    ]

    with pytest.raises(InvalidArgument):
        handle.middleware(["auth"], {"x": "1"})


def test_error_handlers():
    r = RouteCollector()
    with r.grouped(middleware=["auth"]):
        r.error(404, sample_app.not_found)
    r.error(500, "sample_app:server_error")

    errors = r.errors
    assert errors[404].handler == NamedHandler("sample_app:not_found")
    assert [s.id for s in errors[404].middleware] == ["auth"]
    assert errors[500].middleware == []

    for code in (399, 600, True, "404"):
        with pytest.raises(InvalidArgument):
            r.error(code, sample_app.not_found)


def test_collect_and_clear():
    collector = collect(sample_app.define_routes)
    assert len(collector.routes) == 9
    assert sorted(collector.errors) == [404, 405, 500]

    collector.clear()
    assert collector.routes == []
    assert collector.errors == {}
