"""Tests for the middleware model, registry and pipeline."""

import pytest

from forge_routing.exceptions import InvalidArgument, MiddlewareResolutionError
from forge_routing.middleware import (
    ARGS_PARAM,
    Middleware,
    MiddlewareRegistry,
    MiddlewareSpec,
    MiddlewareStack,
    build_pipeline,
    canonicalize_params,
    canonicalize_token,
    merge_middleware,
)
from forge_routing.request import Request
from forge_routing.response import Response

import sample_app


class MockTestMiddleware(Middleware):
    """Test middleware that records its execution."""

    def __init__(self, name, events):
        self.name = name
        self.events = events

    async def process(self, request, response, next, params):
        self.events.append(f"{self.name}_before")
        request.attributes[self.name] = True
        await next()
        self.events.append(f"{self.name}_after")
        response.headers[f"X-{self.name}"] = "Processed"


class ErrorMiddleware(Middleware):
    """Middleware that raises an exception."""

    async def process(self, request, response, next, params):
        raise ValueError("Test error")


def test_canonicalize_params():
    params = canonicalize_params({" b ": True, "a": None, "c": 3, "d": [1, 2], "e": " x ", "": "skip"})
    assert params == {"a": "", "b": "1", "c": "3", "e": "x"}
    assert list(params) == ["a", "b", "c", "e"]
    assert canonicalize_params({"flag": False}) == {"flag": "0"}


def test_canonicalize_token():
    assert canonicalize_token(" auth ") == "auth"
    assert canonicalize_token("auth:") == "auth"
    assert canonicalize_token("role:admin, editor") == "role:admin,editor"
    assert canonicalize_token(":admin") == ""


def test_spec_alias_and_args():
    spec = MiddlewareSpec.create("role: admin ,editor")
    assert spec.id == "role:admin,editor"
    assert spec.alias == "role"
    assert spec.args == ("admin", "editor")
    assert MiddlewareSpec.create("   ") is None


def test_spec_call_params_carry_colon_args():
    assert MiddlewareSpec.create("auth", {"a": 1}).call_params() == {"a": "1"}
    assert MiddlewareSpec.create("role:admin, editor").call_params() == {ARGS_PARAM: "admin,editor"}
    spec = MiddlewareSpec.create("role:admin", {ARGS_PARAM: "mine"})
    assert spec.call_params() == {ARGS_PARAM: "mine"}
    assert spec.as_dict() == {ARGS_PARAM: "mine"}


def test_spec_coerce():
    assert MiddlewareSpec.coerce("auth") == MiddlewareSpec("auth")
    spec = MiddlewareSpec.coerce({"id": "auth", "params": {"redirect": "/login"}})
    assert spec.as_dict() == {"redirect": "/login"}
    assert MiddlewareSpec.coerce({"params": {"a": 1}}) is None
    with pytest.raises(InvalidArgument):
        MiddlewareSpec.coerce(42)


def test_merge_keeps_first_seen_order_and_dedups():
    merged = merge_middleware(
        ["auth", "role:admin,editor"],
        "role:admin, editor",
        [{"id": "auth", "params": {}}, {"id": "auth", "params": {"x": "1"}}],
        None,
        ["", "audit"],
    )
    assert [(s.id, s.as_dict()) for s in merged] == [
        ("auth", {}),
        ("role:admin,editor", {}),
        ("auth", {"x": "1"}),
        ("audit", {}),
    ]


def test_merge_params_order_does_not_matter():
    merged = merge_middleware(
        [{"id": "limit", "params": {"a": 1, "b": 2}}],
        [{"id": "limit", "params": {"b": "2", "a": "1"}}],
    )
    assert len(merged) == 1


def test_registry_resolves_by_id_then_alias():
    registry = MiddlewareRegistry()
    exact = sample_app.trail("exact")
    generic = sample_app.trail("generic")
    registry.register("role:admin", exact)
    registry.register("role", generic)

    assert registry.resolve("role:admin") is exact
    assert registry.resolve("role:editor") is generic
    assert registry("role") is generic
    assert registry.has("role:anything")
    assert not registry.has("auth")
    assert registry.ids == ["role:admin", "role"]


def test_registry_instantiates_classes_once():
    registry = MiddlewareRegistry()
    registry.register("rec", sample_app.Recorder)

    first = registry.resolve("rec")
    assert isinstance(first, sample_app.Recorder)
    assert registry.resolve("rec") is first


def test_registry_errors():
    registry = MiddlewareRegistry()
    with pytest.raises(MiddlewareResolutionError):
        registry.resolve("missing")
    with pytest.raises(InvalidArgument):
        registry.register("", sample_app.deny)
    with pytest.raises(InvalidArgument):
        registry.register("bad", "not callable")


async def test_pipeline_order_and_params(registry):
    request = Request(method="GET", url="/")
    response = Response()
    specs = merge_middleware(["auth", {"id": "role", "params": {"roles": "admin"}}, "audit"])

    async def core():
        request.attributes["trail"].append("handler")

    pipeline = build_pipeline(specs, core, request, response, registry)
    await pipeline()

    assert request.attributes["trail"] == ["auth", "audit", "handler", "/audit", "/auth"]
    assert request.attributes["seen_params"] == [{"roles": "admin"}]


async def test_pipeline_short_circuit(registry):
    request = Request(method="GET", url="/")
    response = Response()
    called = []

    async def core():
        called.append(True)

    await build_pipeline(merge_middleware(["auth", "deny", "audit"]), core, request, response, registry)()

    assert called == []
    assert response.status_code == 403
    assert request.attributes["trail"] == ["auth", "/auth"]


async def test_pipeline_resolves_everything_before_running(registry):
    request = Request(method="GET", url="/")

    async def core():
        pass

    with pytest.raises(MiddlewareResolutionError):
        build_pipeline(merge_middleware(["auth", "missing"]), core, request, Response(), registry)
    assert "trail" not in request.attributes

    with pytest.raises(MiddlewareResolutionError):
        build_pipeline(merge_middleware(["auth"]), core, request, Response(), None)


async def test_middleware_stack_execution():
    """Test that middleware stack executes middleware in the correct order."""
    events = []
    registry = MiddlewareRegistry()
    registry.register("first", MockTestMiddleware("first", events))
    registry.register("second", MockTestMiddleware("second", events))

    stack = MiddlewareStack()
    stack.add("first")
    stack.add("second")
    stack.add("first")
    assert len(stack) == 2

    request = Request(method="GET", url="/test")
    response = Response()

    async def handler():
        events.append("handler")
        assert request.attributes.get("first") is True
        assert request.attributes.get("second") is True

    await stack.process(request, response, handler, registry)

    assert events == ["first_before", "second_before", "handler", "second_after", "first_after"]
    assert response.headers["X-first"] == "Processed"
    assert response.headers["X-second"] == "Processed"


async def test_middleware_stack_error():
    registry = MiddlewareRegistry()
    registry.register("error", ErrorMiddleware)
    stack = MiddlewareStack(["error"])

    async def handler():
        pass

    with pytest.raises(ValueError, match="Test error"):
        await stack.process(Request(method="GET", url="/"), Response(), handler, registry)


def test_middleware_stack_editing():
    stack = MiddlewareStack(["a", "b"])
    stack.insert(0, "c")
    stack.insert(1, "b")
    assert [s.id for s in stack] == ["c", "b", "a"]

    stack.remove("b")
    assert [s.id for s in stack] == ["c", "a"]

    stack.replace(["x"])
    assert [s.id for s in stack] == ["x"]
