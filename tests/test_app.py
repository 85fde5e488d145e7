"""Tests for the Application class."""

import logging

import pytest

from forge_routing.app import Application, configure_logging
from forge_routing.config import Config
from forge_routing.exceptions import RouterNotLoaded
from forge_routing.kernel import Kernel
from forge_routing.request import Request
from forge_routing.router import Router

import sample_app


@pytest.fixture
def app_config(monkeypatch, cache_dir):
    monkeypatch.delenv("FORGE_ENV", raising=False)
    monkeypatch.delenv("FORGE_DEBUG", raising=False)
    config = Config()
    config.set("routing__cache_dir", str(cache_dir))
    return config


def test_app_initialization(app_config):
    app = Application(app_config)

    assert app.config is app_config
    assert isinstance(app.router, Router)
    assert isinstance(app.kernel, Kernel)
    assert app.container[Application] is app
    assert app.container[Config] is app_config
    assert app.container[Router] is app.router


def test_app_create():
    app = Application.create(config=Config())
    assert isinstance(app, Application)


def test_boot_compiles_missing_cache_in_production(app_config, cache_dir):
    app = Application(app_config)
    app.routes(sample_app.define_routes)

    app.boot()

    assert (cache_dir / "__index.json").is_file()


def test_boot_requires_cache_without_routes(app_config):
    app = Application(app_config)
    with pytest.raises(RouterNotLoaded):
        app.boot()


def test_boot_keeps_existing_cache_in_production(app_config):
    app = Application(app_config)
    app.routes(sample_app.define_minimal_routes)
    app.boot()

    other = Application(app_config)
    other.routes(sample_app.define_routes)
    other.boot()

    assert other.router.match("GET", "/users/me") is None


def test_development_recompiles_on_boot(app_config):
    first = Application(app_config)
    first.routes(sample_app.define_minimal_routes)
    first.boot()

    app_config.set("env", "development")
    app = Application(app_config)
    app.routes(sample_app.define_routes)
    app.boot()

    assert app.router.match("GET", "/users/me") is not None


def test_in_memory_routes_without_cache_dir(app_config):
    app_config.set("routing__cache_dir", "")
    app = Application(app_config)
    app.routes(sample_app.define_minimal_routes)

    app.boot()

    assert app.router.store is None
    assert app.router.match("GET", "/") is not None


async def test_handle_with_registered_middleware(app_config):
    app = Application(app_config)

    @app.routes
    def routes(r):
        with r.grouped(prefix="/admin", middleware=["auth"]):
            r.get("/users", (sample_app.UserController, "index"))

    @app.middleware("auth")
    async def auth(request, response, next, params):
        request.attributes["authenticated"] = True
        await next()

    app.middleware("audit", sample_app.trail("audit"))
    app.use("audit")

    request = Request(method="GET", url="/admin/users")
    response = await app.handle(request)

    assert response.content == b"users"
    assert request.attributes["authenticated"] is True
    assert request.attributes["trail"] == ["audit", "/audit"]


async def test_handle_uses_redirects_file(app_config, tmp_path):
    redirects = tmp_path / "redirects.yaml"
    redirects.write_text("- {from: /old, to: /, status: 308}\n")
    app_config.set("routing__redirects_file", str(redirects))

    app = Application(app_config)
    app.routes(sample_app.define_minimal_routes)

    response = await app.handle(Request(method="GET", url="/old"))

    assert response.status_code == 308
    assert response.headers["Location"] == "/"


def test_handle_request_sync(app_config):
    app = Application(app_config)
    app.routes(sample_app.define_minimal_routes)

    response = app.handle_request(Request(method="GET", url="/"))

    assert response.content == b"home"


def test_configure_logging():
    configure_logging("debug")
    assert logging.getLogger("forge_routing").level == logging.DEBUG
    configure_logging("WARNING")
    assert logging.getLogger("forge_routing").level == logging.WARNING
