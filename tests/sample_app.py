"""Handlers, controllers, middleware and route declarations shared by the tests.

Everything here lives at module level so the route cache can refer to it
by import path.
"""

from forge_routing.middleware import Middleware


def home(request, response, params):
    response.text("home")


async def show_user(request, response, params):
    response.json({"id": params["id"]})


def users_me(request, response, params):
    response.text("me")


def login(request, response, params):
    response.text("logged in")


def create_user(request, response, params):
    response.with_status(201).text("created")


def list_posts(request, response, params):
    response.text(f"posts of {params['user']}")


def boom(request, response, params):
    raise RuntimeError("kaboom")


def not_found(request, response, params):
    response.text(f"custom {params['code']}")


def method_not_allowed(request, response, params):
    response.text("custom 405")


def server_error(request, response, params):
    info = request.attributes["error"]
    response.text(f"oops: {info.message}")


def broken_error_handler(request, response, params):
    raise ValueError("error handler failed")


class UserController:
    """Controller resolved by class and action name."""

    def __init__(self, prefix="user"):
        self.prefix = prefix

    def show(self, request, response, params):
        response.text(f"{self.prefix} {params['id']}")

    async def index(self, request, response, params):
        response.text("users")


def trail(name):
    """Middleware that records its name on the request and continues."""
    async def middleware(request, response, next, params):
        request.attributes.setdefault("trail", []).append(name)
        await next()
        request.attributes["trail"].append(f"/{name}")
    return middleware


class Recorder(Middleware):
    """Class-based middleware recording the params it was given."""

    async def process(self, request, response, next, params):
        request.attributes.setdefault("seen_params", []).append(dict(params))
        await next()


async def deny(request, response, next, params):
    response.text("denied", 403)


def define_routes(r):
    r.get("/", home)
    r.get("/users/{id:\\d+}", show_user)
    r.get("/users/me", users_me)
    r.post("/users", create_user)
    r.post("/login", login)
    r.get("/users/{user}/posts", list_posts)

    with r.grouped(prefix="/admin", middleware=["auth"]):
        r.get("/users", (UserController, "index")).middleware("audit")
        r.get("/users/{id}", "sample_app:UserController@show")

    r.get("/boom", boom)
    r.error(404, not_found)
    r.error(405, method_not_allowed)
    r.error(500, server_error)


def define_minimal_routes(r):
    r.get("/", home)
