"""Middleware model for the Forge routing core.

Middleware are referenced by id at declaration time and resolved to
callables at dispatch time. This module owns the pieces every layer shares:

- ``MiddlewareSpec``: an id plus canonicalized string params.
- ``merge_middleware``: the one ordered, deduplicating merge used by route
  groups, route handles, the compiler, the error map and the kernel.
- ``MiddlewareRegistry``: an id -> callable resolver backed by a kink container.
- ``MiddlewareStack`` / ``build_pipeline``: chain construction around a core
  coroutine.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from kink import Container

from forge_routing.exceptions import InvalidArgument, MiddlewareResolutionError
from forge_routing.interfaces import MiddlewareCallable, MiddlewareResolver, Next

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float)

# Params key carrying the colon arguments of ids like "role:admin,editor".
ARGS_PARAM = "args"


def canonicalize_params(params: Optional[Mapping[Any, Any]]) -> Dict[str, str]:
    """Canonicalize middleware params for comparison and storage.

    Keys and values are stripped strings, booleans become ``"1"``/``"0"``,
    ``None`` becomes ``""``, nested values are dropped and keys are sorted.
    """
    if not params:
        return {}
    if not isinstance(params, Mapping):
        raise InvalidArgument(f"Middleware params must be a mapping, got {type(params).__name__}")

    out: Dict[str, str] = {}
    for key, value in params.items():
        key = str(key).strip()
        if not key:
            continue
        if isinstance(value, bool):
            value = "1" if value else "0"
        elif value is None:
            value = ""
        elif isinstance(value, _SCALARS):
            value = str(value)
        else:
            continue
        out[key] = value.strip()
    return dict(sorted(out.items()))


def canonicalize_token(token: str) -> str:
    """Canonicalize a middleware token.

    ``"auth"`` stays as is, ``"auth:"`` becomes ``"auth"`` and
    ``"role:admin, editor"`` becomes ``"role:admin,editor"``. Only the first
    colon separates the alias from its arguments.
    """
    token = token.strip()
    if ":" not in token:
        return token

    alias, _, raw = token.partition(":")
    alias = alias.strip()
    if not alias:
        return ""
    args = [part.strip() for part in raw.split(",") if part.strip()]
    return f"{alias}:{','.join(args)}" if args else alias


@dataclass(frozen=True)
class MiddlewareSpec:
    """A middleware reference: canonical id plus canonical params."""

    id: str
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(cls, id: str, params: Optional[Mapping[Any, Any]] = None) -> Optional["MiddlewareSpec"]:
        """Build a spec from raw input, or None when the id is blank."""
        token = canonicalize_token(id)
        if not token:
            return None
        return cls(token, tuple(canonicalize_params(params).items()))

    @classmethod
    def coerce(cls, item: Any) -> Optional["MiddlewareSpec"]:
        """Accept a spec, a bare string id or a ``{"id", "params"}`` mapping."""
        if isinstance(item, MiddlewareSpec):
            return item
        if isinstance(item, str):
            return cls.create(item)
        if isinstance(item, Mapping):
            return cls.create(str(item.get("id") or ""), item.get("params") or {})
        raise InvalidArgument(f"Invalid middleware entry: {item!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MiddlewareSpec":
        return cls(str(data["id"]), tuple(sorted((str(k), str(v)) for k, v in data.get("params", {}).items())))

    @property
    def alias(self) -> str:
        return self.id.partition(":")[0]

    @property
    def args(self) -> Tuple[str, ...]:
        raw = self.id.partition(":")[2]
        return tuple(raw.split(",")) if raw else ()

    @property
    def key(self) -> str:
        """Deduplication key: id plus urlencoded sorted params."""
        return f"{self.id}|{urlencode(self.params)}"

    def as_dict(self) -> Dict[str, str]:
        return dict(self.params)

    def call_params(self) -> Dict[str, str]:
        """Params handed to the middleware when it runs.

        Colon arguments are added under ``ARGS_PARAM`` as a comma separated
        string, unless the declared params already use that key.
        """
        params = self.as_dict()
        if self.args:
            params.setdefault(ARGS_PARAM, ",".join(self.args))
        return params

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "params": self.as_dict()}


def merge_middleware(*lists: Optional[Iterable[Any]]) -> List[MiddlewareSpec]:
    """Merge middleware lists in order, keeping the first of each duplicate.

    Each argument may be None, a single string id, or an iterable of entries
    accepted by ``MiddlewareSpec.coerce``. Entries with a blank id are
    skipped; entries of any other type raise ``InvalidArgument``.
    """
    out: List[MiddlewareSpec] = []
    seen = set()

    for items in lists:
        if items is None:
            continue
        if isinstance(items, (str, Mapping, MiddlewareSpec)):
            items = [items]
        for item in items:
            spec = MiddlewareSpec.coerce(item)
            if spec is None or spec.key in seen:
                continue
            seen.add(spec.key)
            out.append(spec)

    return out


class Middleware:
    """Base class for class-based middleware.

    Subclasses override ``process``. Not awaiting ``next`` short-circuits
    the rest of the chain, including the route handler.
    """

    async def process(self, request: Any, response: Any, next: Next, params: Mapping[str, str]) -> None:
        await next()

    async def __call__(self, request: Any, response: Any, next: Next, params: Mapping[str, str]) -> None:
        await self.process(request, response, next, params)


class MiddlewareRegistry:
    """Resolves middleware ids to callables through a kink container.

    Ids are looked up as registered first, then by alias, so ``"role"``
    registered once serves ``"role:admin"`` and ``"role:editor"``.
    Registered classes are instantiated lazily, once.
    """

    KEY_PREFIX = "middleware:"

    def __init__(self, container: Optional[Container] = None) -> None:
        self._container = container or Container()
        self._ids: List[str] = []

    def register(self, id: str, middleware: Any) -> None:
        """Register a middleware callable, or a class to instantiate on first use."""
        id = canonicalize_token(id)
        if not id:
            raise InvalidArgument("Middleware id cannot be empty.")
        if inspect.isclass(middleware):
            self._container[self.KEY_PREFIX + id] = lambda di, cls=middleware: cls()
        elif callable(middleware):
            self._container[self.KEY_PREFIX + id] = lambda di, mw=middleware: mw
        else:
            raise InvalidArgument(f"Middleware '{id}' must be callable.")
        if id not in self._ids:
            self._ids.append(id)

    def has(self, id: str) -> bool:
        spec = MiddlewareSpec.create(id)
        if spec is None:
            return False
        return any(self.KEY_PREFIX + key in self._container for key in (spec.id, spec.alias))

    def resolve(self, id: str) -> MiddlewareCallable:
        """Resolve an id to a middleware callable.

        Raises:
            MiddlewareResolutionError: If nothing is registered for the id or
                its alias.
        """
        spec = MiddlewareSpec.create(id)
        if spec is not None:
            for key in (spec.id, spec.alias):
                if self.KEY_PREFIX + key in self._container:
                    resolved = self._container[self.KEY_PREFIX + key]
                    if not callable(resolved):
                        raise MiddlewareResolutionError(f"Middleware '{id}' did not resolve to a callable.")
                    return resolved
        raise MiddlewareResolutionError(f"Cannot resolve middleware '{id}'.")

    __call__ = resolve

    @property
    def ids(self) -> List[str]:
        return list(self._ids)


def build_pipeline(
    middleware: Iterable[MiddlewareSpec],
    core: Callable[[], Awaitable[None]],
    request: Any,
    response: Any,
    resolver: Optional[MiddlewareResolver],
) -> Callable[[], Awaitable[None]]:
    """Build ``mw1(mw2(...(core)))`` as a zero-argument coroutine function.

    Every id is resolved before anything runs, so a configuration error never
    leaves a half-executed chain behind.

    Raises:
        MiddlewareResolutionError: If an id cannot be resolved or no resolver
            is configured while middleware is present.
    """
    specs = list(middleware)
    if specs and resolver is None:
        raise MiddlewareResolutionError(
            f"No middleware resolver configured for: {', '.join(s.id for s in specs)}"
        )

    resolved = []
    for spec in specs:
        mw = resolver(spec.id)
        if not callable(mw):
            raise MiddlewareResolutionError(f"Invalid middleware resolved for '{spec.id}'.")
        resolved.append((spec, mw))

    chain = core
    for spec, mw in reversed(resolved):
        chain = _link(mw, spec, chain, request, response)
    return chain


def _link(mw: MiddlewareCallable, spec: MiddlewareSpec, nxt: Callable[[], Awaitable[None]], request: Any, response: Any) -> Callable[[], Awaitable[None]]:
    async def step() -> None:
        logger.debug("Entering middleware %s", spec.id)
        await mw(request, response, nxt, spec.call_params())
    return step


class MiddlewareStack:
    """An ordered, deduplicated list of middleware specs.

    The kernel keeps its global middleware here; ``process`` wraps a core
    coroutine with the stack and runs it.
    """

    def __init__(self, middleware: Optional[Iterable[Any]] = None) -> None:
        """Initialize a new MiddlewareStack."""
        self.stack: List[MiddlewareSpec] = merge_middleware(middleware)

    def add(self, middleware: Any, params: Optional[Mapping[str, Any]] = None) -> None:
        """Append middleware unless an identical entry is already present."""
        entry = MiddlewareSpec.create(middleware, params) if isinstance(middleware, str) else middleware
        self.stack = merge_middleware(self.stack, [entry] if entry is not None else None)

    def insert(self, index: int, middleware: Any) -> None:
        """Insert middleware at a position, dropping a later duplicate."""
        specs = list(self.stack)
        spec = MiddlewareSpec.coerce(middleware)
        if spec is None:
            return
        specs.insert(index, spec)
        self.stack = merge_middleware(specs)

    def remove(self, middleware: Any) -> None:
        """Remove middleware matching the given entry."""
        spec = MiddlewareSpec.coerce(middleware)
        self.stack = [s for s in self.stack if spec is None or s.key != spec.key]

    def replace(self, middleware: Iterable[Any]) -> None:
        self.stack = merge_middleware(middleware)

    async def process(
        self,
        request: Any,
        response: Any,
        core: Callable[[], Awaitable[None]],
        resolver: Optional[MiddlewareResolver],
    ) -> None:
        """Run the core coroutine wrapped in every middleware of the stack."""
        pipeline = build_pipeline(self.stack, core, request, response, resolver)
        await pipeline()

    def __len__(self) -> int:
        return len(self.stack)

    def __iter__(self):
        return iter(self.stack)
