"""Route handler references and their resolution.

A handler is stored as one of two shapes:

- ``NamedHandler``: an importable ``"package.module:Name"`` target with an
  optional controller ``action``. This is the only shape the route cache
  can persist.
- ``InlineCallable``: a callable with no importable name (a lambda, a
  closure, a bound method). Fine for in-memory route tables only.

``HandlerResolver`` turns either shape into a callable once per dispatch
and invokes it as ``handler(request, response, params)``.
"""

import importlib
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from kink import Container

from forge_routing.exceptions import HandlerResolutionError, InvalidArgument
from forge_routing.interfaces import HandlerCallable


@dataclass(frozen=True)
class NamedHandler:
    """A handler referenced by import path."""

    target: str
    action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target, "action": self.action}

    def __str__(self) -> str:
        return f"{self.target}@{self.action}" if self.action else self.target


@dataclass(frozen=True)
class InlineCallable:
    """A handler held by reference; cannot be written to the route cache."""

    func: Callable[..., Any]

    def __str__(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


HandlerRef = Union[NamedHandler, InlineCallable]


def _qualified_name(obj: Any) -> str:
    return f"{obj.__module__}:{obj.__qualname__}"


def _is_importable(obj: Any) -> bool:
    qualname = getattr(obj, "__qualname__", "")
    module = getattr(obj, "__module__", None)
    return bool(module) and bool(qualname) and "<" not in qualname


def _split_target(value: str) -> NamedHandler:
    value = value.strip()
    target, _, action = value.partition("@")
    target, action = target.strip(), action.strip() or None
    if ":" not in target:
        module, _, name = target.rpartition(".")
        if not module or not name:
            raise InvalidArgument(f"Invalid handler reference '{value}'. Expected 'package.module:Name'.")
        target = f"{module}:{name}"
    module, _, name = target.partition(":")
    if not module.strip() or not name.strip():
        raise InvalidArgument(f"Invalid handler reference '{value}'. Expected 'package.module:Name'.")
    return NamedHandler(target, action)


def handler_ref(value: Any) -> HandlerRef:
    """Normalize any accepted handler form into a HandlerRef.

    Accepted forms:
        - ``NamedHandler`` / ``InlineCallable`` (returned unchanged)
        - ``"package.module:Controller@action"`` or ``"package.module:function"``
        - ``(ControllerClass, "action")`` or ``("package.module:Controller", "action")``
        - a module-level function or class, or a method looked up on a class
        - any other callable, kept inline

    Raises:
        InvalidArgument: If the value matches none of the forms.
    """
    if isinstance(value, (NamedHandler, InlineCallable)):
        return value

    if isinstance(value, str):
        return _split_target(value)

    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise InvalidArgument("Invalid route handler. Expected (ControllerClass, action).")
        owner, action = value
        if not isinstance(action, str) or not action.strip():
            raise InvalidArgument("Invalid route handler action.")
        if inspect.isclass(owner) and _is_importable(owner):
            return NamedHandler(_qualified_name(owner), action.strip())
        if isinstance(owner, str) and owner.strip():
            return NamedHandler(_split_target(owner).target, action.strip())
        raise InvalidArgument(f"Invalid route handler controller: {owner!r}")

    if callable(value):
        if inspect.ismethod(value) or not _is_importable(value):
            return InlineCallable(value)
        owner, _, name = value.__qualname__.rpartition(".")
        if owner and not inspect.isclass(value):
            return NamedHandler(f"{value.__module__}:{owner}", name)
        return NamedHandler(_qualified_name(value))

    raise InvalidArgument(f"Invalid route handler: {value!r}")


def handler_to_data(ref: HandlerRef) -> Dict[str, Any]:
    """Serialize a handler for the route cache.

    Raises:
        InvalidArgument: For inline callables.
    """
    if isinstance(ref, InlineCallable):
        raise InvalidArgument(
            f"Handler '{ref}' is not importable by name and cannot be written to the route cache."
        )
    return ref.to_dict()


def handler_from_data(data: Mapping[str, Any]) -> NamedHandler:
    return NamedHandler(str(data["target"]), data.get("action") or None)


class HandlerResolver:
    """Imports and instantiates route handlers.

    Controller classes are taken from the kink container when registered
    there, otherwise built with no arguments.
    """

    def __init__(self, container: Optional[Container] = None) -> None:
        self._container = container or Container()

    @property
    def container(self) -> Container:
        return self._container

    def _import(self, target: str) -> Any:
        module_name, _, attr_path = target.partition(":")
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError as e:
            raise HandlerResolutionError(f"Handler module not found: {module_name}") from e
        for attr in attr_path.split("."):
            try:
                obj = getattr(obj, attr)
            except AttributeError as e:
                raise HandlerResolutionError(f"Handler not found: {target}") from e
        return obj

    def _instance(self, cls: type) -> Any:
        if cls in self._container:
            return self._container[cls]
        return cls()

    def resolve(self, ref: HandlerRef) -> HandlerCallable:
        """Turn a handler reference into a callable.

        Raises:
            HandlerResolutionError: If the target cannot be imported, the
                action does not exist, or the result is not callable.
        """
        if isinstance(ref, InlineCallable):
            return ref.func

        obj = self._import(ref.target)
        if ref.action:
            if not inspect.isclass(obj):
                raise HandlerResolutionError(f"Controller {ref.target} is not a class.")
            method = getattr(self._instance(obj), ref.action, None)
            if method is None or not callable(method):
                raise HandlerResolutionError(f"Method not found: {ref.target}.{ref.action}")
            return method

        if inspect.isclass(obj):
            obj = self._instance(obj)
        if not callable(obj):
            raise HandlerResolutionError(f"Handler {ref.target} is not callable.")
        return obj

    async def invoke(self, ref: HandlerRef, request: Any, response: Any, params: Dict[str, str]) -> None:
        """Resolve and call a handler, awaiting it when it is a coroutine."""
        handler = self.resolve(ref)
        result = handler(request, response, params)
        if inspect.isawaitable(result):
            await result
