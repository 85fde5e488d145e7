"""``forge-routes`` command line tool.

Builds, clears and lists the route cache for an application:

    forge-routes cache --routes myapp.routes:define [--cache DIR] [--force]
    forge-routes clear [--cache DIR]
    forge-routes list --routes myapp.routes:define

The cache directory defaults to ``routing.cache_dir`` from the config file
given with ``--config`` (or the environment).
"""

import argparse
import importlib
import logging
import sys
from typing import Any, Callable, List, Optional

from forge_routing.app import configure_logging
from forge_routing.cache import RouteCacheStore
from forge_routing.collector import RouteCollector, collect
from forge_routing.config import Config
from forge_routing.exceptions import RoutingError
from forge_routing.router import Router

logger = logging.getLogger(__name__)


def load_definition(target: str) -> Callable[[RouteCollector], Any]:
    """Import a ``module:callable`` route definition.

    Raises:
        RoutingError: If the target cannot be imported or is not callable.
    """
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise RoutingError(f"Expected 'module:callable', got '{target}'")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise RoutingError(f"Cannot import routes module '{module_name}': {e}") from e
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            raise RoutingError(f"Route definition not found: {target}")
    if not callable(obj):
        raise RoutingError(f"Route definition is not callable: {target}")
    return obj


def _load_config(path: Optional[str]) -> Config:
    config = Config()
    if path:
        config.load_file(path)
    return config


def _cache_dir(args: argparse.Namespace, config: Config) -> str:
    cache_dir = args.cache or config.routing.get("cache_dir")
    if not cache_dir:
        raise RoutingError("No cache directory configured.")
    return cache_dir


def cmd_cache(args: argparse.Namespace, config: Config) -> int:
    cache_dir = _cache_dir(args, config)
    router = Router(cache_dir=cache_dir)
    written = router.compile_and_cache(load_definition(args.routes), force=args.force)
    if written:
        print(f"Routes cached in {cache_dir}")
    else:
        print(f"Route cache already present in {cache_dir} (use --force to rebuild)")
    return 0


def cmd_clear(args: argparse.Namespace, config: Config) -> int:
    cache_dir = _cache_dir(args, config)
    removed = RouteCacheStore(cache_dir).clear()
    print(f"Removed {removed} route cache file(s) from {cache_dir}")
    return 0


def cmd_list(args: argparse.Namespace, config: Config) -> int:
    collector = collect(load_definition(args.routes))
    rows = [
        (route.method, route.path, str(route.handler), ", ".join(spec.id for spec in route.middleware))
        for route in collector.routes
    ]
    rows += [
        (str(code), "(error)", str(error.handler), ", ".join(spec.id for spec in error.middleware))
        for code, error in sorted(collector.errors.items())
    ]
    if not rows:
        print("No routes registered.")
        return 0

    widths = [max(len(header), *(len(row[i]) for row in rows)) for i, header in enumerate(("METHOD", "PATH", "HANDLER"))]
    fmt = f"{{:<{widths[0]}}}  {{:<{widths[1]}}}  {{:<{widths[2]}}}  {{}}"
    print(fmt.format("METHOD", "PATH", "HANDLER", "MIDDLEWARE"))
    for row in rows:
        print(fmt.format(*row).rstrip())
    return 0


COMMANDS = {
    "cache": cmd_cache,
    "clear": cmd_clear,
    "list": cmd_list,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forge-routes", description="Manage the Forge route cache.")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command")

    cache_parser = subparsers.add_parser("cache", help="Compile routes into the cache directory")
    cache_parser.add_argument("--routes", required=True, help="Route definition (module:callable)")
    cache_parser.add_argument("--cache", default=None, help="Cache directory")
    cache_parser.add_argument("--force", action="store_true", help="Rebuild even if a cache exists")

    clear_parser = subparsers.add_parser("clear", help="Remove cached route artifacts")
    clear_parser.add_argument("--cache", default=None, help="Cache directory")

    list_parser = subparsers.add_parser("list", help="Print the declared routes")
    list_parser.add_argument("--routes", required=True, help="Route definition (module:callable)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the ``forge-routes`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = _load_config(args.config)
        configure_logging("DEBUG" if args.verbose else config.log_level)
        return COMMANDS[args.command](args, config)
    except (RoutingError, OSError, ValueError, TypeError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
