"""Persisted route cache for Forge routing.

Layout under one directory:

    GET.json       {"format": 1, "generated_at": ..., "data": {"static": ..., "dynamic": [...]}}
    POST.json      ...
    __index.json   {"data": {"p:<sha1(path)>": ["GET", "POST"]}}
    __errors.json  {"data": {"404": {"handler": ..., "middleware": [...]}}}

Artifacts are plain JSON written by the compiler and only read at request
time. Every write goes to a temporary file in the same directory and is
renamed into place, so a reader sees either the old or the new artifact.
Parsed artifacts are memoized per process by (path, mtime, size) and the
memo entry is dropped after each write.
"""

import contextlib
import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import orjson

from forge_routing.compiler import CompiledRoute, CompiledRoutes, MethodBucket, PathIndex
from forge_routing.exceptions import InvalidArgument, RouteCacheError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
INDEX_NAME = "__index"
ERRORS_NAME = "__errors"
SUFFIX = ".json"

_METHOD_RE = re.compile(r"^[A-Z][A-Z0-9_-]*$")

_memo: Dict[str, Tuple[Tuple[int, int], Any]] = {}
_memo_lock = threading.Lock()


def invalidate(path: Union[str, Path]) -> None:
    """Drop the in-process memo entry for an artifact."""
    with _memo_lock:
        _memo.pop(str(path), None)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def dumps(data: Any, generated_at: str) -> bytes:
    """Serialize an artifact envelope deterministically."""
    envelope = {"format": FORMAT_VERSION, "generated_at": generated_at, "data": data}
    return orjson.dumps(envelope, option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2) + b"\n"


class RouteCacheStore:
    """Reads and writes the route cache artifacts in one directory."""

    def __init__(self, cache_dir: Union[str, Path], clock: Callable[[], str] = _utcnow) -> None:
        cache_dir = str(cache_dir).rstrip("/\\")
        if not cache_dir:
            raise InvalidArgument("Cache dir cannot be empty.")
        self._dir = Path(cache_dir)
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, name: str) -> Path:
        return self._dir / f"{name}{SUFFIX}"

    def method_path(self, method: str) -> Path:
        method = (method or "").strip().upper()
        if not _METHOD_RE.match(method):
            raise InvalidArgument(f"Invalid HTTP method for route cache: {method!r}")
        return self.path_for(method)

    # Writing

    def ensure_dir(self) -> None:
        """Create the cache directory and check it is writable.

        Raises:
            RouteCacheError: If it cannot be created or is not writable.
        """
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RouteCacheError(f"Failed to create cache dir: {self._dir}") from e
        if not self._dir.is_dir():
            raise RouteCacheError(f"Cache path is not a directory: {self._dir}")
        if not os.access(self._dir, os.W_OK):
            raise RouteCacheError(f"Cache dir not writable: {self._dir}")

    def _write(self, path: Path, data: Any) -> None:
        payload = dumps(data, self._clock())
        try:
            fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=self._dir)
        except OSError as e:
            raise RouteCacheError(f"Cannot write route cache in {self._dir}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise RouteCacheError(f"Cannot write route cache file {path}") from e
        invalidate(path)
        logger.debug("Wrote route cache artifact %s", path)

    def write_bucket(self, method: str, bucket: MethodBucket) -> None:
        self.ensure_dir()
        self._write(self.method_path(method), bucket.to_dict())

    def write_index(self, index: PathIndex) -> None:
        self.ensure_dir()
        self._write(self.path_for(INDEX_NAME), {key: sorted(methods) for key, methods in index.items()})

    def write_errors(self, errors: Dict[int, CompiledRoute]) -> None:
        self.ensure_dir()
        self._write(self.path_for(ERRORS_NAME), {str(code): route.to_dict() for code, route in errors.items()})

    def write_all(self, compiled: CompiledRoutes, errors: Optional[Dict[int, CompiledRoute]] = None) -> None:
        """Write every method bucket, the index and the error map.

        Method artifacts left over from a previous compile whose method no
        longer has routes are removed. Nothing is written if any bucket or
        error handler cannot be serialized.
        """
        self.ensure_dir()
        payloads = {self.method_path(m): b.to_dict() for m, b in compiled.buckets.items()}
        errors = dict(errors or {})
        for route in errors.values():
            route.to_dict()  # raises for handlers that cannot be persisted

        for path, data in payloads.items():
            self._write(path, data)
        self.write_index(compiled.index)
        self.write_errors(errors)

        for stale in self.method_artifacts():
            if stale not in payloads:
                self._remove(stale)

    # Reading

    def _read(self, path: Path, build: Callable[[Any], Any]) -> Optional[Any]:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RouteCacheError(f"Route cache not readable: {path}") from e

        stamp = (stat.st_mtime_ns, stat.st_size)
        with _memo_lock:
            cached = _memo.get(str(path))
        if cached is not None and cached[0] == stamp:
            return cached[1]

        try:
            envelope = orjson.loads(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, orjson.JSONDecodeError) as e:
            raise RouteCacheError(f"Invalid route cache file {path}") from e

        if not isinstance(envelope, dict) or envelope.get("format") != FORMAT_VERSION or "data" not in envelope:
            raise RouteCacheError(f"Invalid route cache structure in {path}")
        try:
            value = build(envelope["data"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RouteCacheError(f"Invalid route cache structure in {path}") from e

        with _memo_lock:
            _memo[str(path)] = (stamp, value)
        return value

    def read_bucket(self, method: str) -> Optional[MethodBucket]:
        """Load one method bucket, or None when the artifact is absent."""
        return self._read(self.method_path(method), MethodBucket.from_dict)

    def read_index(self) -> PathIndex:
        index = self._read(self.path_for(INDEX_NAME), lambda d: {str(k): list(v) for k, v in d.items()})
        return index if index is not None else {}

    def read_errors(self) -> Dict[int, CompiledRoute]:
        errors = self._read(
            self.path_for(ERRORS_NAME),
            lambda d: {int(code): CompiledRoute.from_dict(r) for code, r in d.items()},
        )
        return errors if errors is not None else {}

    def read_all(self) -> CompiledRoutes:
        """Load every method bucket and the index back into a CompiledRoutes."""
        buckets = {}
        for path in self.method_artifacts():
            bucket = self.read_bucket(path.stem)
            if bucket is not None:
                buckets[path.stem] = bucket
        return CompiledRoutes(buckets=buckets, index=self.read_index())

    # Housekeeping

    def exists(self) -> bool:
        """True once the index artifact has been written."""
        return self.path_for(INDEX_NAME).is_file()

    def method_artifacts(self) -> List[Path]:
        if not self._dir.is_dir():
            return []
        return sorted(
            p for p in self._dir.glob(f"*{SUFFIX}")
            if _METHOD_RE.match(p.stem) and p.is_file()
        )

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise RouteCacheError(f"Cannot remove route cache file {path}") from e
        invalidate(path)

    def clear(self) -> int:
        """Remove every artifact and leftover temp file; return the count."""
        if not self._dir.is_dir():
            return 0
        targets = self.method_artifacts()
        targets += [p for p in (self.path_for(INDEX_NAME), self.path_for(ERRORS_NAME)) if p.is_file()]
        targets += sorted(self._dir.glob("*.tmp"))
        for path in targets:
            self._remove(path)
        return len(targets)
