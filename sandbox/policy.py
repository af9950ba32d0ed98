"""
Sandbox policy definitions and import/builtin guards.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable, Mapping, Sequence
from types import ModuleType
from typing import cast

BLOCKED_MODULES = [
    "os",
    "sys",
    "subprocess",
    "socket",
    "urllib",
    "requests",
    "http",
    "ctypes",
    "importlib",
    "signal",
    "threading",
    "multiprocessing",
    "resource",
    "shutil",
    "pathlib",
    "io",
    "builtins",
    "gc",
    "inspect",
]

BLOCKED_BUILTINS = [
    "eval",
    "exec",
    "compile",
    "open",
    "input",
    "breakpoint",
    "exit",
    "quit",
    "help",
    "globals",
    "locals",
    "vars",
    "memoryview",
]

ALLOWED_MODULES = [
    "math",
    "cmath",
    "random",
    "itertools",
    "functools",
    "collections",
    "heapq",
    "bisect",
    "string",
    "re",
    "typing",
    "dataclasses",
    "operator",
    "fractions",
    "decimal",
    "statistics",
    "copy",
]

ImportHook = Callable[
    [str, Mapping[str, object] | None, Mapping[str, object] | None, Sequence[str], int],
    ModuleType,
]


def _normalize_modules(modules: Iterable[str] | None) -> set[str]:
    return {name for name in (modules or [])}


def build_import_guard(
    allowed_modules: Iterable[str] | None = None,
    blocked_modules: Iterable[str] | None = None,
) -> ImportHook:
    """
    Build a restricted __import__ hook that only allows allowlisted modules
    and explicitly blocks denied modules.
    """
    allowed = _normalize_modules(allowed_modules or ALLOWED_MODULES)
    blocked = _normalize_modules(blocked_modules or BLOCKED_MODULES)
    original_import = cast(ImportHook, builtins.__import__)

    def guarded_import(
        name: str,
        globals: Mapping[str, object] | None = None,
        locals: Mapping[str, object] | None = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> ModuleType:
        if level:
            raise ImportError("Relative imports are blocked by sandbox policy")
        root = name.split(".")[0]
        if root in blocked or name in blocked:
            raise ImportError(f"Import of '{root}' blocked by sandbox policy")
        if root not in allowed:
            raise ImportError(f"Import of '{root}' is not allowlisted")
        return original_import(name, globals, locals, fromlist, level)

    return guarded_import


def _blocked_builtin(name: str) -> Callable[..., None]:
    def _blocked(*_args: object, **_kwargs: object) -> None:
        raise PermissionError(f"'{name}' is blocked by sandbox policy")

    _blocked.__name__ = name
    return _blocked


def build_safe_builtins(
    capabilities: Mapping[str, object] | None = None,
    allowed_modules: Iterable[str] | None = None,
    blocked_modules: Iterable[str] | None = None,
    blocked_builtins: Iterable[str] | None = None,
) -> dict[str, object]:
    """Build a ``__builtins__`` mapping for one sandboxed namespace.

    The host's ``builtins`` module is never modified; each namespace gets its
    own copy with dangerous names replaced, a guarded ``__import__``, and the
    given capabilities (e.g. ``print``) layered on top.
    """
    safe = dict(vars(builtins))
    for name in _normalize_modules(blocked_builtins or BLOCKED_BUILTINS):
        if name in safe:
            safe[name] = _blocked_builtin(name)
    safe["__import__"] = build_import_guard(
        allowed_modules=allowed_modules,
        blocked_modules=blocked_modules,
    )
    if capabilities:
        safe.update(capabilities)
    return safe


def new_namespace(
    name: str,
    capabilities: Mapping[str, object] | None = None,
    allowed_modules: Iterable[str] | None = None,
) -> dict[str, object]:
    """Return a fresh module-level namespace bound to restricted builtins."""
    return {
        "__name__": name,
        "__builtins__": build_safe_builtins(
            capabilities=capabilities,
            allowed_modules=allowed_modules,
        ),
    }
