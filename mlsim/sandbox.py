"""Per-script isolated namespaces with path-aware I/O and module primitives."""

from __future__ import annotations

import builtins
import functools
import importlib
import io
import os
import re
import shutil
import sys
import traceback
import types
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .api import ModuleRegistry
from .logsink import LogSink
from .paths import PathResolver
from .tasks import ScriptTask

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_PATH_SEPARATORS = re.compile(r"([/\\])")
_MISSING = object()


def multiline_friendly(text: str) -> str:
    """Surround path separators with spaces so long paths wrap on narrow displays."""
    return _PATH_SEPARATORS.sub(r" \1 ", text)


def _is_internal(filename: str) -> bool:
    return os.path.dirname(os.path.abspath(filename)) == _PACKAGE_DIR


def format_script_error(exc: BaseException) -> str:
    """Format ``exc`` with the script-side part of its traceback."""
    frames = [frame for frame in traceback.extract_tb(exc.__traceback__) if not _is_internal(frame.filename)]
    lines = traceback.format_exception_only(type(exc), exc)
    if frames:
        lines = ["Traceback (most recent call last):\n"] + traceback.format_list(frames) + lines
    return "".join(lines).rstrip("\n")


def error_message(exc: BaseException) -> str:
    """One-line ``file:line: Type: message`` description of ``exc``."""
    summary = "".join(traceback.format_exception_only(type(exc), exc)).strip()
    frames = [frame for frame in traceback.extract_tb(exc.__traceback__) if not _is_internal(frame.filename)]
    if frames:
        last = frames[-1]
        return f"{last.filename}:{last.lineno}: {summary}"
    return summary


def stack_traceback(message: Optional[str] = None, level: int = 1) -> str:
    """Describe the current stack; ``level`` 1 starts at the caller."""
    frame = sys._getframe(level)
    text = "stack traceback:\n" + "".join(traceback.format_stack(frame))
    if message:
        text = f"{message}\n{text}"
    return text.rstrip("\n")


def protected_call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Tuple[bool, Any]:
    """Call ``func`` and report failures as ``(False, message)``.

    The call runs as a nested task so the logic yield point can be reached
    from inside it: each suspension of the nested task suspends the current
    task as well.
    """
    parent = ScriptTask.current()
    name = getattr(func, "__name__", "call")
    inner = ScriptTask(func, *args, name=f"pcall:{name}", **kwargs)
    if parent is not None and parent.trace_function is not None:
        inner.set_trace(parent.trace_function)
    try:
        while True:
            ok, value = inner.resume()
            if not inner.alive:
                break
            if parent is not None:
                ScriptTask.suspend_current()
    finally:
        if inner.status == ScriptTask.SUSPENDED:
            inner.close()
    if ok:
        return True, value
    return False, multiline_friendly(error_message(value))


class ModuleProxy(types.ModuleType):
    """A module whose selected attributes are replaced; the rest fall through."""

    def __init__(self, real: types.ModuleType, overrides: Dict[str, Any]) -> None:
        super().__init__(real.__name__, getattr(real, "__doc__", None))
        self.__dict__.update(overrides)
        self.__dict__["__wrapped__"] = real

    def __getattr__(self, name: str) -> Any:
        return getattr(self.__dict__["__wrapped__"], name)


class SandboxEnvironment:
    """Isolated global namespace for one script run.

    The namespace's builtins are a private copy of the interpreter builtins
    where ``open``, ``__import__`` and the module, error and protected-call
    primitives are replaced by versions that resolve paths through the
    ``PathResolver`` and keep loaded user modules inside this sandbox.
    """

    OS_PATH_ARGS = {
        "remove": (0,),
        "unlink": (0,),
        "rename": (0, 1),
        "replace": (0, 1),
        "listdir": (0,),
        "scandir": (0,),
        "mkdir": (0,),
        "makedirs": (0,),
        "rmdir": (0,),
        "stat": (0,),
    }
    OS_PATH_MODULE_ARGS = {
        "exists": (0,),
        "isfile": (0,),
        "isdir": (0,),
        "getsize": (0,),
        "getmtime": (0,),
    }
    SHUTIL_PATH_ARGS = {
        "copy": (0, 1),
        "copy2": (0, 1),
        "copyfile": (0, 1),
        "copytree": (0, 1),
        "move": (0, 1),
        "rmtree": (0,),
    }

    def __init__(
        self,
        resolver: PathResolver,
        *,
        registry: Optional[ModuleRegistry] = None,
        script_path: Optional[str] = None,
        clock: Any = None,
        log: Optional[LogSink] = None,
    ) -> None:
        self.resolver = resolver
        self.registry = registry or ModuleRegistry()
        self.log = log or LogSink()
        self.clock = clock
        self.modules: Dict[str, types.ModuleType] = {}
        self._loading: Dict[int, types.ModuleType] = {}
        self.open = self._resolving(builtins.open, 0)
        self._proxies = self._build_proxies()
        self.builtins = self._build_builtins()
        self.namespace: Dict[str, Any] = {
            "__builtins__": self.builtins,
            "__name__": "__main__",
            "__file__": script_path,
            "__doc__": None,
        }
        self.registry.bind(self.namespace)

    # ------------------------------------------------------------------
    # construction

    def _build_builtins(self) -> Dict[str, Any]:
        table = dict(vars(builtins))
        table.update(
            {
                "open": self.open,
                "__import__": self._import,
                "include_file": self.include_file,
                "declare_module": self.declare_module,
                "import_module": self.import_module,
                "format_traceback": self.format_traceback,
                "pcall": protected_call,
                "ticks": self.ticks,
            }
        )
        return table

    def _build_proxies(self) -> Dict[str, types.ModuleType]:
        path_overrides = {name: self._resolving(getattr(os.path, name), *positions) for name, positions in self.OS_PATH_MODULE_ARGS.items()}
        os_path = ModuleProxy(os.path, path_overrides)
        os_overrides: Dict[str, Any] = {name: self._resolving(getattr(os, name), *positions) for name, positions in self.OS_PATH_ARGS.items()}
        os_overrides["path"] = os_path
        os_overrides["walk"] = self.walk
        shutil_overrides = {name: self._resolving(getattr(shutil, name), *positions) for name, positions in self.SHUTIL_PATH_ARGS.items()}
        return {
            "os": ModuleProxy(os, os_overrides),
            "os.path": os_path,
            "io": ModuleProxy(io, {"open": self.open}),
            "shutil": ModuleProxy(shutil, shutil_overrides),
        }

    def resolve_path(self, path: Any) -> Any:
        if isinstance(path, os.PathLike):
            path = os.fspath(path)
        resolved, _ = self.resolver.resolve(path)
        return resolved

    def _resolving(self, func: Callable[..., Any], *positions: int) -> Callable[..., Any]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if positions:
                args_list = list(args)
                for index in positions:
                    if index < len(args_list):
                        args_list[index] = self.resolve_path(args_list[index])
                args = tuple(args_list)
            return func(*args, **kwargs)

        return wrapper

    def walk(self, top: Any, *args: Any, **kwargs: Any) -> Iterator[Tuple[Any, List[str], List[str]]]:
        """``os.walk`` over the resolved ``top``, reporting virtual directory paths."""
        if isinstance(top, os.PathLike):
            top = os.fspath(top)
        real = self.resolve_path(top)
        for dirpath, dirnames, filenames in os.walk(real, *args, **kwargs):
            if real != top:
                dirpath, _ = self.resolver.to_virtual_path(dirpath)
            yield dirpath, dirnames, filenames

    # ------------------------------------------------------------------
    # primitives

    def ticks(self) -> int:
        if self.clock is None:
            return 0
        return int(self.clock.time())

    def format_traceback(self, message: Optional[str] = None, level: int = 1) -> str:
        return multiline_friendly(stack_traceback(message, level + 1))

    def _caller_namespace(self) -> Dict[str, Any]:
        frame = sys._getframe(2)
        while frame is not None:
            if frame.f_globals.get("__builtins__") is self.builtins:
                return frame.f_globals
            frame = frame.f_back
        return self.namespace

    def include_file(self, path: str) -> Any:
        """Execute ``path`` inside the calling script's namespace."""
        target = self._caller_namespace()
        real, found = self.resolver.resolve(path)
        if not found:
            raise FileNotFoundError(f"cannot include {path}: file not found")
        self.log.trace(f"including {real}", "module")
        exec(self.registry.compile_file(real), target)
        return target

    def declare_module(self, name: str, members: Optional[Dict[str, Any]] = None) -> types.ModuleType:
        """Register a module named ``name`` in this sandbox and bind it for the caller.

        Called from a module that is being imported, the importing module
        itself is registered under ``name``.
        """
        caller = self._caller_namespace()
        module = self._loading.get(id(caller))
        if module is None:
            module = self.modules.get(name)
        if module is None:
            module = types.ModuleType(name)
            module.__dict__["__builtins__"] = self.builtins
        if members:
            module.__dict__.update(members)
        self.modules[name] = module
        if caller is not module.__dict__:
            caller[name] = module
        self.log.debug(f"declared module {name}", "module")
        return module

    def import_module(self, name: str) -> types.ModuleType:
        """Import ``name`` and bind it in the calling script's namespace."""
        caller = self._caller_namespace()
        module = self._find_module(name)
        if "." not in name:
            caller[name] = module
        return module

    def _find_module(self, name: str) -> types.ModuleType:
        module = self.modules.get(name)
        if module is not None:
            return module
        if name in self._proxies:
            return self._proxies[name]
        path = self.find_module_file(name)
        if path is not None:
            return self._load_user_module(name, path)
        return importlib.import_module(name)

    def find_module_file(self, name: str) -> Optional[str]:
        relative = name.replace(".", "/")
        for candidate in (f"{relative}.py", f"{relative}/__init__.py"):
            real, found = self.resolver.resolve(candidate)
            if found and os.path.isfile(real):
                return real
        return None

    def _load_user_module(self, name: str, path: str) -> types.ModuleType:
        self.log.debug(f"loading module {name} from {path}", "module")
        code = self.registry.compile_file(path)
        module = types.ModuleType(name)
        module.__dict__.update({"__file__": path, "__builtins__": self.builtins})
        self.modules[name] = module
        self._loading[id(module.__dict__)] = module
        # Class creation and dataclasses look modules up in sys.modules, so
        # the slot is lent to the sandbox module while its body runs.
        previous = sys.modules.get(name, _MISSING)
        sys.modules[name] = module
        try:
            exec(code, module.__dict__)
        except BaseException:
            self.modules.pop(name, None)
            raise
        finally:
            self._loading.pop(id(module.__dict__), None)
            if previous is _MISSING:
                sys.modules.pop(name, None)
            else:
                sys.modules[name] = previous
        return self.modules.get(name, module)

    def _import(
        self,
        name: str,
        globals: Optional[Dict[str, Any]] = None,
        locals: Optional[Dict[str, Any]] = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        if level == 0:
            top = name.partition(".")[0]
            if top == "os" or name in ("io", "shutil"):
                if name == "os.path" and fromlist:
                    return self._proxies["os.path"]
                builtins.__import__(name, globals, locals, fromlist, level)
                return self._proxies[top]
            if "." not in name and (name in self.modules or self.find_module_file(name) is not None):
                return self._find_module(name)
        return builtins.__import__(name, globals, locals, fromlist, level)
