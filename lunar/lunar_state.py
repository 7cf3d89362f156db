"""
The State: owner (or borrower) of one Lua VM handle.

Every public operation that touches the VM stack runs inside a StackGuard,
so the stack depth after a call always equals the depth before it. VM
failures never raise; they are passed to the State's ExceptionHandler and
reported to the caller as ``False``.
"""

import ctypes
from typing import Callable, List, Optional

from lunar.lunar_capi import LuaLibrary, load_library, LUA_TNUMBER, LUA_TSTRING, LUA_MULTRET
from lunar.lunar_config import LunarConfig, load_config, enable_debug, _dbg
from lunar.lunar_errors import ExceptionHandler, LuaAllocationError, Handler
from lunar.lunar_registry import Registry, release_handle
from lunar.lunar_selector import Selector
from lunar.lunar_stack import StackGuard


def _handle_address(lua_state) -> Optional[int]:
    if lua_state is None:
        return None
    if isinstance(lua_state, ctypes.c_void_p):
        return lua_state.value
    return int(lua_state)


class State:
    """Lifecycle, script execution and introspection for one Lua VM."""

    def __init__(self, open_libs: Optional[bool] = None, *, lua_state=None,
                 library: Optional[LuaLibrary] = None, config: Optional[LunarConfig] = None):
        self._config = config or load_config()
        enable_debug(self._config)
        self._api = library or load_library(self._config)
        self._exception_handler = ExceptionHandler()

        if lua_state is None:
            L = self._api.newstate()
            if not L:
                raise LuaAllocationError("luaL_newstate could not allocate a Lua state")
            self._l = L
            self._l_owner = True
            if open_libs is None:
                open_libs = self._config.open_libs
            if open_libs:
                self._api.openlibs(self._l)
        else:
            self._l = _handle_address(lua_state)
            self._l_owner = False

        self._registry = Registry(self._api, self._l, self._exception_handler)
        _dbg("State created", self, "owner" if self._l_owner else "borrowed")

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def __copy__(self):
        raise TypeError("State cannot be copied; use move() to transfer ownership")

    def __deepcopy__(self, memo):
        raise TypeError("State cannot be copied; use move() to transfer ownership")

    def move(self) -> 'State':
        """Transfer the handle to a new State. This instance becomes inert."""
        other = State.__new__(State)
        other._l = None
        other._l_owner = False
        other._config = self._config
        other._api = self._api
        other._exception_handler = self._exception_handler
        other._registry = self._registry
        other._take_from(self)
        return other

    def take(self, other: 'State') -> 'State':
        """Move ``other`` into this State, closing the handle this State owned."""
        if other is self:
            return self
        self.close()
        self._config = other._config
        self._api = other._api
        self._exception_handler = other._exception_handler
        self._registry = other._registry
        self._take_from(other)
        return self

    def _take_from(self, other: 'State'):
        self._l = other._l
        self._l_owner = other._l_owner
        other._l = None
        other._l_owner = False
        other._exception_handler = ExceptionHandler()
        other._registry = Registry(other._api, None, other._exception_handler)

    def close(self):
        """Collect and close the VM if this State owns it. Safe to call repeatedly."""
        L = getattr(self, "_l", None)
        if L and self._l_owner:
            _dbg("State closing", self)
            self.force_gc()
            self._registry.close()
            self._api.close(L)
            release_handle(L)
        elif L:
            self._registry.close()
        self._l = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            # interpreter shutdown may have torn down ctypes already
            pass

    def __repr__(self):
        return f"lunar.State - {hex(self._l or 0)}"

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def lua_state(self) -> Optional[int]:
        return self._l

    @property
    def api(self) -> LuaLibrary:
        return self._api

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def owner(self) -> bool:
        return bool(self._l) and self._l_owner

    def size(self) -> int:
        if not self._l:
            return 0
        return self._api.gettop(self._l)

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    def print_errors_to_stdout(self):
        self._exception_handler.replace(None)

    def set_error_handler(self, handler: Handler):
        self._exception_handler.replace(handler)

    # ------------------------------------------------------------------
    # Script execution
    # ------------------------------------------------------------------

    def load_file(self, path) -> bool:
        if not self._l:
            return False
        api, L = self._api, self._l
        status_codes = api.status
        with StackGuard(api, L):
            status = api.loadfile(L, path)
            if status != status_codes.ok:
                if status == status_codes.errsyntax:
                    fallback = f"{path}: syntax error"
                elif status == status_codes.errfile:
                    fallback = f"{path}: file error"
                elif self._config.report_all_load_errors:
                    fallback = f"{path}: load failed"
                else:
                    _dbg("load_file", path, "unreported", status_codes.name(status))
                    return False
                msg = api.tostring(L, -1)
                self._exception_handler.handle(status, msg if msg is not None else fallback)
                return False

            status = api.pcall(L, 0, LUA_MULTRET, 0)
            if status == status_codes.ok:
                return True

            msg = api.tostring(L, -1)
            self._exception_handler.handle(status, msg if msg is not None else f"{path}: dofile failed")
            return False

    def execute(self, source) -> bool:
        if not self._l:
            return False
        with StackGuard(self._api, self._l):
            status = self._api.dostring(self._l, source)
            if status != self._api.status.ok:
                self._exception_handler.handle_top_of_stack(status, self._api, self._l)
                return False
            return True

    def __call__(self, source) -> bool:
        return self.execute(source)

    def open_lib(self, modname: str, openf: Callable):
        """Register ``openf`` as the loader of module ``modname``."""
        if not self._l:
            return
        api, L = self._api, self._l
        cfunc = self._registry.raw_function(openf)
        with StackGuard(api, L):
            if api.has_requiref:
                api.requiref(L, modname, cfunc, True)
            else:
                api.pushcfunction(L, cfunc)
                api.pushstring(L, modname)
                status = api.pcall(L, 1, 0, 0)
                if status != api.status.ok:
                    _dbg("open_lib", modname, api.status.name(status), api.tostring(L, -1))

    def force_gc(self):
        if self._l:
            self._api.gc_collect(self._l)

    def interactive_debug(self):
        if not self._l:
            return
        with StackGuard(self._api, self._l):
            self._api.dostring(self._l, "debug.debug()")

    # ------------------------------------------------------------------
    # Globals
    # ------------------------------------------------------------------

    def __getitem__(self, name: str) -> Selector:
        return Selector(self._api, self._l, self._registry, self._exception_handler, name)

    def __setitem__(self, name: str, value):
        self[name].set(value)

    def global_names(self) -> List[str]:
        """Names of the string- and number-keyed entries of the global table."""
        names: List[str] = []
        if not self._l:
            return names

        api, L = self._api, self._l
        with StackGuard(api, L):
            api.pushglobaltable(L)
            api.pushnil(L)
            # lua_next replaces the key at -1 with the next key and pushes its value
            while api.next(L, -2) != 0:
                tag = api.type(L, -2)
                if tag == LUA_TSTRING:
                    names.append(api.tostring(L, -2))
                elif tag == LUA_TNUMBER:
                    names.append("%g" % api.tonumber(L, -2))
                # pop the value, keep the key for the next iteration
                api.pop(L, 1)
            api.pop(L, 1)
        return names
