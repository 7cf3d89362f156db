"""
Keeps Lua values and Python callbacks alive independently of the VM stack.

Values are pinned in the Lua registry table with ``luaL_ref`` and unpinned
when their ``LuaRef`` is released or garbage collected. Python callables
exposed to Lua are wrapped in ``lua_CFunction`` trampolines; the
trampolines are kept per VM handle, so a function registered through a
borrowing State stays valid until the owning State closes the handle.

Only handles closed by an owning State are released automatically. Code
that borrows a foreign handle and closes it itself must call
:func:`release_handle` afterwards.
"""

from typing import Callable, Dict, List

from lunar.lunar_capi import lua_CFunction, LUA_NOREF, LUA_REFNIL
from lunar.lunar_errors import LuaStateClosed
from lunar.lunar_stack import StackGuard
from lunar.lunar_values import to_python, push_value

# handle address -> trampolines that Lua may still call
_TRAMPOLINES: Dict[int, List] = {}


def release_handle(L):
    """Drop the trampolines of a handle that has been closed."""
    _TRAMPOLINES.pop(int(L or 0), None)


class LuaRef:
    """A Lua value pinned in the registry. Collected refs unpin their value."""
    __slots__ = ("registry", "ref")

    def __init__(self, registry: 'Registry', ref: int):
        self.registry = registry
        self.ref = ref

    @property
    def valid(self) -> bool:
        return self.ref not in (LUA_NOREF, LUA_REFNIL) and bool(self.registry.L)

    def push(self, L=None):
        self.registry.push(self.ref, L)

    def release(self):
        if self.ref not in (LUA_NOREF, LUA_REFNIL):
            self.registry.unref(self.ref)
        self.ref = LUA_NOREF

    def __del__(self):
        try:
            self.release()
        except Exception:
            # interpreter shutdown may have torn down ctypes already
            pass

    def __repr__(self):
        return f"LuaRef({self.ref})"


class Registry:
    def __init__(self, api, L, exception_handler):
        self.api = api
        self.L = L
        self.exception_handler = exception_handler
        # accessor chunk source -> registry ref of its compiled function
        self._chunks: Dict[str, int] = {}

    def ref_top(self, L=None) -> LuaRef:
        """Pop the top value of ``L`` (default: the registry's handle) into the registry."""
        return LuaRef(self, self.api.ref(L or self.L))

    def push(self, ref: int, L=None):
        if not self.L:
            raise LuaStateClosed("registry reference used after its State was closed")
        self.api.pushref(L or self.L, ref)

    def unref(self, ref: int):
        if self.L:
            self.api.unref(self.L, ref)

    def get(self, ref: int):
        with StackGuard(self.api, self.L):
            self.push(ref)
            return to_python(self.api, self.L, -1, self)

    def push_chunk(self, source: str) -> bool:
        """Push the function compiled from ``source``, compiling it once per handle.

        A compile failure is reported and leaves the message on the stack.
        """
        api, L = self.api, self.L
        ref = self._chunks.get(source)
        if ref is None:
            status = api.loadstring(L, source)
            if status != api.status.ok:
                self.exception_handler.handle_top_of_stack(status, api, L)
                return False
            ref = api.ref(L)
            self._chunks[source] = ref
        api.pushref(L, ref)
        return True

    def _keep(self, cfunc):
        if self.L:
            _TRAMPOLINES.setdefault(int(self.L), []).append(cfunc)
        return cfunc

    def raw_function(self, fn: Callable) -> lua_CFunction:
        """Wrap ``fn(L) -> int`` (the C-function calling convention) for Lua."""
        if isinstance(fn, lua_CFunction):
            return self._keep(fn)
        api = self.api
        handler = self.exception_handler

        def trampoline(L):
            try:
                return int(fn(L) or 0)
            except Exception as e:
                handler.handle(api.status.errrun, f"{type(e).__name__}: {e}", e)
                return 0

        return self._keep(lua_CFunction(trampoline))

    def function(self, fn: Callable) -> lua_CFunction:
        """Wrap a Python callable taking and returning host values.

        Table and function arguments arrive as LuaRefs; the ones the callable
        does not keep are unpinned when the call returns.
        """
        api = self.api
        handler = self.exception_handler
        registry = self

        def trampoline(L):
            try:
                argc = api.gettop(L)
                args = [to_python(api, L, i, registry) for i in range(1, argc + 1)]
                result = fn(*args)
                del args
                if result is None:
                    return 0
                results = result if isinstance(result, tuple) else (result,)
                api.checkstack(L, len(results))
                for value in results:
                    push_value(api, L, value, registry)
                return len(results)
            except Exception as e:
                handler.handle(api.status.errrun, f"{type(e).__name__}: {e}", e)
                return 0

        return self._keep(lua_CFunction(trampoline))

    def close(self):
        if self.L:
            for ref in self._chunks.values():
                self.api.unref(self.L, ref)
        self._chunks.clear()
        self.L = None
