from typing import Any, Optional, Tuple

from lunar.lunar_capi import LUA_TNIL, LUA_TTABLE, LUA_MULTRET
from lunar.lunar_stack import StackGuard
from lunar.lunar_values import to_python, push_value

# Indexing may run __index/__newindex metamethods that raise, so every
# lookup and assignment happens inside these chunks under lua_pcall.
_INDEX = "local t, k = ...\nreturn t[k]"
_NEWINDEX = "local t, k, v = ...\nt[k] = v"


class Selector:
    """Addresses a Lua value by a global name and a chain of keys.

    ``state["config"]["window"]["width"]`` selects ``config.window.width``.
    Every operation runs inside a StackGuard. Indexing through a value that
    is not a table yields nil; an error raised by a metamethod goes to the
    error reporter.
    """

    def __init__(self, api, L, registry, exception_handler, name: str, path: Tuple = ()):
        self._api = api
        self._l = L
        self._registry = registry
        self._exception_handler = exception_handler
        self._name = name
        self._path = tuple(path)

    def __getitem__(self, key) -> 'Selector':
        return Selector(self._api, self._l, self._registry, self._exception_handler,
                        self._name, self._path + (key,))

    def __setitem__(self, key, value):
        self[key].set(value)

    def __repr__(self):
        keys = "".join(f"[{k!r}]" for k in self._path)
        return f"Selector({self._name!r}{keys})"

    def _describe(self) -> str:
        out = self._name
        for key in self._path:
            out += f".{key}" if isinstance(key, str) else f"[{key!r}]"
        return out

    def _chain(self) -> Tuple:
        return (self._name,) + self._path

    def _push(self, keys) -> Optional[int]:
        """Push the value reached from the global table through ``keys``.

        Returns its type tag, or None when a lookup raised (already reported).
        Intermediate tables are left below it; callers run inside a guard.
        """
        api, L = self._api, self._l
        api.pushglobaltable(L)
        tag = LUA_TTABLE
        for key in keys:
            if tag != LUA_TTABLE:
                api.pushnil(L)
                return LUA_TNIL
            api.checkstack(L, 4)
            if not self._registry.push_chunk(_INDEX):
                return None
            api.pushvalue(L, -2)
            push_value(api, L, key, self._registry)
            status = api.pcall(L, 2, 1, 0)
            if status != api.status.ok:
                self._exception_handler.handle_top_of_stack(status, api, L)
                return None
            tag = api.type(L, -1)
        return tag

    def exists(self) -> bool:
        if not self._l:
            return False
        with StackGuard(self._api, self._l):
            return self._push(self._chain()) not in (None, LUA_TNIL)

    def get(self) -> Any:
        if not self._l:
            return None
        with StackGuard(self._api, self._l):
            if self._push(self._chain()) is None:
                return None
            return to_python(self._api, self._l, -1, self._registry)

    def ref(self):
        """Pin the selected value in the registry and return a LuaRef."""
        if not self._l:
            return None
        with StackGuard(self._api, self._l):
            if self._push(self._chain()) is None:
                return None
            return self._registry.ref_top()

    def set(self, value: Any) -> bool:
        """Assign ``value``. Failures go to the error reporter and return False."""
        if not self._l:
            return False
        api, L = self._api, self._l
        chain = self._chain()
        with StackGuard(api, L):
            tag = self._push(chain[:-1])
            if tag is None:
                return False
            if tag != LUA_TTABLE:
                self._exception_handler.handle(
                    api.status.errrun,
                    f"cannot assign {self._describe()}: parent is a {api.typename(L, tag)} value",
                )
                return False
            api.checkstack(L, 4)
            if not self._registry.push_chunk(_NEWINDEX):
                return False
            api.pushvalue(L, -2)
            push_value(api, L, chain[-1], self._registry)
            push_value(api, L, value, self._registry)
            status = api.pcall(L, 3, 0, 0)
            if status != api.status.ok:
                self._exception_handler.handle_top_of_stack(status, api, L)
                return False
            return True

    def __call__(self, *args):
        """Call the selected function. Failures go to the error reporter and return None."""
        if not self._l:
            return None
        api, L = self._api, self._l
        with StackGuard(api, L):
            if self._push(self._chain()) is None:
                return None
            api.checkstack(L, len(args) + 1)
            base = api.gettop(L) - 1
            for arg in args:
                push_value(api, L, arg, self._registry)
            status = api.pcall(L, len(args), LUA_MULTRET, 0)
            if status != api.status.ok:
                self._exception_handler.handle_top_of_stack(status, api, L)
                return None
            results = [to_python(api, L, i, self._registry) for i in range(base + 1, api.gettop(L) + 1)]
        if not results:
            return None
        if len(results) == 1:
            return results[0]
        return tuple(results)
