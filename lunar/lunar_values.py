from typing import Any

from lunar.lunar_capi import (
    LUA_TNIL, LUA_TNONE, LUA_TBOOLEAN, LUA_TNUMBER, LUA_TSTRING,
)

_INT_MIN = -(2 ** 63)
_INT_MAX = 2 ** 63 - 1


def to_python(api, L, idx: int, registry=None) -> Any:
    """Convert the value at ``idx`` to a host value without popping it.

    Tables, functions and other reference types become a ``LuaRef`` when a
    registry is given; without one they raise ``TypeError``.
    """
    tag = api.type(L, idx)
    if tag in (LUA_TNIL, LUA_TNONE):
        return None
    if tag == LUA_TBOOLEAN:
        return api.toboolean(L, idx)
    if tag == LUA_TNUMBER:
        if api.isinteger(L, idx):
            return api.tointeger(L, idx)
        return api.tonumber(L, idx)
    if tag == LUA_TSTRING:
        return api.tostring(L, idx)
    if registry is None:
        raise TypeError(f"cannot convert a Lua {api.typename(L, tag)} without a registry")
    api.pushvalue(L, idx)
    return registry.ref_top(L)


def push_value(api, L, value: Any, registry=None):
    """Push a host value onto the VM stack."""
    from lunar.lunar_registry import LuaRef

    match value:
        case None:
            api.pushnil(L)
        case bool():
            api.pushboolean(L, value)
        case int():
            if _INT_MIN <= value <= _INT_MAX:
                api.pushinteger(L, value)
            else:
                api.pushnumber(L, float(value))
        case float():
            api.pushnumber(L, value)
        case str() | bytes() | bytearray():
            api.pushstring(L, value)
        case LuaRef():
            value.push(L)
        case _ if callable(value):
            if registry is None:
                raise TypeError("pushing a Python callable requires a registry")
            api.pushcfunction(L, registry.function(value))
        case _:
            raise TypeError(f"cannot push {type(value).__name__} onto the Lua stack")
