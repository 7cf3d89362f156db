"""
ctypes binding for the Lua C API.

The binding targets four ABI generations of the reference implementation:
5.1 (and LuaJIT, which shares it), 5.2, 5.3 and 5.4. The generation is
detected once, from the symbols the shared object exports, and decides the
prototypes declared here and the constants the rest of the package reads.
Macros from ``lua.h``/``lauxlib.h`` (``lua_pop``, ``lua_pcall`` on 5.2+,
``luaL_dostring`` ...) are reimplemented as methods on :class:`LuaLibrary`.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import importlib
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from lunar.lunar_config import LunarConfig, load_config, enable_debug, _dbg
from lunar.lunar_errors import LuaLibraryNotFound

# Type tags (identical in every generation)
LUA_TNONE = -1
LUA_TNIL = 0
LUA_TBOOLEAN = 1
LUA_TLIGHTUSERDATA = 2
LUA_TNUMBER = 3
LUA_TSTRING = 4
LUA_TTABLE = 5
LUA_TFUNCTION = 6
LUA_TUSERDATA = 7
LUA_TTHREAD = 8

LUA_MULTRET = -1
LUA_GCCOLLECT = 2
LUA_RIDX_GLOBALS = 2
LUA_NOREF = -2
LUA_REFNIL = -1

lua_CFunction = ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p)


@dataclass(frozen=True)
class LuaStatus:
    """Thread status codes. Values differ between generations; treat them as opaque."""
    ok: int
    yield_: int
    errrun: int
    errsyntax: int
    errmem: int
    errgcmm: Optional[int]
    errerr: int
    errfile: int

    def name(self, code: int) -> str:
        names = {
            self.ok: "ok",
            self.yield_: "yield",
            self.errrun: "runtime error",
            self.errsyntax: "syntax error",
            self.errmem: "memory error",
            self.errerr: "error handler error",
            self.errfile: "file error",
        }
        if self.errgcmm is not None:
            names[self.errgcmm] = "gc metamethod error"
        return names.get(code, f"status {code}")


_STATUS = {
    501: LuaStatus(ok=0, yield_=1, errrun=2, errsyntax=3, errmem=4, errgcmm=None, errerr=5, errfile=6),
    502: LuaStatus(ok=0, yield_=1, errrun=2, errsyntax=3, errmem=4, errgcmm=5, errerr=6, errfile=7),
    503: LuaStatus(ok=0, yield_=1, errrun=2, errsyntax=3, errmem=4, errgcmm=5, errerr=6, errfile=7),
    504: LuaStatus(ok=0, yield_=1, errrun=2, errsyntax=3, errmem=4, errgcmm=None, errerr=5, errfile=6),
}

# Pseudo-indices. 5.2+ derive the registry index from LUAI_MAXSTACK (1000000).
_REGISTRYINDEX = {501: -10000, 502: -1001000, 503: -1001000, 504: -1001000}
_LUA51_GLOBALSINDEX = -10002


def detect_generation(cdll) -> int:
    """Return 501, 502, 503 or 504 for the Lua ABI exported by ``cdll``."""
    if not hasattr(cdll, "luaL_requiref"):
        return 501
    if hasattr(cdll, "lua_newuserdatauv"):
        return 504
    if hasattr(cdll, "lua_rotate"):
        return 503
    return 502


def _proto(cdll, name, restype, argtypes):
    fn = getattr(cdll, name)
    fn.restype = restype
    fn.argtypes = argtypes
    return fn


class LuaLibrary:
    """A loaded Lua runtime with prototypes declared for its ABI generation."""

    def __init__(self, cdll, origin: str = "<unknown>"):
        self.cdll = cdll
        self.origin = origin
        self.generation = detect_generation(cdll)
        self.status = _STATUS[self.generation]
        self.LUA_REGISTRYINDEX = _REGISTRYINDEX[self.generation]
        # Module registration ABI: single require-and-cache primitive on 5.2+.
        self.has_requiref = self.generation >= 502
        self._declare()

    def __repr__(self):
        return f"LuaLibrary(generation={self.generation}, origin={self.origin!r})"

    # ------------------------------------------------------------------
    # Prototypes
    # ------------------------------------------------------------------

    def _declare(self):
        lib = self.cdll
        gen = self.generation
        P = ctypes.c_void_p
        I = ctypes.c_int
        S = ctypes.c_char_p
        D = ctypes.c_double
        # lua_Integer: ptrdiff_t before 5.3, long long from 5.3
        LI = ctypes.c_longlong if gen >= 503 else ctypes.c_ssize_t
        # lua_KContext: int on 5.2, intptr_t from 5.3
        KC = ctypes.c_ssize_t if gen >= 503 else ctypes.c_int

        self._newstate = _proto(lib, "luaL_newstate", P, [])
        self._close = _proto(lib, "lua_close", None, [P])
        self._openlibs = _proto(lib, "luaL_openlibs", None, [P])
        self._gettop = _proto(lib, "lua_gettop", I, [P])
        self._settop = _proto(lib, "lua_settop", None, [P, I])
        self._checkstack = _proto(lib, "lua_checkstack", I, [P, I])
        self._pushvalue = _proto(lib, "lua_pushvalue", None, [P, I])
        self._type = _proto(lib, "lua_type", I, [P, I])
        self._typename = _proto(lib, "lua_typename", S, [P, I])
        self._tolstring = _proto(lib, "lua_tolstring", P, [P, I, ctypes.POINTER(ctypes.c_size_t)])
        self._toboolean = _proto(lib, "lua_toboolean", I, [P, I])
        self._next = _proto(lib, "lua_next", I, [P, I])
        self._pushnil = _proto(lib, "lua_pushnil", None, [P])
        self._pushnumber = _proto(lib, "lua_pushnumber", None, [P, D])
        self._pushinteger = _proto(lib, "lua_pushinteger", None, [P, LI])
        self._pushlstring = _proto(lib, "lua_pushlstring", P, [P, S, ctypes.c_size_t])
        self._pushboolean = _proto(lib, "lua_pushboolean", None, [P, I])
        self._pushcclosure = _proto(lib, "lua_pushcclosure", None, [P, lua_CFunction, I])
        self._createtable = _proto(lib, "lua_createtable", None, [P, I, I])
        self._setfield = _proto(lib, "lua_setfield", None, [P, I, S])
        self._settable = _proto(lib, "lua_settable", None, [P, I])
        self._loadstring = _proto(lib, "luaL_loadstring", I, [P, S])
        self._ref = _proto(lib, "luaL_ref", I, [P, I])
        self._unref = _proto(lib, "luaL_unref", None, [P, I, I])

        # Functions whose return type changed from void to int in 5.3
        getter_res = I if gen >= 503 else None
        self._getfield = _proto(lib, "lua_getfield", getter_res, [P, I, S])
        self._gettable = _proto(lib, "lua_gettable", getter_res, [P, I])
        self._rawgeti = _proto(lib, "lua_rawgeti", getter_res, [P, I, LI if gen >= 503 else I])

        if gen == 501:
            self._tonumber = _proto(lib, "lua_tonumber", D, [P, I])
            self._pcall = _proto(lib, "lua_pcall", I, [P, I, I, I])
            self._loadfile = _proto(lib, "luaL_loadfile", I, [P, S])
            self._gc = _proto(lib, "lua_gc", I, [P, I, I])
            self._isinteger = None
            self._requiref = None
        else:
            self._tonumberx = _proto(lib, "lua_tonumberx", D, [P, I, ctypes.POINTER(I)])
            self._pcallk = _proto(lib, "lua_pcallk", I, [P, I, I, I, KC, P])
            self._loadfilex = _proto(lib, "luaL_loadfilex", I, [P, S, S])
            self._getglobal = _proto(lib, "lua_getglobal", getter_res, [P, S])
            self._setglobal = _proto(lib, "lua_setglobal", None, [P, S])
            self._requiref = _proto(lib, "luaL_requiref", None, [P, S, lua_CFunction, I])
            # lua_gc is variadic on 5.4 and takes no extra argument for a full collection
            if gen >= 504:
                self._gc = _proto(lib, "lua_gc", I, [P, I])
            else:
                self._gc = _proto(lib, "lua_gc", I, [P, I, I])
            self._isinteger = _proto(lib, "lua_isinteger", I, [P, I]) if gen >= 503 else None
            self._tointegerx = _proto(lib, "lua_tointegerx", LI, [P, I, ctypes.POINTER(I)])

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def newstate(self):
        return self._newstate()

    def close(self, L):
        self._close(L)

    def openlibs(self, L):
        self._openlibs(L)

    def gc_collect(self, L) -> int:
        if self.generation >= 504:
            return self._gc(L, LUA_GCCOLLECT)
        return self._gc(L, LUA_GCCOLLECT, 0)

    # ------------------------------------------------------------------
    # Stack
    # ------------------------------------------------------------------

    def gettop(self, L) -> int:
        return self._gettop(L)

    def settop(self, L, idx: int):
        self._settop(L, idx)

    def pop(self, L, n: int = 1):
        self._settop(L, -n - 1)

    def checkstack(self, L, n: int) -> bool:
        return bool(self._checkstack(L, n))

    def pushvalue(self, L, idx: int):
        self._pushvalue(L, idx)

    def type(self, L, idx: int) -> int:
        return self._type(L, idx)

    def typename(self, L, tag: int) -> str:
        name = self._typename(L, tag)
        return name.decode("ascii") if name else "no value"

    def tostring(self, L, idx: int) -> Optional[str]:
        """Text of a string or number at ``idx``; None for any other value.

        A number is converted in place, as ``lua_tostring`` does.
        """
        size = ctypes.c_size_t(0)
        ptr = self._tolstring(L, idx, ctypes.byref(size))
        if not ptr:
            return None
        return ctypes.string_at(ptr, size.value).decode("utf-8", errors="replace")

    def tonumber(self, L, idx: int) -> float:
        if self.generation == 501:
            return self._tonumber(L, idx)
        return self._tonumberx(L, idx, None)

    def isinteger(self, L, idx: int) -> bool:
        if self._isinteger is None:
            return False
        return bool(self._isinteger(L, idx))

    def tointeger(self, L, idx: int) -> int:
        if self.generation == 501:
            return int(self._tonumber(L, idx))
        return self._tointegerx(L, idx, None)

    def toboolean(self, L, idx: int) -> bool:
        return bool(self._toboolean(L, idx))

    def next(self, L, idx: int) -> int:
        return self._next(L, idx)

    def pushnil(self, L):
        self._pushnil(L)

    def pushnumber(self, L, value: float):
        self._pushnumber(L, value)

    def pushinteger(self, L, value: int):
        self._pushinteger(L, value)

    def pushboolean(self, L, value: bool):
        self._pushboolean(L, 1 if value else 0)

    def pushstring(self, L, value):
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        self._pushlstring(L, data, len(data))

    def pushcfunction(self, L, fn):
        self._pushcclosure(L, fn, 0)

    def createtable(self, L, narr: int = 0, nrec: int = 0):
        self._createtable(L, narr, nrec)

    # ------------------------------------------------------------------
    # Tables and globals
    # ------------------------------------------------------------------

    def pushglobaltable(self, L):
        if self.generation == 501:
            self._pushvalue(L, _LUA51_GLOBALSINDEX)
        else:
            self._rawgeti(L, self.LUA_REGISTRYINDEX, LUA_RIDX_GLOBALS)

    def getglobal(self, L, name: str) -> int:
        if self.generation == 501:
            self._getfield(L, _LUA51_GLOBALSINDEX, name.encode("utf-8"))
        else:
            self._getglobal(L, name.encode("utf-8"))
        return self._type(L, -1)

    def setglobal(self, L, name: str):
        if self.generation == 501:
            self._setfield(L, _LUA51_GLOBALSINDEX, name.encode("utf-8"))
        else:
            self._setglobal(L, name.encode("utf-8"))

    def getfield(self, L, idx: int, key: str) -> int:
        self._getfield(L, idx, key.encode("utf-8"))
        return self._type(L, -1)

    def setfield(self, L, idx: int, key: str):
        self._setfield(L, idx, key.encode("utf-8"))

    def gettable(self, L, idx: int) -> int:
        self._gettable(L, idx)
        return self._type(L, -1)

    def settable(self, L, idx: int):
        self._settable(L, idx)

    def rawgeti(self, L, idx: int, n: int) -> int:
        self._rawgeti(L, idx, n)
        return self._type(L, -1)

    # ------------------------------------------------------------------
    # Loading and calling
    # ------------------------------------------------------------------

    def loadfile(self, L, path) -> int:
        encoded = os.fsencode(path)
        if self.generation == 501:
            return self._loadfile(L, encoded)
        return self._loadfilex(L, encoded, None)

    def loadstring(self, L, source) -> int:
        data = source.encode("utf-8") if isinstance(source, str) else bytes(source)
        return self._loadstring(L, data)

    def pcall(self, L, nargs: int, nresults: int, errfunc: int = 0) -> int:
        if self.generation == 501:
            return self._pcall(L, nargs, nresults, errfunc)
        return self._pcallk(L, nargs, nresults, errfunc, 0, None)

    def dostring(self, L, source) -> int:
        status = self.loadstring(L, source)
        if status != self.status.ok:
            return status
        return self.pcall(L, 0, LUA_MULTRET, 0)

    def requiref(self, L, modname: str, openf, glb: bool = True):
        self._requiref(L, modname.encode("utf-8"), openf, 1 if glb else 0)

    # ------------------------------------------------------------------
    # Registry references
    # ------------------------------------------------------------------

    def ref(self, L) -> int:
        return self._ref(L, self.LUA_REGISTRYINDEX)

    def unref(self, L, ref: int):
        self._unref(L, self.LUA_REGISTRYINDEX, ref)

    def pushref(self, L, ref: int) -> int:
        return self.rawgeti(L, self.LUA_REGISTRYINDEX, ref)


# ----------------------------------------------------------------------
# Runtime resolution
# ----------------------------------------------------------------------

_LIBRARIES: Dict[str, LuaLibrary] = {}


def _open_candidate(target: str) -> Optional[LuaLibrary]:
    if target in _LIBRARIES:
        return _LIBRARIES[target]
    try:
        cdll = ctypes.CDLL(target)
    except OSError as e:
        _dbg("lua library", target, "not loadable:", e)
        return None
    if not hasattr(cdll, "luaL_newstate"):
        _dbg("lua library", target, "does not export the Lua C API")
        return None
    lib = LuaLibrary(cdll, origin=target)
    _LIBRARIES[target] = lib
    _dbg("lua library", target, "generation", lib.generation)
    return lib


def _bundled_path(module_name: str) -> Optional[str]:
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return None
    return getattr(module, "__file__", None)


def library_candidates(config: LunarConfig) -> List[str]:
    """Ordered list of shared objects to try for ``config``."""
    out: List[str] = []
    if config.library:
        out.append(config.library)
    for name in config.library_names:
        found = ctypes.util.find_library(name)
        if found and found not in out:
            out.append(found)
    if config.use_bundled:
        for module_name in config.bundled_modules:
            path = _bundled_path(module_name)
            if path and path not in out:
                out.append(path)
    return out


def load_library(config: Optional[LunarConfig] = None) -> LuaLibrary:
    """Resolve and load the Lua runtime described by ``config``."""
    config = config or load_config()
    enable_debug(config)
    tried = library_candidates(config)
    for target in tried:
        lib = _open_candidate(target)
        if lib is not None:
            return lib
    raise LuaLibraryNotFound(tried)
