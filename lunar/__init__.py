from lunar.lunar_state import State
from lunar.lunar_errors import (
    ExceptionHandler, LuaError, LuaAllocationError, LuaLibraryNotFound, LuaStateClosed,
)
from lunar.lunar_capi import LuaLibrary, LuaStatus, load_library, lua_CFunction
from lunar.lunar_config import LunarConfig, load_config
from lunar.lunar_registry import Registry, LuaRef
from lunar.lunar_selector import Selector
from lunar.lunar_stack import StackGuard

__all__ = [
    'State', 'ExceptionHandler', 'LuaError', 'LuaAllocationError', 'LuaLibraryNotFound',
    'LuaStateClosed', 'LuaLibrary', 'LuaStatus', 'load_library', 'lua_CFunction',
    'LunarConfig', 'load_config', 'Registry', 'LuaRef', 'Selector', 'StackGuard',
]
