from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

import yaml

# Sonames tried with ctypes.util.find_library, newest first.
DEFAULT_LIBRARY_NAMES = [
    "lua5.4", "lua54", "lua-5.4",
    "lua5.3", "lua53", "lua-5.3",
    "lua5.2", "lua52", "lua-5.2",
    "lua",
    "lua5.1", "lua51", "luajit-5.1",
]

# Extension modules of the `lupa` distribution that embed a full Lua runtime.
DEFAULT_BUNDLED_MODULES = [
    "lupa.lua54", "lupa.lua53", "lupa.lua52", "lupa.lua51",
    "lupa.luajit21", "lupa.luajit20", "lupa._lupa",
]


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# Switched on by a config with `debug: true`; LUNAR_DEBUG enables it too.
_DEBUG = False


def enable_debug(config: Optional[LunarConfig] = None):
    """Turn the debug channel on for the process when ``config.debug`` is set."""
    global _DEBUG
    if config is None or config.debug:
        _DEBUG = True


def _dbg(*parts):
    if _DEBUG or os.environ.get("LUNAR_DEBUG"):
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


@dataclass
class LunarConfig:
    """Runtime selection and behaviour switches for lunar States."""
    library: Optional[str] = None
    library_names: List[str] = field(default_factory=lambda: list(DEFAULT_LIBRARY_NAMES))
    bundled_modules: List[str] = field(default_factory=lambda: list(DEFAULT_BUNDLED_MODULES))
    use_bundled: bool = True
    open_libs: bool = False
    # Report compile failures other than syntax/file errors too (e.g. out of memory).
    report_all_load_errors: bool = True
    debug: bool = False


def _normalize_key(key: str) -> str:
    return str(key).strip().replace("-", "_")


def config_from_mapping(data: dict) -> LunarConfig:
    known = {f.name for f in fields(LunarConfig)}
    kwargs = {}
    for raw_key, value in (data or {}).items():
        key = _normalize_key(raw_key)
        if key not in known:
            raise ValueError(f"Unknown lunar config key: {raw_key!r}")
        if key in ("library_names", "bundled_modules"):
            if isinstance(value, str):
                value = [value]
            value = [str(v) for v in value]
        elif key in ("use_bundled", "open_libs", "report_all_load_errors", "debug"):
            value = _truthy(value)
        elif key == "library" and value is not None:
            value = str(value)
        kwargs[key] = value
    return LunarConfig(**kwargs)


def load_config(path: Optional[str] = None) -> LunarConfig:
    """Load configuration from a YAML file, then apply environment overrides.

    ``path`` defaults to ``$LUNAR_CONFIG``; with neither, defaults are used.
    ``LUNAR_LUA_LIBRARY`` and ``LUNAR_DEBUG`` override the file.
    """
    path = path or os.environ.get("LUNAR_CONFIG")
    data = {}
    if path:
        with Path(path).open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"lunar config {path} must be a mapping, got {type(data).__name__}")
    config = config_from_mapping(data)

    env_library = os.environ.get("LUNAR_LUA_LIBRARY")
    if env_library:
        config.library = env_library
    if os.environ.get("LUNAR_DEBUG"):
        config.debug = True
    return config
