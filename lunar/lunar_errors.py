"""
Error types and the replaceable error reporter.

Failures inside the VM never raise across the State's script-execution
surface; they are handed to an :class:`ExceptionHandler` and signalled to
the caller by a ``False`` result. The exceptions below cover failures of
the host side only.
"""

from typing import Callable, List, Optional


class LuaError(Exception):
    """Base class for lunar host-side errors."""
    pass


class LuaAllocationError(LuaError, MemoryError):
    """The VM instance could not be created."""
    pass


class LuaLibraryNotFound(LuaError, OSError):
    def __init__(self, tried: List[str]):
        self.tried = list(tried)
        detail = ", ".join(self.tried) if self.tried else "no candidates"
        super().__init__(f"No usable Lua runtime found (tried: {detail})")


class LuaStateClosed(LuaError):
    pass


Handler = Callable[[int, str, Optional[BaseException]], None]


def _print_handler(code: int, message: str, exc: Optional[BaseException] = None):
    print(message)


class ExceptionHandler:
    """Holds the callback invoked whenever the VM returns a failure status.

    The object is shared by reference with the Selector and Registry, so a
    replacement made through the State reaches every collaborator.
    """

    def __init__(self, handler: Optional[Handler] = None):
        self._handler: Handler = handler or _print_handler

    @property
    def handler(self) -> Handler:
        return self._handler

    def replace(self, handler: Optional[Handler]):
        self._handler = handler or _print_handler

    def handle(self, code: int, message: str, exc: Optional[BaseException] = None):
        handler = self._handler
        handler(code, message, exc)

    def handle_top_of_stack(self, code: int, api, L):
        # Mirrors the standalone interpreter's message for non-string error objects
        message = api.tostring(L, -1)
        if message is None:
            message = f"(error object is a {api.typename(L, api.type(L, -1))} value)"
        self.handle(code, message)
