import pytest

from lunar import State, LuaLibraryNotFound, load_library


@pytest.fixture(scope="session")
def lua_library():
    """The Lua runtime for the session; tests needing it skip when none is installed."""
    try:
        return load_library()
    except LuaLibraryNotFound as e:
        pytest.skip(str(e))


@pytest.fixture
def state(lua_library):
    s = State(True, library=lua_library)
    yield s
    s.close()


@pytest.fixture
def errors(state):
    """Installs a recording error handler on `state` and returns the record."""
    seen = []
    state.set_error_handler(lambda code, message, exc: seen.append((code, message, exc)))
    return seen
