from lunar import State


def test_global_names_include_standard_libraries(state):
    names = set(state.global_names())
    assert {"_G", "string", "table", "math", "print", "pairs"} <= names


def test_global_names_formats_number_keys_and_skips_others(state):
    assert state.execute("_G[3] = true; _G[2.5] = true; _G[true] = 'skipped'; _G[{}] = 'skipped'")
    names = state.global_names()
    assert "3" in names
    assert "2.5" in names
    assert "true" not in names
    assert all(isinstance(n, str) for n in names)


def test_global_names_is_stack_neutral_and_side_effect_free(state):
    api, L = state.api, state.lua_state
    api.pushnil(L)
    depth = state.size()
    assert state.execute("counter = 0")

    first = state.global_names()
    second = state.global_names()

    assert state.size() == depth
    assert sorted(first) == sorted(second)
    assert first is not second
    assert state["counter"].get() == 0


def test_global_names_tracks_new_globals(state):
    assert "fresh_name" not in state.global_names()
    assert state.execute("fresh_name = 'here'")
    assert "fresh_name" in state.global_names()


def test_global_names_without_handle_is_empty(lua_library):
    state = State(True, library=lua_library)
    state.close()
    assert state.global_names() == []
