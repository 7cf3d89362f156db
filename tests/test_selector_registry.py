import pytest

from lunar import LuaRef, State
from lunar.lunar_registry import Registry, _TRAMPOLINES


def test_set_and_get_primitives(state):
    state["n"] = 5
    state["f"] = 2.5
    state["s"] = "text"
    state["yes"] = True
    state["nothing"] = None
    assert state["n"].get() == 5
    assert state["f"].get() == 2.5
    assert state["s"].get() == "text"
    assert state["yes"].get() is True
    assert state["nothing"].get() is None
    assert state.execute("assert(n == 5 and s == 'text' and yes == true and nothing == nil)")


def test_nested_lookup_and_assignment(state, errors):
    assert state.execute("config = { window = { width = 640 }, list = { 10, 20 } }")
    assert state["config"]["window"]["width"].get() == 640
    assert state["config"]["list"][2].get() == 20
    assert state["config"]["window"]["width"]["deep"].get() is None
    assert state["config"]["window"].exists()
    assert not state["config"]["missing"].exists()

    state["config"]["window"]["height"] = 480
    state["config"]["list"][3] = 30
    assert state.execute("assert(config.window.height == 480 and #config.list == 3)")

    state["config"]["missing"]["x"] = 1
    assert len(errors) == 1
    assert "config.missing.x" in errors[0][1]


def test_call_lua_function(state, errors):
    assert state.execute("function add(a, b) return a + b end")
    assert state.execute("function pair() return 'a', 'b' end")
    assert state.execute("function nothing() end")
    assert state["add"](2, 3) == 5
    assert state["pair"]() == ("a", "b")
    assert state["nothing"]() is None
    assert state["string"]["upper"]("abc") == "ABC"
    assert errors == []


def test_call_failure_is_reported(state, errors):
    assert state.execute("function explode() error('from lua') end")
    depth = state.size()
    assert state["explode"]() is None
    assert state.size() == depth
    assert errors[0][0] == state.api.status.errrun
    assert "from lua" in errors[0][1]


def test_python_callable_exposed_to_lua(state, errors):
    state["double"] = lambda x: x * 2
    state["swap"] = lambda a, b: (b, a)
    assert state.execute("y = double(21); p, q = swap(1, 'two')")
    assert state["y"].get() == 42
    assert state["p"].get() == "two"
    assert state["q"].get() == 1
    assert errors == []


def test_python_callable_exception_reported_with_cause(state, errors):
    def fail():
        raise ValueError("host side failure")

    state["fail"] = fail
    assert state.execute("r = fail()")
    assert state["r"].get() is None
    code, message, exc = errors[0]
    assert code == state.api.status.errrun
    assert "host side failure" in message
    assert isinstance(exc, ValueError)


def test_tables_round_trip_as_references(state):
    assert state.execute("config = { name = 'cfg' }")
    ref = state["config"].get()
    assert isinstance(ref, LuaRef)
    assert ref.valid

    state["alias"] = ref
    assert state.execute("assert(alias == config)")
    assert state.registry.get(ref.ref) is not None

    ref.release()
    assert not ref.valid
    ref.release()


def test_selector_operations_are_stack_neutral(state):
    assert state.execute("t = { a = { b = 1 } }; function f(...) return ... end")
    depth = state.size()
    state["t"]["a"]["b"].get()
    state["t"]["a"]["c"] = 2
    state["f"](1, 2, 3)
    state["t"].ref()
    state["missing"]["x"].get()
    assert state.size() == depth


def test_unsupported_value_type_raises(state):
    with pytest.raises(TypeError):
        state["bad"] = object()


STRICT_GLOBALS = """
setmetatable(_G, {
  __index = function(_, k) error('undefined variable ' .. k, 2) end,
  __newindex = function(_, k) error('assignment to undeclared ' .. k, 2) end,
})
"""


def test_strict_globals_errors_are_reported(state, errors):
    assert state.execute("declared = 1")
    assert state.execute(STRICT_GLOBALS)
    depth = state.size()

    assert state["missing"].get() is None
    assert not state["missing"].exists()
    assert state["missing"].ref() is None
    assert state["missing"]() is None
    assert state["declared"].get() == 1
    assert state["declared"].set(2) is True
    assert state["fresh"].set(5) is False
    state["other"] = 1

    assert state.size() == depth
    assert len(errors) == 6
    assert all(code == state.api.status.errrun for code, _, _ in errors)
    assert "undefined variable missing" in errors[0][1]
    assert "assignment to undeclared fresh" in errors[4][1]
    assert "assignment to undeclared other" in errors[5][1]
    assert state.execute("assert(declared == 2 and rawget(_G, 'fresh') == nil)")


def test_index_metamethods_run_protected(state, errors):
    assert state.execute(
        "proxy = setmetatable({}, { __index = function(_, k) return k .. '!' end })\n"
        "locked = setmetatable({}, { __index = function() error('no fields') end,"
        " __newindex = function() error('read only') end })"
    )
    assert state["proxy"]["hi"].get() == "hi!"
    assert state["locked"]["x"].get() is None
    assert state["locked"]["x"].set(1) is False
    assert len(errors) == 2
    assert errors[0][1].endswith("no fields")
    assert errors[1][1].endswith("read only")


def test_callback_arguments_do_not_pin_registry_slots(state):
    state["cb"] = lambda t: None
    assert state.execute("before = #debug.getregistry()")
    assert state.execute("for i = 1, 1000 do cb({}) end after = #debug.getregistry()")
    assert state["after"].get() - state["before"].get() < 10


def test_dropped_reference_unpins_its_value(state):
    assert state.execute("t = {}")
    ref = state["t"].ref()
    slot = ref.ref
    del ref
    again = state["t"].ref()
    assert again.ref == slot


def test_kept_callback_argument_stays_pinned(state):
    kept = []
    state["keep"] = kept.append
    assert state.execute("keep({ name = 'kept' })")
    assert state.execute("collectgarbage()")
    assert kept[0].valid
    state["back"] = kept[0]
    assert state.execute("assert(back.name == 'kept')")


def test_inert_registry_keeps_no_trampolines(state):
    inert = Registry(state.api, None, None)
    inert.raw_function(lambda L: 0)
    inert.function(lambda: None)
    assert 0 not in _TRAMPOLINES


def test_trampolines_live_until_owner_closes_handle(lua_library):
    owner = State(True, library=lua_library)
    handle = owner.lua_state
    borrowed = State(lua_state=handle, library=lua_library)
    borrowed["cb"] = lambda: 1
    borrowed.close()
    assert handle in _TRAMPOLINES
    assert owner.execute("assert(cb() == 1)")
    owner.close()
    assert handle not in _TRAMPOLINES
