import pytest

from lunar import lua_CFunction


def _greeter_module(state):
    api = state.api

    def greet(L):
        name = api.tostring(L, 1) or "world"
        api.pushstring(L, f"hello {name}")
        return 1

    greet_c = state.registry.raw_function(greet)

    def luaopen_greeter(L):
        api.createtable(L, 0, 1)
        api.pushcfunction(L, greet_c)
        api.setfield(L, -2, "greet")
        # publish the global as a 5.1 luaL_register loader would
        api.pushvalue(L, -1)
        api.setglobal(L, "greeter")
        return 1

    return luaopen_greeter


@pytest.mark.parametrize("requiref", [True, False], ids=["requiref", "push-and-call"])
def test_open_lib_module_is_callable_from_scripts(state, errors, monkeypatch, requiref):
    if requiref and not state.api.has_requiref:
        pytest.skip("runtime predates luaL_requiref")
    monkeypatch.setattr(state.api, "has_requiref", requiref)

    depth = state.size()
    state.open_lib("greeter", _greeter_module(state))
    assert state.size() == depth

    assert state.execute("message = greeter.greet('lua')")
    assert state["message"].get() == "hello lua"
    assert errors == []


def test_open_lib_requiref_caches_module(state, errors):
    if not state.api.has_requiref:
        pytest.skip("runtime predates luaL_requiref")
    state.open_lib("greeter", _greeter_module(state))
    assert state.execute("assert(require('greeter') == greeter)")
    assert errors == []


def test_open_lib_accepts_ctypes_function(state):
    api = state.api

    def luaopen_answer(L):
        api.createtable(L, 0, 1)
        api.pushinteger(L, 42)
        api.setfield(L, -2, "value")
        api.pushvalue(L, -1)
        api.setglobal(L, "answer")
        return 1

    openf = lua_CFunction(luaopen_answer)
    state.open_lib("answer", openf)
    assert state["answer"]["value"].get() == 42


def test_open_lib_python_exception_goes_to_handler(state, errors):
    def luaopen_broken(L):
        raise RuntimeError("loader exploded")

    state.open_lib("broken", luaopen_broken)
    assert state["broken"].get() is None
    assert len(errors) == 1
    code, message, exc = errors[0]
    assert code == state.api.status.errrun
    assert "loader exploded" in message
    assert isinstance(exc, RuntimeError)
