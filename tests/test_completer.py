import pytest

from quill.quill_completer import Completer


@pytest.fixture
def completer(introspector, scope):
    return Completer(introspector, scope)


def completions(result):
    return result["completions"]


def test_member_completion(completer):
    result = completer.get_completions("dog.fe")
    assert result == {"start": 4, "end": 6, "completions": ["fetch("]}


def test_class_context_completes_static_members(completer):
    assert completions(completer.get_completions("Dog.c")) == ["create(", "count"]


def test_bare_symbol_completion(completer):
    assert completions(completer.get_completions("x = a")) == ["animal", "app", "Animal"]


def test_constructor_completion(completer):
    assert completions(completer.get_completions("raise Ani")) == ["Animal("]


def test_variable_completion(completer):
    assert completions(completer.get_completions("del d")) == ["dog"]


@pytest.mark.parametrize("line", ["x = 'dog.f", "3.re", "# dog."])
def test_no_completion(completer, line):
    assert completer.get_completions(line) is None


def test_unresolved_context_completes_nothing(completer):
    assert completer.get_completions("nothing.x") == {"start": 8, "end": 9, "completions": []}


def test_expression_context_needs_evaluation(completer):
    assert completer.needs_evaluation("(dog).fe")
    assert not completer.needs_evaluation("dog.fe")
    assert not completer.needs_evaluation("fe")
    assert completions(completer.get_completions("(dog).fe", evaluate=False)) == []
    assert completions(completer.get_completions("(dog).fe", evaluate=True)) == ["fetch("]


def test_failed_evaluation_completes_nothing(completer):
    assert completions(completer.get_completions("(1 / 0).re", evaluate=True)) == []


def test_explicit_scope(completer, introspector):
    result = completer.get_completions("z", scope={"zebra": 1})
    assert completions(result) == ["zebra"]


def test_completion_annotations(completer):
    result = completer.get_completions("dog.fe", annotate=True)
    info = result["annotations"]["fetch("]
    assert info["kind"] == "method"
    assert info["description"] == "Fetch a thing."
    assert info["arguments"] == "thing"
    assert info["defined_in"] == "Dog"


def test_complete_symbol_by_kind(completer):
    assert completer.complete_symbol("sp", "method") == ["speak("]
    assert completer.complete_symbol("M", ["constant", "keyword"]) == ["MAX_SIZE", "MIN_SIZE"]
    assert completer.complete_symbol("x", "bogus") == []
    annotated = completer.complete_symbol("look", "function", annotate=True)
    assert annotated[0]["name"] == "lookup("
    assert annotated[0]["description"] == "Find a thing by key."


def test_apropos(completer):
    found = completer.apropos("^spe", "method")
    assert [info["name"] for info in found] == ["speak(", "speak("]
    assert "definitions" in found[0]
    assert completer.apropos(42) == []


def test_who(completer):
    assert [info["name"] for info in completer.who_extends("Animal")] == ["Animal", "Dog", "Cat"]
    assert [info["name"] for info in completer.who_uses("walker")] == ["Dog"]
    assert [info["name"] for info in completer.who_implements("Walker")] == ["Dog"]
    assert completer.who_implements("Nothing") == []


def test_hint(completer):
    assert completer.get_hint("lookup(") == "KEY[, default=None]"
    assert completer.get_hint("lookup(1, ") == "key[, DEFAULT=None]"
    assert completer.get_hint("dog.fetch(") == "THING"
    assert completer.get_hint("missing(") is None


def test_documentation(completer):
    assert completer.get_documentation("lookup(") == (
        "function lookup(key[, default=None])\n\nFind a thing by key.\n\nFalls back to `default`."
    )
    assert completer.get_documentation("Dog(") == "class Dog(name)\n\nA good dog."
    assert completer.get_documentation("dog.speak(") == "method speak([loud=False, times=1])\n\nBark."
    assert completer.get_documentation("x = 1") is None


def test_short_documentation(completer):
    assert completer.get_short_documentation("lookup(") == "Find a thing by key."
    assert completer.get_short_documentation("len(") == "Return the number of items in a container."


def test_location(completer):
    assert completer.get_location("lookup(") == {"file": "zoo.py", "line": 1}
    assert completer.get_location("len(") is None
    assert completer.get_location("missing(") is None
