import pytest

from quill.quill_sources import (
    Keywords, Variables, Constants, Functions, ClassNames, ClassConstructors,
    Interfaces, Traits, NoSource, MergeSources, BareNames, Members, StaticMembers,
    Methods, AllMethods, AllProperties, AllStaticProperties, AllClassConstants, AllSymbols,
    apropos, symbols_for_all_types,
)
from quill.quill_symbols import MultiSymbol


def names(symbols):
    return [str(s) for s in symbols]


def test_keywords_complete_case_insensitively(snapshot):
    assert names(Keywords(snapshot).completions("I")) == ["if", "import", "in"]


def test_empty_prefix_lists_everything_in_order(snapshot):
    assert names(Keywords(snapshot).completions("")) == ["if", "import", "in", "lambda"]


def test_constants_are_case_sensitive(snapshot):
    assert names(Constants(snapshot).completions("MA")) == ["MAX_SIZE"]
    assert names(Constants(snapshot).completions("ma")) == []


def test_variables_hide_private_names_unless_asked(snapshot):
    assert names(Variables(snapshot).completions("")) == ["animal", "dog", "app"]
    assert names(Variables(snapshot).completions("_")) == ["_hidden"]


def test_function_names_open_a_call(snapshot):
    assert names(Functions(snapshot).completions("l")) == ["len(", "lookup("]


def test_class_sources(snapshot):
    assert names(ClassNames(snapshot).completions("d")) == ["Dog"]
    assert names(ClassConstructors(snapshot).completions("d")) == ["Dog("]
    assert names(Interfaces(snapshot).completions("")) == ["Walker"]
    assert names(Traits(snapshot).completions("w")) == ["Walker"]


def test_no_source(snapshot):
    assert NoSource(snapshot).completions("a") == []
    assert NoSource().apropos("a") == []


def test_bare_names_merge_in_order(snapshot):
    assert names(BareNames(snapshot).completions("a")) == ["animal", "app", "Animal"]
    assert names(BareNames(snapshot).completions("l")) == ["lambda", "len(", "lookup("]


def test_instance_members(snapshot, introspector):
    dog = introspector.entities["dog"]
    assert names(Members(snapshot, dog).completions("")) == [
        "speak(", "fetch(", "create(", "name", "count", "LEGS",
    ]


def test_member_properties_are_case_sensitive(snapshot, introspector):
    dog = introspector.entities["dog"]
    assert names(Members(snapshot, dog).completions("n")) == ["name"]
    assert names(Members(snapshot, dog).completions("N")) == []
    assert names(Members(snapshot, dog).completions("F")) == ["fetch("]


def test_private_members_need_private_prefix(snapshot, introspector):
    dog = introspector.entities["dog"]
    assert names(Members(snapshot, dog).completions("_")) == ["_secret("]


def test_static_members(snapshot, introspector):
    assert names(StaticMembers(snapshot, introspector.types["Dog"]).completions("")) == ["create(", "count", "LEGS"]
    assert names(StaticMembers(snapshot, introspector.types["Dog"]).completions("c")) == ["create(", "count"]


def test_declared_members_only(snapshot, introspector):
    assert names(Methods(snapshot, introspector.types["Cat"], inherited=False).completions("")) == ["speak("]


def test_all_methods_groups_identical_signatures(snapshot):
    symbols = AllMethods(snapshot).symbols()
    assert names(symbols) == ["speak(", "create(", "speak(", "fetch("]

    grouped = symbols[0]
    assert isinstance(grouped, MultiSymbol)
    assert [s.member.owner for s in grouped.symbols] == ["Animal", "Cat"]

    info = grouped.annotate()
    assert info["name"] == "speak("
    assert "defined_in" not in info
    assert [d["defined_in"] for d in info["definitions"]] == ["Animal", "Cat"]


def test_all_property_aggregates(snapshot):
    assert names(AllProperties(snapshot).symbols()) == ["name"]
    assert names(AllStaticProperties(snapshot).symbols()) == ["count"]
    assert names(AllClassConstants(snapshot).symbols()) == ["LEGS"]


def test_symbols_for_all_types_default_grouping(snapshot):
    symbols = symbols_for_all_types(snapshot, Methods)
    assert names(symbols) == ["speak(", "create(", "fetch("]
    assert len(symbols[0].symbols) == 3


def test_apropos_matches_every_term(snapshot):
    assert names(Keywords(snapshot).apropos(["^i", "n"])) == ["in"]
    assert names(Keywords(snapshot).apropos("M")) == ["import", "lambda"]
    assert names(Keywords(snapshot).apropos(None)) == ["if", "import", "in", "lambda"]


def test_apropos_rejects_other_filters(snapshot):
    with pytest.raises(TypeError):
        apropos(42, Keywords(snapshot).symbols())


def test_all_symbols_apropos(snapshot):
    found = names(AllSymbols(snapshot).apropos("^fetch"))
    assert found == ["fetch("]


def test_merge_sources_keep_source_order(snapshot):
    merged = MergeSources([Constants(snapshot), Keywords(snapshot)])
    assert names(merged.completions("")) == ["MAX_SIZE", "MIN_SIZE", "if", "import", "in", "lambda"]
