"""
Symbol sources: enumerations of completion candidates.

Every source is built from a RuntimeSnapshot and offers symbols(),
completions(prefix) and apropos(filter). Merged sources concatenate their
parts in order; aggregate sources walk every declared type.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from quill.quill_datatypes import (
    KIND_FUNCTION, KIND_CLASS, KIND_MODULE, KIND_METHOD, KIND_STATIC_METHOD,
    KIND_PROPERTY, KIND_STATIC_PROPERTY, KIND_CLASS_CONSTANT,
)
from quill.quill_introspect import (
    Introspector, LiveIntrospector, VISIBILITY_INSTANCE, VISIBILITY_STATIC,
    is_private, visible_names,
)
from quill.quill_symbols import (
    Symbol, Variable, Constant, Keyword, FunctionName, ClassName, InterfaceName,
    TraitName, ClassConstructor, MemberSymbol, MultiSymbol,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSnapshot:
    """What the sources may see: an introspector and the visible variable names."""
    introspector: Introspector
    variables: Tuple[str, ...] = ()

    @classmethod
    def of(cls, scope: Mapping[str, Any]) -> "RuntimeSnapshot":
        return cls(LiveIntrospector(scope), tuple(visible_names(scope)))


# --------------------------
# Matching
# --------------------------

def insensitive_completions(prefix: str, symbols: Iterable[Symbol]) -> List[Symbol]:
    if not prefix:
        return list(symbols)
    lower = prefix.lower()
    return [s for s in symbols if s.name.lower().startswith(lower)]


def sensitive_completions(prefix: str, symbols: Iterable[Symbol]) -> List[Symbol]:
    if not prefix:
        return list(symbols)
    return [s for s in symbols if s.name.startswith(prefix)]


def apropos(query: Union[str, Sequence[str], None], candidates: Iterable[Symbol]) -> List[Symbol]:
    """Keep the candidates whose display name matches every regexp in `query`."""
    if not query:
        return list(candidates)
    if isinstance(query, str):
        terms = [query]
    elif isinstance(query, (list, tuple)):
        terms = list(query)
    else:
        raise TypeError("apropos filter should be a string or a list of strings")
    regexps = [re.compile(term, re.IGNORECASE) for term in terms]
    return [s for s in candidates if all(r.search(str(s)) for r in regexps)]


def _unique(names: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(names))


# --------------------------
# Base sources
# --------------------------

class SymbolSource:
    case_sensitive = False

    def __init__(self, snapshot: RuntimeSnapshot):
        self.snapshot = snapshot

    @property
    def introspector(self) -> Introspector:
        return self.snapshot.introspector

    def symbols(self, private: bool = False) -> List[Symbol]:
        raise NotImplementedError

    def completions(self, prefix: str) -> List[Symbol]:
        symbols = self.symbols(private=is_private(prefix))
        if self.case_sensitive:
            return sensitive_completions(prefix, symbols)
        return insensitive_completions(prefix, symbols)

    def apropos(self, query) -> List[Symbol]:
        return apropos(query, self.symbols())


class NoSource(SymbolSource):
    """Dummy source with no completions."""

    def __init__(self, snapshot: Optional[RuntimeSnapshot] = None):
        self.snapshot = snapshot

    def symbols(self, private=False):
        return []


class NamedSource(SymbolSource):
    """A source listing plain names, each wrapped in `symbol_class`."""
    symbol_class = Symbol

    def all_names(self) -> Iterable[str]:
        raise NotImplementedError

    def names(self, private: bool = False) -> List[str]:
        return [n for n in _unique(self.all_names()) if private or not is_private(n)]

    def symbol(self, name: str) -> Symbol:
        return self.symbol_class(name, self.introspector)

    def symbols(self, private=False):
        return [self.symbol(name) for name in self.names(private)]


class MergeSources(SymbolSource):
    def __init__(self, sources: Sequence[SymbolSource]):
        self.sources = list(sources)
        self.snapshot = self.sources[0].snapshot if self.sources else None

    def symbols(self, private=False):
        return [s for source in self.sources for s in source.symbols(private)]

    def completions(self, prefix):
        return [s for source in self.sources for s in source.completions(prefix)]

    def apropos(self, query):
        return [s for source in self.sources for s in source.apropos(query)]


# --------------------------
# Globally-defined names
# --------------------------

class Variables(NamedSource):
    symbol_class = Variable

    def all_names(self):
        return list(self.snapshot.variables) + self.introspector.global_names()


class Functions(NamedSource):
    symbol_class = FunctionName

    def all_names(self):
        return self.introspector.callables()


class Constants(NamedSource):
    symbol_class = Constant
    case_sensitive = True

    def all_names(self):
        return self.introspector.constants()


class Keywords(NamedSource):
    symbol_class = Keyword

    def all_names(self):
        return self.introspector.keywords()


class ClassNames(NamedSource):
    symbol_class = ClassName

    def all_names(self):
        return self.introspector.declared_types()


class ClassConstructors(ClassNames):
    symbol_class = ClassConstructor


class Interfaces(NamedSource):
    symbol_class = InterfaceName

    def all_names(self):
        return self.introspector.declared_interfaces()


class Traits(NamedSource):
    symbol_class = TraitName

    def all_names(self):
        return self.introspector.declared_traits()


# --------------------------
# Members of an object or class
# --------------------------

class MemberSource(SymbolSource):
    """Members of `context` (an object, class or module) of the listed kinds."""
    visibility = VISIBILITY_INSTANCE
    kinds: frozenset = frozenset()

    def __init__(self, snapshot: RuntimeSnapshot, context: Any, inherited: bool = True):
        super().__init__(snapshot)
        self.context = context
        self.inherited = inherited

    def members(self, private=False):
        found = self.introspector.members_of(
            self.context, self.visibility, private=private, inherited=self.inherited)
        return [m for m in found if m.kind in self.kinds]

    def symbols(self, private=False):
        return [MemberSymbol(m, self.introspector) for m in self.members(private)]


class Methods(MemberSource):
    kinds = frozenset({KIND_METHOD, KIND_STATIC_METHOD, KIND_FUNCTION, KIND_CLASS})


class Properties(MemberSource):
    case_sensitive = True
    kinds = frozenset({KIND_PROPERTY, KIND_STATIC_PROPERTY, KIND_CLASS_CONSTANT, KIND_MODULE})


class StaticMethods(MemberSource):
    visibility = VISIBILITY_STATIC
    kinds = frozenset({KIND_STATIC_METHOD})


class StaticProperties(MemberSource):
    visibility = VISIBILITY_STATIC
    case_sensitive = True
    kinds = frozenset({KIND_STATIC_PROPERTY, KIND_CLASS})


class ClassConstants(MemberSource):
    visibility = VISIBILITY_STATIC
    case_sensitive = True
    kinds = frozenset({KIND_CLASS_CONSTANT})


# --------------------------
# Merged sources
# --------------------------

class BareNames(MergeSources):
    def __init__(self, snapshot: RuntimeSnapshot):
        super().__init__([
            Keywords(snapshot),
            Variables(snapshot),
            Constants(snapshot),
            Functions(snapshot),
            ClassNames(snapshot),
            Interfaces(snapshot),
        ])


class Members(MergeSources):
    def __init__(self, snapshot: RuntimeSnapshot, context: Any):
        super().__init__([
            Methods(snapshot, context),
            Properties(snapshot, context),
        ])


class StaticMembers(MergeSources):
    def __init__(self, snapshot: RuntimeSnapshot, context: Any):
        super().__init__([
            StaticMethods(snapshot, context),
            StaticProperties(snapshot, context),
            ClassConstants(snapshot, context),
        ])


# --------------------------
# Aggregates across all declared types
# --------------------------
# Mostly useful for apropos rather than tab-completion.

def symbols_for_all_types(snapshot: RuntimeSnapshot, source_class: type,
                          group_by: Optional[Callable[[Symbol], Hashable]] = None) -> List[Symbol]:
    """Collect the members each declared type itself declares, grouping duplicates."""
    introspector = snapshot.introspector
    groups: Dict[Hashable, List[Symbol]] = {}
    for type_name in introspector.declared_types():
        try:
            entity = introspector.resolve(type_name)
        except LookupError:
            logger.debug("declared type %s does not resolve", type_name)
            continue
        for symbol in source_class(snapshot, entity, inherited=False).symbols():
            key = group_by(symbol) if group_by else (symbol.name, symbol.kind)
            groups.setdefault(key, []).append(symbol)
    return [group[0] if len(group) == 1 else MultiSymbol(group) for group in groups.values()]


class AllMethods(SymbolSource):
    def symbols(self, private=False):
        return symbols_for_all_types(self.snapshot, Methods, self.group_by)

    def group_by(self, symbol: Symbol) -> Hashable:
        return (symbol.name, symbol.kind, self.introspector.signature_of(symbol.member.value))


class AllProperties(SymbolSource):
    case_sensitive = True

    def symbols(self, private=False):
        # class-level data is reported by the static aggregates
        return [s for s in symbols_for_all_types(self.snapshot, Properties) if s.kind == KIND_PROPERTY]


class AllStaticProperties(SymbolSource):
    case_sensitive = True

    def symbols(self, private=False):
        return symbols_for_all_types(self.snapshot, StaticProperties)


class AllClassConstants(SymbolSource):
    case_sensitive = True

    def symbols(self, private=False):
        return symbols_for_all_types(self.snapshot, ClassConstants)


class AllMembers(MergeSources):
    def __init__(self, snapshot: RuntimeSnapshot):
        super().__init__([
            AllMethods(snapshot),
            AllProperties(snapshot),
            AllStaticProperties(snapshot),
            AllClassConstants(snapshot),
        ])


class AllSymbols(MergeSources):
    def __init__(self, snapshot: RuntimeSnapshot):
        super().__init__([
            AllMembers(snapshot),
            Variables(snapshot),
            Functions(snapshot),
            Constants(snapshot),
            Keywords(snapshot),
            ClassNames(snapshot),
            Interfaces(snapshot),
        ])
