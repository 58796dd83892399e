"""
Context-sensitive completion and information lookup.

The completer ties the textual ContextResolver to the symbol sources. It
never raises: whatever goes wrong while introspecting the program turns
into an empty answer, logged at debug level.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from quill.quill_context import ContextResolver
from quill.quill_datatypes import (
    ContextExpression,
    COMPLETE_MEMBER, COMPLETE_STATIC, COMPLETE_VARIABLE, COMPLETE_SYMBOL, COMPLETE_CLASS,
    CLASS_INFO, METHOD_INFO,
)
from quill.quill_introspect import (
    Introspector, LiveIntrospector, VISIBILITY_INSTANCE,
    RELATION_IMPLEMENTS, RELATION_EXTENDS, RELATION_USES, first_line, visible_names,
)
from quill.quill_sources import (
    RuntimeSnapshot, SymbolSource, NoSource, MergeSources,
    Variables, Functions, Constants, Keywords, ClassNames, ClassConstructors,
    Interfaces, Traits, BareNames, Members, StaticMembers,
    AllMethods, AllProperties, AllStaticProperties, AllClassConstants, AllSymbols,
)

logger = logging.getLogger(__name__)

_UNRESOLVED = object()


class Completer:
    """Performs context-sensitive completion and information lookup."""

    SOURCES = {
        "variable": Variables,
        "function": Functions,
        "constant": Constants,
        "keyword": Keywords,
        "class": ClassNames,
        "interface": Interfaces,
        "trait": Traits,
        "method": AllMethods,
        "property": AllProperties,
        "staticproperty": AllStaticProperties,
        "classconstant": AllClassConstants,
    }

    def __init__(self, introspector: Introspector, scope: Optional[Mapping[str, Any]] = None,
                 resolver: Optional[ContextResolver] = None):
        self.introspector = introspector
        self.scope = scope if scope is not None else {}
        self.resolver = resolver or ContextResolver()

    @classmethod
    def for_scope(cls, scope: Mapping[str, Any]) -> "Completer":
        return cls(LiveIntrospector(scope), scope)

    def snapshot(self, scope: Optional[Mapping[str, Any]] = None) -> RuntimeSnapshot:
        scope = self.scope if scope is None else scope
        return RuntimeSnapshot(self.introspector, tuple(visible_names(scope)))

    # =================================================================
    # Completion
    # =================================================================

    def needs_evaluation(self, line: str, cursor: Optional[int] = None) -> bool:
        """True when completing at `cursor` would have to run code."""
        info = self.resolver.completion_info(line, cursor)
        return info is not None and info.context is not None and not info.context.is_bare

    def needs_doc_evaluation(self, line: str, cursor: Optional[int] = None) -> bool:
        info = self.resolver.doc_info(line, cursor)
        return info is not None and info.context is not None and not info.context.is_bare

    def get_completions(self, line: str, cursor: Optional[int] = None, evaluate: bool = True,
                        scope: Optional[Mapping[str, Any]] = None,
                        annotate: bool = False) -> Optional[Dict[str, Any]]:
        """Return {start, end, completions[, annotations]} for the symbol at `cursor`.

        `start` and `end` delimit the partial symbol to be replaced. Returns
        None where no completion applies (inside a string, after a number).
        """
        info = self.resolver.completion_info(line, cursor)
        if info is None:
            return None

        try:
            source = self._source_for(info.how, info.context, evaluate, scope)
            completions = source.completions(info.symbol)
            response = {"start": info.start, "end": info.end, "completions": self.names(completions)}
            if annotate:
                response["annotations"] = self.annotation_map(completions)
        except Exception as e:
            logger.debug("completion of %r failed: %s", line, e)
            response = {"start": info.start, "end": info.end, "completions": []}
            if annotate:
                response["annotations"] = {}
        return response

    def _source_for(self, how: str, context: Optional[ContextExpression], evaluate: bool,
                    scope: Optional[Mapping[str, Any]]) -> SymbolSource:
        snapshot = self.snapshot(scope)
        if how in (COMPLETE_MEMBER, COMPLETE_STATIC):
            live = self._live_context(context, evaluate, scope)
            if live is _UNRESOLVED:
                return NoSource(snapshot)
            # a class on the left of the dot reaches its static members
            if how == COMPLETE_STATIC or self.introspector.is_type(live):
                return StaticMembers(snapshot, live)
            return Members(snapshot, live)
        if how == COMPLETE_VARIABLE:
            return Variables(snapshot)
        if how == COMPLETE_CLASS:
            return ClassConstructors(snapshot)
        if how == COMPLETE_SYMBOL:
            return BareNames(snapshot)
        raise ValueError(f"unexpected completion context {how!r}")

    def _live_context(self, context: ContextExpression, evaluate: bool,
                      scope: Optional[Mapping[str, Any]]) -> Any:
        """Resolve a context expression to the object it denotes."""
        if context.is_bare:
            try:
                return self.introspector.resolve(context.text)
            except LookupError:
                return _UNRESOLVED
        # avoid evaluating nonsense in source buffers
        if not evaluate:
            return _UNRESOLVED
        namespace = dict(self.scope if scope is None else scope)
        try:
            return eval(context.text, namespace)
        except Exception as e:
            logger.debug("evaluating context %r failed: %s", context.text, e)
            return _UNRESOLVED

    # =================================================================
    # Symbol lookup by kind
    # =================================================================

    def get_source(self, kind: Union[str, Sequence[str], None] = None,
                   scope: Optional[Mapping[str, Any]] = None) -> SymbolSource:
        snapshot = self.snapshot(scope)
        if not kind:
            return AllSymbols(snapshot)
        if isinstance(kind, (list, tuple)):
            return MergeSources([self.get_source(k, scope) for k in kind])
        source_class = self.SOURCES.get(kind)
        if source_class is None:
            logger.warning("Invalid symbol type %r", kind)
            return NoSource(snapshot)
        return source_class(snapshot)

    def complete_symbol(self, prefix: str, kind: Union[str, Sequence[str], None] = None,
                        scope: Optional[Mapping[str, Any]] = None, annotate: bool = False) -> List[Any]:
        try:
            completions = self.get_source(kind, scope).completions(prefix)
            return self.annotations(completions) if annotate else self.names(completions)
        except Exception as e:
            logger.debug("complete_symbol(%r, %r) failed: %s", prefix, kind, e)
            return []

    def apropos(self, query, kind: Union[str, Sequence[str], None] = None,
                scope: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Search all symbols (or those of `kind`) and return full details."""
        try:
            return self.annotations(self.get_source(kind, scope).apropos(query))
        except Exception as e:
            logger.warning("apropos %r failed: %s", query, e)
            return []

    # =================================================================
    # Type relationships
    # =================================================================

    def _who(self, relation: str, name: str) -> List[Dict[str, Any]]:
        try:
            classes = ClassNames(self.snapshot()).symbols()
            return self.annotations([
                c for c in classes if self.introspector.relationship_test(c.name, name, relation)
            ])
        except Exception as e:
            logger.debug("who %s %r failed: %s", relation, name, e)
            return []

    def who_implements(self, interface: str) -> List[Dict[str, Any]]:
        return self._who(RELATION_IMPLEMENTS, interface)

    def who_extends(self, cls: str) -> List[Dict[str, Any]]:
        """Classes having `cls` anywhere in their ancestry, itself included."""
        return self._who(RELATION_EXTENDS, cls)

    def who_uses(self, mixin: str) -> List[Dict[str, Any]]:
        return self._who(RELATION_USES, mixin)

    # =================================================================
    # Hints and documentation
    # =================================================================

    def _doc_target(self, line: str, cursor: Optional[int], evaluate: bool,
                    scope: Optional[Mapping[str, Any]]):
        """Return the DocInfo at `cursor` and the callable it names (or None)."""
        info = self.resolver.doc_info(line, cursor)
        if info is None:
            return None, None

        if info.how == METHOD_INFO:
            context = self._live_context(info.context, evaluate, scope)
            if context is _UNRESOLVED:
                return info, None
            for member in self.introspector.members_of(context, VISIBILITY_INSTANCE, private=True):
                if member.name == info.name:
                    return info, member.value
            return info, None

        try:
            entity = self.introspector.resolve(info.name)
        except LookupError:
            return info, None
        if self.introspector.is_type(entity):
            info.how = CLASS_INFO
        return info, entity

    def get_hint(self, line: str, cursor: Optional[int] = None, evaluate: bool = True,
                 scope: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        """One-line argument summary for the call open at `cursor`."""
        try:
            info, entity = self._doc_target(line, cursor, evaluate, scope)
            if entity is None:
                return None
            return self.introspector.signature_of(entity, info.arg)
        except Exception as e:
            logger.debug("hint for %r failed: %s", line, e)
            return None

    def get_documentation(self, line: str, cursor: Optional[int] = None, evaluate: bool = True,
                          scope: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        try:
            info, entity = self._doc_target(line, cursor, evaluate, scope)
            if entity is None:
                return None
            header = f"{info.how} {info.name}({self.introspector.signature_of(entity) or ''})"
            doc = self.introspector.doc_of(entity)
            return f"{header}\n\n{doc}" if doc else header
        except Exception as e:
            logger.debug("documentation for %r failed: %s", line, e)
            return None

    def get_short_documentation(self, line: str, cursor: Optional[int] = None, evaluate: bool = True,
                                scope: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        try:
            _, entity = self._doc_target(line, cursor, evaluate, scope)
            summary = first_line(self.introspector.doc_of(entity)) if entity is not None else None
        except Exception as e:
            logger.debug("short documentation for %r failed: %s", line, e)
            summary = None
        return summary or self.get_hint(line, cursor, evaluate, scope)

    def get_location(self, line: str, cursor: Optional[int] = None, evaluate: bool = True,
                     scope: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        try:
            _, entity = self._doc_target(line, cursor, evaluate, scope)
            if entity is None:
                return None
            return self.introspector.location_of(entity)
        except Exception as e:
            logger.debug("location for %r failed: %s", line, e)
            return None

    # =================================================================
    # Result shaping
    # =================================================================

    @staticmethod
    def names(symbols) -> List[str]:
        return list(dict.fromkeys(str(s) for s in symbols))

    @staticmethod
    def annotations(symbols) -> List[Dict[str, Any]]:
        return [s.annotate() for s in symbols]

    @staticmethod
    def annotation_map(symbols) -> Dict[str, Dict[str, Any]]:
        found: Dict[str, Dict[str, Any]] = {}
        for symbol in symbols:
            name = str(symbol)
            if name not in found:
                found[name] = symbol.annotate()
        return found
