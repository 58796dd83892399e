"""
Completion candidates.

A symbol has a display name (what gets inserted at the cursor), a kind and
an annotate() method returning a JSON-ready dict of whatever the
introspector can tell about it. Annotation is lazy: completion lists only
need the names.
"""

import inspect
import logging
from typing import Any, Dict, List, Optional

from quill.quill_datatypes import (
    Member,
    KIND_VARIABLE, KIND_FUNCTION, KIND_CLASS, KIND_INTERFACE, KIND_KEYWORD,
    KIND_CONSTANT, KIND_CLASS_CONSTANT,
)
from quill.quill_introspect import Introspector, first_line

logger = logging.getLogger(__name__)


# =================================================================
# Annotation helpers
# =================================================================

def annotate_basic(symbol) -> Dict[str, Any]:
    return {"name": str(symbol), "kind": symbol.kind}


def annotate_location(introspector: Introspector, entity) -> Dict[str, Any]:
    location = introspector.location_of(entity)
    if not location:
        return {}
    return {"file": location.get("file"), "line": location.get("line")}


def annotate_docstring(introspector: Introspector, entity) -> Dict[str, Any]:
    return {"description": first_line(introspector.doc_of(entity))}


def annotate_parent(introspector: Introspector, type_name: str) -> Dict[str, Any]:
    parent = introspector.parent_of(type_name)
    return {"parent": parent} if parent else {}


def annotate_declaring_class(owner: str) -> Dict[str, Any]:
    return {"defined_in": owner}


def annotate_signature(introspector: Introspector, entity) -> Dict[str, Any]:
    return {"arguments": introspector.signature_of(entity) or ""}


# =================================================================
# Symbols without an object/class context
# =================================================================

class Symbol:
    kind: str = ""

    def __init__(self, name: str, introspector: Optional[Introspector] = None):
        self.name = name
        self.introspector = introspector

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"

    def annotate(self) -> Dict[str, Any]:
        return annotate_basic(self)

    def _entity(self):
        if self.introspector is None:
            return None
        try:
            return self.introspector.resolve(self.name)
        except LookupError:
            logger.debug("cannot resolve %s for annotation", self.name)
            return None


class Variable(Symbol):
    kind = KIND_VARIABLE


class Constant(Symbol):
    kind = KIND_CONSTANT


class Keyword(Symbol):
    kind = KIND_KEYWORD


class FunctionName(Symbol):
    kind = KIND_FUNCTION

    def __str__(self):
        return self.name + "("

    def annotate(self):
        info = annotate_basic(self)
        entity = self._entity()
        if entity is None:
            return info
        info.update(annotate_location(self.introspector, entity))
        info.update(annotate_docstring(self.introspector, entity))
        info.update(annotate_signature(self.introspector, entity))
        return info


class ClassName(Symbol):
    kind = KIND_CLASS

    def annotate(self):
        info = annotate_basic(self)
        entity = self._entity()
        if entity is None:
            return info
        info.update(annotate_location(self.introspector, entity))
        info.update(annotate_docstring(self.introspector, entity))
        info.update(annotate_parent(self.introspector, self.name))
        return info


class InterfaceName(ClassName):
    kind = KIND_INTERFACE


class TraitName(ClassName):
    """A class mixed into others."""
    kind = KIND_CLASS


class ClassConstructor(ClassName):
    """A class name completed as a call."""

    def __str__(self):
        return self.name + "("

    def annotate(self):
        info = annotate_basic(self)
        entity = self._entity()
        if entity is None:
            return info
        info.update(annotate_location(self.introspector, entity))
        info.update(annotate_docstring(self.introspector, entity))
        info.update(annotate_signature(self.introspector, entity))
        if not info.get("description"):
            init = getattr(entity, "__init__", None)
            if init is not None and init is not object.__init__:
                info.update(annotate_docstring(self.introspector, init))
        return info


# =================================================================
# Symbols with an object/class context
# =================================================================

class MemberSymbol(Symbol):
    """A method, property or constant reached through a context."""

    def __init__(self, member: Member, introspector: Optional[Introspector] = None):
        super().__init__(member.name, introspector)
        self.member = member
        self.kind = member.kind

    def __str__(self):
        return self.name + "(" if self.member.callable else self.name

    def annotate(self):
        info = annotate_basic(self)
        if self.kind == KIND_CLASS_CONSTANT or self.introspector is None:
            return info
        value = self.member.value
        if self.member.callable:
            info.update(annotate_docstring(self.introspector, value))
            info.update(annotate_location(self.introspector, value))
            info.update(annotate_signature(self.introspector, value))
        elif inspect.isdatadescriptor(value):
            info.update(annotate_docstring(self.introspector, value))
        info.update(annotate_declaring_class(self.member.owner))
        return info


class MultiSymbol(Symbol):
    """Same-named symbols of one kind from several declaring types."""

    def __init__(self, symbols: List[Symbol]):
        if not symbols:
            raise ValueError("MultiSymbol needs at least one symbol")
        super().__init__(symbols[0].name, symbols[0].introspector)
        self.symbols = symbols
        self.kind = symbols[0].kind

    def __str__(self):
        return str(self.symbols[0])

    def annotate(self):
        info = self.symbols[0].annotate()
        for key in ("file", "line", "defined_in"):
            info.pop(key, None)
        info["definitions"] = [symbol.annotate() for symbol in self.symbols]
        return info
