"""
Introspection of the running program.

The completion engine never touches the interpreter directly: everything it
knows about names, types and members comes through an Introspector. The
production implementation, LiveIntrospector, reads a scope mapping plus the
builtins; tests substitute a fixed fake.
"""

import builtins
import inspect
import keyword
import logging
import re
import sys
import types
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional

from quill.quill_datatypes import (
    Member,
    KIND_FUNCTION, KIND_CLASS, KIND_MODULE, KIND_METHOD, KIND_STATIC_METHOD,
    KIND_PROPERTY, KIND_STATIC_PROPERTY, KIND_CLASS_CONSTANT,
)

logger = logging.getLogger(__name__)

VISIBILITY_INSTANCE = "instance"
VISIBILITY_STATIC = "static"

RELATION_IMPLEMENTS = "implements"
RELATION_EXTENDS = "extends"
RELATION_USES = "uses"
RELATIONS = (RELATION_IMPLEMENTS, RELATION_EXTENDS, RELATION_USES)

STATIC_KINDS = frozenset({KIND_STATIC_METHOD, KIND_STATIC_PROPERTY, KIND_CLASS_CONSTANT, KIND_CLASS})

# Bookkeeping entries of a module namespace, never shown as variables.
HIDDEN_NAMES = frozenset({
    "__builtins__", "__name__", "__doc__", "__package__", "__loader__", "__spec__",
})

_CONSTANT_NAME = re.compile(r"[A-Z][A-Z0-9_]*")
_BUILTIN_CONSTANTS = ("Ellipsis", "NotImplemented", "__debug__")


def visible_names(scope: Mapping[str, Any]) -> List[str]:
    return [name for name in scope if name not in HIDDEN_NAMES]


def is_private(name: str) -> bool:
    return name.startswith("_")


def qualified_name(cls: type) -> str:
    module = getattr(cls, "__module__", None)
    if module in (None, "builtins", "__main__"):
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def name_matches(subjects: Iterable[str], suffix: str) -> bool:
    """True if any subject equals `suffix` or ends with `.suffix`, ignoring case."""
    lower = suffix.lower()
    tail = "." + lower
    return any(s.lower() == lower or s.lower().endswith(tail) for s in subjects)


def unwrap(entity: Any) -> Any:
    """Reach the function behind method wrappers and properties."""
    if isinstance(entity, (staticmethod, classmethod)):
        return entity.__func__
    if isinstance(entity, property):
        return entity.fget
    return entity


def first_line(doc: Optional[str]) -> Optional[str]:
    if not doc:
        return None
    for line in doc.splitlines():
        if line.strip():
            return line.strip()
    return None


def format_signature(signature: inspect.Signature, arg: int = -1) -> str:
    """Render a signature as `a, b[, c=1]`, upper-casing parameter number `arg`."""
    params = list(signature.parameters.values())
    if params and params[0].name in ("self", "cls"):
        params = params[1:]

    rendered = []
    for position, param in enumerate(params):
        name = param.name.upper() if position == arg else param.name
        if param.kind is param.VAR_POSITIONAL:
            name = "*" + name
        elif param.kind is param.VAR_KEYWORD:
            name = "**" + name
        if param.default is not param.empty:
            default = re.sub(r"\s+", " ", repr(param.default))
            name = f"{name}={default}"
        optional = param.default is not param.empty or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD)
        rendered.append((name, optional))

    required = ", ".join(text for text, optional in rendered if not optional)
    optional = ", ".join(text for text, optional in rendered if optional)
    if required and optional:
        return f"{required}[, {optional}]"
    if required:
        return required
    if optional:
        return f"[{optional}]"
    return ""


class Introspector(ABC):
    """Read-only view of the names, types and members of a running program."""

    @abstractmethod
    def keywords(self) -> List[str]: ...

    @abstractmethod
    def declared_types(self) -> List[str]: ...

    @abstractmethod
    def declared_interfaces(self) -> List[str]: ...

    @abstractmethod
    def declared_traits(self) -> List[str]: ...

    @abstractmethod
    def callables(self) -> List[str]: ...

    @abstractmethod
    def constants(self) -> List[str]: ...

    @abstractmethod
    def global_names(self) -> List[str]: ...

    @abstractmethod
    def resolve(self, name: str) -> Any:
        """Look a (dotted) name up without running user code. Raises LookupError."""

    @abstractmethod
    def is_type(self, entity: Any) -> bool: ...

    @abstractmethod
    def members_of(self, context: Any, visibility: str, private: bool = False,
                   inherited: bool = True) -> List[Member]: ...

    @abstractmethod
    def relationship_test(self, type_name: str, candidate: str, relation: str) -> bool:
        """True when `type_name` stands in `relation` to the type named `candidate`."""

    @abstractmethod
    def doc_of(self, entity: Any) -> Optional[str]: ...

    @abstractmethod
    def signature_of(self, entity: Any, arg: int = -1) -> Optional[str]: ...

    @abstractmethod
    def location_of(self, entity: Any) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def parent_of(self, type_name: str) -> Optional[str]: ...


class LiveIntrospector(Introspector):
    """Introspects a live scope mapping plus the interpreter's builtins.

    Nothing here evaluates user code: attribute chains are followed with
    inspect.getattr_static, so properties and __getattr__ hooks never run.
    """

    def __init__(self, scope: Mapping[str, Any]):
        self.scope = scope
        self._type_map: Optional[Dict[str, type]] = None

    # --------------------------
    # Global names
    # --------------------------

    def keywords(self):
        return list(keyword.kwlist) + list(keyword.softkwlist)

    def _types(self) -> Dict[str, type]:
        if self._type_map is not None:
            return self._type_map
        found: Dict[str, type] = {}
        for name, value in vars(builtins).items():
            if isinstance(value, type) and not is_private(name):
                found[name] = value
        for name, value in self.scope.items():
            if name in HIDDEN_NAMES:
                continue
            if isinstance(value, type):
                found[name] = value
            elif isinstance(value, types.ModuleType):
                prefix = value.__name__
                for attr, member in vars(value).items():
                    if (isinstance(member, type) and not is_private(attr)
                            and str(getattr(member, "__module__", "")).startswith(prefix)):
                        found[f"{name}.{attr}"] = member
        self._type_map = found
        return found

    def declared_types(self):
        return list(self._types())

    def declared_interfaces(self):
        return [name for name, cls in self._types().items() if self._is_interface(cls)]

    def declared_traits(self):
        types_ = self._types()
        mixins = set()
        for cls in types_.values():
            mixins.update(id(base) for base in cls.__bases__[1:])
        return [name for name, cls in types_.items()
                if id(cls) in mixins or cls.__name__.endswith("Mixin")]

    @staticmethod
    def _is_interface(cls: type) -> bool:
        return inspect.isabstract(cls) or bool(getattr(cls, "_is_protocol", False))

    def callables(self):
        names = [name for name, value in vars(builtins).items()
                 if callable(value) and not isinstance(value, type) and not is_private(name)]
        names += [name for name, value in self.scope.items()
                  if name not in HIDDEN_NAMES and callable(value) and not isinstance(value, type)]
        return names

    def constants(self):
        names = list(_BUILTIN_CONSTANTS)
        names += [name for name, value in self.scope.items()
                  if _CONSTANT_NAME.fullmatch(name) and not callable(value)
                  and not isinstance(value, types.ModuleType)]
        return names

    def global_names(self):
        main = sys.modules.get("__main__")
        if main is None:
            return []
        return [name for name in vars(main) if not is_private(name)]

    # --------------------------
    # Entities
    # --------------------------

    def resolve(self, name):
        head, *rest = name.split(".")
        if head in self.scope and head not in HIDDEN_NAMES:
            entity = self.scope[head]
        elif hasattr(builtins, head):
            entity = getattr(builtins, head)
        else:
            raise LookupError(name)
        for attr in rest:
            try:
                found = inspect.getattr_static(entity, attr)
            except AttributeError as e:
                raise LookupError(name) from e
            if not isinstance(entity, (type, types.ModuleType)) and inspect.isdatadescriptor(found):
                # the value only exists once the descriptor runs
                raise LookupError(name)
            entity = unwrap(found)
        return entity

    def is_type(self, entity):
        return isinstance(entity, type)

    def _type_named(self, type_name: str) -> Optional[type]:
        cls = self._types().get(type_name)
        if cls is not None:
            return cls
        try:
            cls = self.resolve(type_name)
        except LookupError:
            return None
        return cls if isinstance(cls, type) else None

    def _names_of(self, cls: type) -> List[str]:
        names = [name for name, other in self._types().items() if other is cls]
        names.append(qualified_name(cls))
        return names

    # --------------------------
    # Members
    # --------------------------

    def members_of(self, context, visibility, private=False, inherited=True):
        if isinstance(context, types.ModuleType):
            return self._module_members(context, private)

        cls = context if isinstance(context, type) else type(context)
        owners = cls.__mro__ if inherited else (cls,)
        seen = set()
        members = []
        for owner in owners:
            for name, raw in vars(owner).items():
                if name in seen:
                    continue
                seen.add(name)
                if not private and is_private(name):
                    continue
                member = self._classify(name, raw, owner)
                if visibility == VISIBILITY_STATIC and member.kind not in STATIC_KINDS:
                    continue
                members.append(member)

        if visibility == VISIBILITY_INSTANCE and not isinstance(context, type):
            try:
                attributes = vars(context)
            except TypeError:
                attributes = {}
            for name, value in attributes.items():
                if name in seen or (not private and is_private(name)):
                    continue
                members.append(Member(name, KIND_PROPERTY, qualified_name(cls), value, False))
        return members

    @staticmethod
    def _classify(name: str, raw: Any, owner: type) -> Member:
        owner_name = qualified_name(owner)
        if isinstance(raw, (staticmethod, classmethod)):
            return Member(name, KIND_STATIC_METHOD, owner_name, raw.__func__, True)
        if isinstance(raw, type):
            return Member(name, KIND_CLASS, owner_name, raw, True)
        if inspect.isdatadescriptor(raw):
            return Member(name, KIND_PROPERTY, owner_name, raw, False)
        if inspect.isfunction(raw) or inspect.ismethoddescriptor(raw) or inspect.isbuiltin(raw):
            return Member(name, KIND_METHOD, owner_name, raw, True)
        if _CONSTANT_NAME.fullmatch(name):
            return Member(name, KIND_CLASS_CONSTANT, owner_name, raw, False)
        return Member(name, KIND_STATIC_PROPERTY, owner_name, raw, False)

    @staticmethod
    def _module_members(module: types.ModuleType, private: bool) -> List[Member]:
        members = []
        for name, value in vars(module).items():
            if not private and is_private(name):
                continue
            if isinstance(value, type):
                kind = KIND_CLASS
            elif isinstance(value, types.ModuleType):
                kind = KIND_MODULE
            elif callable(value):
                kind = KIND_FUNCTION
            else:
                kind = KIND_PROPERTY
            members.append(Member(name, kind, module.__name__, value, kind in (KIND_CLASS, KIND_FUNCTION)))
        return members

    # --------------------------
    # Type relationships
    # --------------------------

    def relationship_test(self, type_name, candidate, relation):
        cls = self._type_named(type_name)
        if cls is None:
            return False
        if relation == RELATION_EXTENDS:
            return any(name_matches(self._names_of(c), candidate) for c in cls.__mro__)
        if relation == RELATION_USES:
            return any(name_matches(self._names_of(b), candidate) for b in cls.__bases__)
        if relation == RELATION_IMPLEMENTS:
            for name in self.declared_interfaces():
                if not name_matches([name], candidate):
                    continue
                interface = self._types()[name]
                if interface is cls:
                    continue
                try:
                    if issubclass(cls, interface):
                        return True
                except TypeError as e:
                    logger.debug("issubclass(%s, %s) failed: %s", type_name, name, e)
            return False
        raise ValueError(f"unknown relation {relation!r}")

    def parent_of(self, type_name):
        cls = self._type_named(type_name)
        if cls is None:
            return None
        for base in cls.__bases__:
            if base is not object:
                return qualified_name(base)
        return None

    # --------------------------
    # Documentation
    # --------------------------

    def doc_of(self, entity):
        entity = unwrap(entity)
        if entity is None:
            return None
        return inspect.getdoc(entity)

    def signature_of(self, entity, arg=-1):
        entity = unwrap(entity)
        try:
            signature = inspect.signature(entity)
        except (TypeError, ValueError):
            return None
        return format_signature(signature, arg)

    def location_of(self, entity):
        entity = unwrap(entity)
        code = getattr(entity, "__code__", None)
        if code is not None:
            return {"file": code.co_filename, "line": code.co_firstlineno}
        try:
            path = inspect.getsourcefile(entity) or inspect.getfile(entity)
        except (OSError, TypeError):
            return None
        try:
            _, line = inspect.getsourcelines(entity)
        except (OSError, TypeError):
            line = None
        return {"file": path, "line": line}
