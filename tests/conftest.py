import inspect

import pytest

from quill.quill_datatypes import (
    Member,
    KIND_METHOD, KIND_STATIC_METHOD, KIND_PROPERTY, KIND_STATIC_PROPERTY, KIND_CLASS_CONSTANT,
)
from quill.quill_introspect import (
    Introspector, VISIBILITY_STATIC, STATIC_KINDS,
    RELATION_EXTENDS, RELATION_USES, RELATION_IMPLEMENTS,
    format_signature, is_private, name_matches,
)
from quill.quill_sources import RuntimeSnapshot


# A small, fixed program for the completion engine to look at.

class Animal:
    """Something alive."""
    LEGS = 4
    count = 0

    def __init__(self, name):
        self.name = name

    def speak(self, loud=False):
        """Make a noise."""

    @staticmethod
    def create(name):
        """Build an animal."""
        return Animal(name)

    def _secret(self):
        pass


class Walker:
    """Anything that walks."""


class Dog(Animal, Walker):
    """A good dog."""

    def speak(self, loud=False, times=1):
        """Bark."""

    def fetch(self, thing):
        """Fetch a thing."""


class Cat(Animal):
    def speak(self, loud=False):
        """Meow."""


def lookup(key, default=None):
    """Find a thing by key.

    Falls back to `default`.
    """
    return default


class FakeIntrospector(Introspector):
    """Answers from fixed tables instead of a live interpreter."""

    def __init__(self):
        self.types = {"Animal": Animal, "Dog": Dog, "Cat": Cat, "Walker": Walker}
        self.interfaces = ["Walker"]
        self.entities = {
            "animal": Animal("rex"),
            "dog": Dog("fido"),
            "lookup": lookup,
            "len": len,
            "app": object(),
        }
        self.members = {
            Animal: [
                Member("speak", KIND_METHOD, "Animal", Animal.speak, True),
                Member("create", KIND_STATIC_METHOD, "Animal", Animal.create, True),
                Member("name", KIND_PROPERTY, "Animal", None, False),
                Member("count", KIND_STATIC_PROPERTY, "Animal", 0, False),
                Member("LEGS", KIND_CLASS_CONSTANT, "Animal", 4, False),
                Member("_secret", KIND_METHOD, "Animal", Animal._secret, True),
            ],
            Dog: [
                Member("speak", KIND_METHOD, "Dog", Dog.speak, True),
                Member("fetch", KIND_METHOD, "Dog", Dog.fetch, True),
            ],
            Cat: [
                Member("speak", KIND_METHOD, "Cat", Cat.speak, True),
            ],
        }

    def keywords(self):
        return ["if", "import", "in", "lambda"]

    def declared_types(self):
        return list(self.types)

    def declared_interfaces(self):
        return list(self.interfaces)

    def declared_traits(self):
        return ["Walker"]

    def callables(self):
        return ["len", "lookup", "print"]

    def constants(self):
        return ["MAX_SIZE", "MIN_SIZE"]

    def global_names(self):
        return ["app", "animal"]

    def resolve(self, name):
        head, *rest = name.split(".")
        if head in self.entities:
            entity = self.entities[head]
        elif head in self.types:
            entity = self.types[head]
        else:
            raise LookupError(name)
        for attr in rest:
            try:
                entity = getattr(entity, attr)
            except AttributeError as e:
                raise LookupError(name) from e
        return entity

    def is_type(self, entity):
        return isinstance(entity, type)

    def members_of(self, context, visibility, private=False, inherited=True):
        cls = context if isinstance(context, type) else type(context)
        owners = cls.__mro__ if inherited else (cls,)
        seen = set()
        found = []
        for owner in owners:
            for member in self.members.get(owner, []):
                if member.name in seen:
                    continue
                seen.add(member.name)
                if not private and is_private(member.name):
                    continue
                if visibility == VISIBILITY_STATIC and member.kind not in STATIC_KINDS:
                    continue
                found.append(member)
        return found

    def relationship_test(self, type_name, candidate, relation):
        cls = self.types.get(type_name)
        if cls is None:
            return False
        if relation == RELATION_EXTENDS:
            return any(name_matches([c.__name__], candidate) for c in cls.__mro__)
        if relation == RELATION_USES:
            return any(name_matches([b.__name__], candidate) for b in cls.__bases__)
        if relation == RELATION_IMPLEMENTS:
            return any(name_matches([name], candidate) and self.types[name] is not cls
                       and issubclass(cls, self.types[name]) for name in self.interfaces)
        raise ValueError(relation)

    def doc_of(self, entity):
        return inspect.getdoc(entity) if entity is not None else None

    def signature_of(self, entity, arg=-1):
        try:
            return format_signature(inspect.signature(entity), arg)
        except (TypeError, ValueError):
            return None

    def location_of(self, entity):
        if inspect.isfunction(entity) or inspect.isclass(entity):
            return {"file": "zoo.py", "line": 1}
        return None

    def parent_of(self, type_name):
        cls = self.types.get(type_name)
        if cls is None:
            return None
        for base in cls.__bases__:
            if base is not object:
                return base.__name__
        return None


@pytest.fixture
def introspector():
    return FakeIntrospector()


@pytest.fixture
def scope(introspector):
    return {"animal": introspector.entities["animal"], "dog": introspector.entities["dog"], "_hidden": 1}


@pytest.fixture
def snapshot(introspector):
    return RuntimeSnapshot(introspector, ("animal", "dog", "_hidden"))
