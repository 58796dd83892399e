"""
Source-level rewriting applied to each statement before it is evaluated.

A macro pairs a regular expression with a replacer. The replacer is either
a callable receiving the match object, or a Mustache template rendered with
pystache against the match groups (`{{0}}`, `{{1}}`, ... and the named
groups). Macros run once each, in registration order; expansion is not
re-entrant.
"""

import logging
import re
from typing import Callable, Iterable, List, Match, Pattern, Union

import pystache

logger = logging.getLogger(__name__)

Replacer = Union[str, Callable[[Match], str]]

# Prefix marking a string value as source to evaluate in a further pass.
DEFERRED_PREFIX = "return "


class Macro:
    """A single pattern/replacement rule."""

    def __init__(self, pattern: Union[str, Pattern], replacer: Replacer):
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        if not (callable(replacer) or isinstance(replacer, str)):
            raise TypeError(f"macro replacer must be a template string or a callable, not {type(replacer).__name__}")
        self.replacer = replacer
        self._renderer = pystache.Renderer(escape=lambda u: u)

    def _render(self, match: Match) -> str:
        if callable(self.replacer):
            return self.replacer(match)
        context = {str(i): (match.group(i) or "") for i in range(len(match.groups()) + 1)}
        context.update({k: (v or "") for k, v in match.groupdict().items()})
        return self._renderer.render(self.replacer, context)

    def apply(self, text: str) -> str:
        return self.pattern.sub(self._render, text)

    def __repr__(self):
        return f"Macro({self.pattern.pattern!r})"


class Macros:
    """An ordered collection of macros applied as one pass."""

    def __init__(self, macros: Iterable[Macro] = ()):
        self._macros: List[Macro] = list(macros)

    def add(self, pattern: Union[str, Pattern], replacer: Replacer) -> Macro:
        macro = Macro(pattern, replacer)
        self._macros.append(macro)
        return macro

    def expand(self, text: str) -> str:
        for macro in self._macros:
            text = macro.apply(text)
        return text

    def __len__(self):
        return len(self._macros)

    def __iter__(self):
        return iter(self._macros)


# --------------------------
# Built-in macros
# --------------------------

_USE = re.compile(
    r"^(?P<indent>[ \t]*)use[ \t]+(?P<path>[A-Za-z_][\w.]*)"
    r"(?:[ \t]+as[ \t]+(?P<aliases>[A-Za-z_]\w*(?:[ \t]*,[ \t]*[A-Za-z_]\w*)*))?[ \t]*;?[ \t]*$",
    re.MULTILINE,
)


def _expand_use(match: Match) -> str:
    indent = match.group("indent")
    path = match.group("path")
    module, _, name = path.rpartition(".")
    aliases = match.group("aliases")
    if not module:
        if aliases:
            return indent + "; ".join(f"import {path} as {a.strip()}" for a in aliases.split(","))
        return f"{indent}import {path}"
    if not aliases:
        return f"{indent}from {module} import {name}"
    return indent + "; ".join(f"from {module} import {name} as {a.strip()}" for a in aliases.split(","))


_SPLICE = re.compile(r"^(?P<before>.*?)~@(?P<var>[A-Za-z_]\w*)(?P<after>.*)$", re.MULTILINE)


def _expand_splice(match: Match) -> str:
    before = DEFERRED_PREFIX + match.group("before")
    return f"{before!r} + ', '.join(map(str, {match.group('var')})) + {match.group('after')!r}"


def use_macro() -> Macro:
    """`use pkg.mod.Name as A, B` -> `from pkg.mod import Name as A; ...`"""
    return Macro(_USE, _expand_use)


def splice_macro() -> Macro:
    """`f(~@xs)` -> a string of source with the items of `xs` spliced in as arguments."""
    return Macro(_SPLICE, _expand_splice)


def default_macros() -> Macros:
    return Macros([use_macro(), splice_macro()])


def is_deferred(value) -> bool:
    return isinstance(value, str) and value.startswith(DEFERRED_PREFIX)


def strip_deferred(value: str) -> str:
    return value[len(DEFERRED_PREFIX):]
