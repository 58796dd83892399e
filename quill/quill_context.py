"""
Works out what kind of symbol the cursor is on.

The resolver is purely textual. It reports the partial symbol left of the
cursor, the span it occupies and, for member access, the expression the
member is looked up on. Whether that expression names a class, and what
it evaluates to, is left to the completer.
"""

import re
from typing import Optional

from quill.quill_datatypes import (
    CompletionContext, ContextExpression, DocInfo,
    COMPLETE_MEMBER, COMPLETE_VARIABLE, COMPLETE_SYMBOL, COMPLETE_CLASS,
    FUNCTION_INFO, METHOD_INFO,
)
from quill.quill_scanner import CLOSERS, OPENERS, lexical_state, tokens

_PREFIX = re.compile(r"[A-Za-z_]\w*$")
_NUMBER = re.compile(r"(?<![\w.])\d[\w.]*$")
_BARE = re.compile(r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*")
_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")
_CONSTRUCTOR = re.compile(r"(?:^|[^\w.])raise\s+$")
_VARIABLE = re.compile(r"(?:^|;)\s*(?:del|global|nonlocal)\s+(?:\w+\s*,\s*)*$", re.MULTILINE)

_MATCHING_OPENER = {close: open_ for open_, close in OPENERS.items()}


def _skip_string_back(text: str, end: int) -> Optional[int]:
    """Offset of the opening quote of the literal whose closing quote is at `end`."""
    quote = text[end]
    if end >= 5 and text.startswith(quote * 3, end - 2):
        start = text.rfind(quote * 3, 0, end - 2)
        return start if start >= 0 else None
    start = text.rfind(quote, 0, end)
    while start > 0 and text[start - 1] == "\\":
        start = text.rfind(quote, 0, start - 1)
    return start if start >= 0 else None


def _matching_open(text: str, end: int) -> Optional[int]:
    """Offset of the bracket opening the one closed at `end`."""
    stack = [_MATCHING_OPENER[text[end]]]
    i = end - 1
    while i >= 0:
        ch = text[i]
        if ch in "'\"":
            start = _skip_string_back(text, i)
            if start is None:
                return None
            i = start - 1
            continue
        if ch in CLOSERS:
            stack.append(_MATCHING_OPENER[ch])
        elif ch in OPENERS:
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i
        i -= 1
    return None


def context_expression(text: str) -> str:
    """Return the trailing primary expression of `text`.

    Scans backwards over identifiers, dots, balanced brackets and string
    literals; stops at whitespace, operators or an unbalanced opener.
    """
    i = len(text)
    while i > 0:
        ch = text[i - 1]
        if ch.isalnum() or ch in "_.":
            i -= 1
        elif ch in CLOSERS:
            start = _matching_open(text, i - 1)
            if start is None:
                break
            i = start
        elif ch in "'\"":
            start = _skip_string_back(text, i - 1)
            if start is None:
                break
            i = start
        else:
            break
    return text[i:]


class ContextResolver:

    def completion_info(self, line: str, cursor: Optional[int] = None) -> Optional[CompletionContext]:
        """Classify the symbol ending at `cursor`, or None where nothing can complete."""
        if cursor is None:
            cursor = len(line)
        text = line[:cursor]

        state = lexical_state(text)
        if state.in_string or state.in_comment:
            return None
        if _NUMBER.search(text):
            return None

        m = _PREFIX.search(text)
        prefix = m.group(0) if m else ""
        start = cursor - len(prefix)
        before = text[:len(text) - len(prefix)]

        if before.endswith("."):
            expression = context_expression(before[:-1])
            if not expression:
                return None
            bare = _BARE.fullmatch(expression) is not None
            return CompletionContext(COMPLETE_MEMBER, prefix, start, cursor,
                                     ContextExpression(expression, bare))

        if _CONSTRUCTOR.search(before):
            return CompletionContext(COMPLETE_CLASS, prefix, start, cursor)

        if _VARIABLE.search(before):
            return CompletionContext(COMPLETE_VARIABLE, prefix, start, cursor)

        return CompletionContext(COMPLETE_SYMBOL, prefix, start, cursor)

    def doc_info(self, line: str, cursor: Optional[int] = None) -> Optional[DocInfo]:
        """Find the innermost call open at `cursor` and the argument being typed."""
        if cursor is None:
            cursor = len(line)
        text = line[:cursor]

        open_calls = []
        for i, kind in tokens(text):
            if kind == "open":
                open_calls.append([i, text[i], 0])
            elif kind == "close":
                if open_calls:
                    open_calls.pop()
            elif kind == "code" and text[i] == "," and open_calls:
                open_calls[-1][2] += 1

        for offset, bracket, commas in reversed(open_calls):
            if bracket != "(":
                continue
            callee = context_expression(text[:offset].rstrip())
            if not callee:
                continue
            context_text, dot, name = callee.rpartition(".")
            if not _IDENTIFIER.fullmatch(name):
                return None
            if dot:
                if not context_text:
                    return None
                context = ContextExpression(context_text, _BARE.fullmatch(context_text) is not None)
                return DocInfo(METHOD_INFO, name, commas, context)
            return DocInfo(FUNCTION_INFO, name, commas)
        return None
