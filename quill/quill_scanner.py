"""
A shallow statement boundary scanner for interactive Python input.

The scanner knows just enough of the lexical structure of Python to tell
where one executable statement stops: bracket nesting, string literals
(single, double and triple quoted, with backslash escapes) and line
comments. It performs no semantic validation; a "complete" statement may
still fail to compile in the worker.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = frozenset(OPENERS.values())

# Statements that own an indented block and therefore end at a blank line
# (or at a dedent to column 0), not at the first newline.
COMPOUND_KEYWORDS = frozenset({
    "if", "while", "for", "def", "class", "with", "try", "async",
})
CONTINUATION_KEYWORDS = frozenset({"else", "elif", "except", "finally"})
DECORATED_KEYWORDS = frozenset({"def", "class", "async"})

_WORD = re.compile(r"[A-Za-z_]\w*")


@dataclass
class LexicalState:
    """Lexer state at some offset of the input."""
    quote: Optional[str] = None
    in_comment: bool = False
    brackets: List[str] = field(default_factory=list)

    @property
    def in_string(self) -> bool:
        return self.quote is not None

    @property
    def depth(self) -> int:
        return len(self.brackets)


class _Lexer:
    """Walks the text and yields the offsets of structurally significant characters."""

    def __init__(self, text: str):
        self.text = text
        self.state = LexicalState()

    def events(self) -> Iterator[Tuple[int, str]]:
        text = self.text
        st = self.state
        n = len(text)
        i = 0
        while i < n:
            ch = text[i]
            if st.quote:
                if ch == "\\":
                    i += 2
                    continue
                if text.startswith(st.quote, i):
                    i += len(st.quote)
                    st.quote = None
                    continue
                if ch == "\n" and len(st.quote) == 1:
                    # an unescaped newline ends a single-quoted literal
                    st.quote = None
                    yield i, "newline"
                i += 1
                continue
            if st.in_comment:
                if ch == "\n":
                    st.in_comment = False
                    yield i, "newline"
                i += 1
                continue

            if ch == "#":
                st.in_comment = True
                yield i, "comment"
            elif ch in "'\"":
                if text.startswith(ch * 3, i):
                    st.quote = ch * 3
                    yield i, "string"
                    i += 3
                    continue
                st.quote = ch
                yield i, "string"
            elif ch in OPENERS:
                st.brackets.append(ch)
                yield i, "open"
            elif ch in CLOSERS:
                if st.brackets:
                    st.brackets.pop()
                yield i, "close"
            elif ch == "\\" and text.startswith("\n", i + 1):
                # explicit line continuation
                i += 2
                continue
            elif ch == "\n":
                yield i, "newline"
            elif ch == ";":
                yield i, "semicolon"
            elif not ch.isspace():
                yield i, "code"
            i += 1


def tokens(text: str) -> Iterator[Tuple[int, str]]:
    """Yield (offset, kind) for each structural character outside strings and comments."""
    return _Lexer(text).events()


def lexical_state(text: str) -> LexicalState:
    """Return the lexer state reached at the end of `text`."""
    lexer = _Lexer(text)
    for _ in lexer.events():
        pass
    return lexer.state


class StatementScanner:
    """Splits an input buffer into complete statements plus leftover text.

    The scanner is stateless between calls. Callers feed the growing
    buffer and replace it with the returned remainder once the statements
    have been consumed, so each call only yields statements not seen
    before. Statements are exact slices of the buffer: joining them with
    the remainder reproduces the input.
    """

    def statements(self, buffer: str) -> Tuple[List[str], str]:
        found: List[str] = []
        lexer = _Lexer(buffer)
        start = 0
        kind = None
        line_start = 0

        for i, event in lexer.events():
            if kind is None and event != "newline" and event != "comment":
                kind = self._classify(buffer, i)

            if event == "semicolon":
                if lexer.state.depth == 0 and kind == "simple":
                    found.append(buffer[start:i + 1])
                    start, kind = i + 1, None
                continue

            if event != "newline":
                continue

            line = buffer[line_start:i]
            line_start = i + 1
            if lexer.state.depth or kind is None:
                continue

            if kind == "simple":
                ends = True
            elif not line.strip():
                ends = True
            else:
                ends = self._ends_compound(buffer, start, i + 1)

            if ends:
                found.append(buffer[start:i + 1])
                start, kind = i + 1, None

        return found, buffer[start:]

    def _classify(self, buffer: str, pos: int) -> str:
        if buffer.startswith("@", pos):
            return "compound"
        m = _WORD.match(buffer, pos)
        if not m:
            return "simple"
        word = m.group(0)
        if word in COMPOUND_KEYWORDS:
            return "compound"
        if word == "match":
            eol = buffer.find("\n", pos)
            line = buffer[pos:] if eol == -1 else buffer[pos:eol]
            if line.rstrip().endswith(":"):
                return "compound"
        return "simple"

    def _ends_compound(self, buffer: str, start: int, pos: int) -> bool:
        """True when the line beginning at `pos` closes the open block."""
        eol = buffer.find("\n", pos)
        if eol == -1:
            # next line still being typed
            return False
        line = buffer[pos:eol]
        if not line or line[0].isspace() or line.startswith("#"):
            return False
        m = _WORD.match(line)
        word = m.group(0) if m else ""
        if word in CONTINUATION_KEYWORDS:
            return False
        if word in DECORATED_KEYWORDS or line.startswith("@"):
            so_far = [l for l in buffer[start:pos].splitlines() if l.strip()]
            if all(l.lstrip().startswith("@") for l in so_far):
                return False
        return True


def statements(buffer: str) -> Tuple[List[str], str]:
    """Module-level shortcut for StatementScanner().statements()."""
    return StatementScanner().statements(buffer)
