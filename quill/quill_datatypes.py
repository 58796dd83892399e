"""
Defines the shared data types and exceptions for the quill REPL engine.

Everything here is short-lived: completion contexts, doc lookups and
member records are created and discarded within one request/response
cycle.
"""

from dataclasses import dataclass
from typing import Any, NamedTuple, Optional

# =================================================================
# Exceptions
# =================================================================

class QuillError(Exception):
    """Base class for errors raised by the REPL engine itself."""
    pass


class ProtocolViolation(QuillError):
    """A malformed frame or unexpected message on the transport stream."""
    pass


class ConnectionBroken(ProtocolViolation):
    """The peer closed the stream mid-exchange."""
    def __init__(self, message: str = "Socket error: closed"):
        super().__init__(message)


class BadRequest(ProtocolViolation):
    def __init__(self, method: Any):
        super().__init__(f"bad request: {method}")
        self.method = method


class WorkerStartupError(QuillError):
    """The evaluation worker never signalled that it was ready."""
    pass


# =================================================================
# Completion and lookup records
# =================================================================

COMPLETE_MEMBER = "member"
COMPLETE_STATIC = "static"
COMPLETE_VARIABLE = "variable"
COMPLETE_SYMBOL = "symbol"
COMPLETE_CLASS = "class"

FUNCTION_INFO = "function"
METHOD_INFO = "method"
CLASS_INFO = "class"

KIND_VARIABLE = "variable"
KIND_FUNCTION = "function"
KIND_CLASS = "class"
KIND_INTERFACE = "interface"
KIND_KEYWORD = "keyword"
KIND_CONSTANT = "constant"
KIND_MODULE = "module"
KIND_METHOD = "method"
KIND_STATIC_METHOD = "static method"
KIND_PROPERTY = "property"
KIND_STATIC_PROPERTY = "static property"
KIND_CLASS_CONSTANT = "class constant"


@dataclass(frozen=True)
class ContextExpression:
    """The sub-expression to the left of a member-access operator."""
    text: str
    is_bare: bool


@dataclass
class CompletionContext:
    how: str
    symbol: str
    start: int
    end: int
    context: Optional[ContextExpression] = None


@dataclass
class DocInfo:
    """The call surrounding the cursor, for hints and documentation."""
    how: str
    name: str
    arg: int = -1
    context: Optional[ContextExpression] = None


class Member(NamedTuple):
    """One attribute of a type or object, as reported by an Introspector."""
    name: str
    kind: str
    owner: str
    value: Any = None
    callable: bool = False
