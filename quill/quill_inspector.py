"""
Inspectors turn the value of an evaluated expression into the line shown
after the prompt.
"""
from abc import ABC, abstractmethod

from quill.quill_printer import Printer

RESULT_MARKER = " → "


class Inspector(ABC):
    @abstractmethod
    def inspect(self, value) -> str:
        """Return a human-readable representation of `value`."""


class DumpInspector(Inspector):
    """The default: structured output from the pretty-printer."""

    def __init__(self, printer=None):
        self.printer = printer or Printer()

    def inspect(self, value) -> str:
        return RESULT_MARKER + self.printer.pformat(value)


class ExportInspector(Inspector):
    """Shows each value as its repr(), which is usually valid source."""

    def inspect(self, value) -> str:
        return RESULT_MARKER + repr(value)


INSPECTORS = {
    "dump": DumpInspector,
    "export": ExportInspector,
}


def make_inspector(name: str) -> Inspector:
    try:
        return INSPECTORS[name]()
    except KeyError:
        raise ValueError(f"unknown inspector {name!r}; expected one of {sorted(INSPECTORS)}") from None
