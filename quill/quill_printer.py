"""
A pretty-printer for values shown at the prompt.
"""
import collections.abc
import dataclasses
import enum
import types


class Printer:
    """Formats Python values into readable, indented strings."""

    def __init__(self, indent_width=2, width=72, max_depth=6):
        self._indent_char = " " * indent_width
        self._width = width
        self._max_depth = max_depth
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        if level > self._max_depth:
            return "..."
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        # Fast path for singletons
        if obj is None or obj is Ellipsis or obj is NotImplemented:
            return self._pformat_primitive

        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, enum.Enum): return self._pformat_primitive
        if isinstance(obj, tuple) and hasattr(obj, "_fields"): return self._pformat_namedtuple
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type): return self._pformat_dataclass
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, (list, tuple)): return self._handlers[list if isinstance(obj, list) else tuple]
        if isinstance(obj, (set, frozenset)): return self._pformat_set
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bytes: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            complex: self._pformat_primitive,
            bool: self._pformat_primitive,
            list: self._pformat_list,
            tuple: self._pformat_tuple,
            set: self._pformat_set,
            frozenset: self._pformat_set,
            dict: self._pformat_dict,
            types.SimpleNamespace: self._pformat_namespace,
            types.FunctionType: self._pformat_function,
            types.BuiltinFunctionType: self._pformat_function,
            types.MethodType: self._pformat_function,
            type: self._pformat_class,
            types.ModuleType: self._pformat_module,
        }

    def _pformat_primitive(self, obj, level):
        return repr(obj)

    def _pformat_str(self, obj, level):
        return repr(obj)

    def _pformat_function(self, obj, level):
        name = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", "?")
        return f"<function {name}>"

    def _pformat_class(self, obj, level):
        return f"<class {obj.__module__}.{obj.__qualname__}>"

    def _pformat_module(self, obj, level):
        return f"<module {obj.__name__}>"

    def _pformat_items(self, items, level, open_char, close_char, trailing=""):
        """Lay out `items` on one line when they fit, one per line otherwise."""
        if not items:
            return f"{open_char}{close_char}"
        parts = [self.pformat(item, level + 1) for item in items]
        inline = f"{open_char}{', '.join(parts)}{trailing}{close_char}"
        if "\n" not in inline and len(inline) + len(self._indent_char) * level <= self._width:
            return inline
        return self._pformat_block(parts, level, open_char, close_char)

    def _pformat_block(self, parts, level, open_char, close_char):
        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)

        lines = []
        for part in parts:
            part_lines = part.splitlines() or [""]
            # Nested blocks are already indented past their first line.
            first_line = inner_indent + part_lines[0]
            lines.append("\n".join([first_line] + part_lines[1:]) + ",")

        return f"{open_char}\n" + "\n".join(lines) + f"\n{outer_indent}{close_char}"

    def _pformat_list(self, obj, level):
        return self._pformat_items(list(obj), level, "[", "]")

    def _pformat_tuple(self, obj, level):
        trailing = "," if len(obj) == 1 else ""
        return self._pformat_items(list(obj), level, "(", ")", trailing)

    def _pformat_set(self, obj, level):
        if not obj:
            return f"{type(obj).__name__}()"
        try:
            items = sorted(obj)
        except TypeError:
            items = list(obj)
        if isinstance(obj, frozenset):
            return f"frozenset({self._pformat_items(items, level, '{', '}')})"
        return self._pformat_items(items, level, "{", "}")

    def _pformat_pairs(self, pairs, level, open_char, close_char, sep):
        if not pairs:
            return f"{open_char}{close_char}"
        parts = []
        for key, value in pairs:
            value_str = self.pformat(value, level + 1)
            parts.append(f"{key}{sep}{value_str}")
        inline = f"{open_char}{', '.join(parts)}{close_char}"
        if "\n" not in inline and len(inline) + len(self._indent_char) * level <= self._width:
            return inline
        return self._pformat_block(parts, level, open_char, close_char)

    def _pformat_dict(self, obj, level):
        pairs = [(self.pformat(k, level + 1), v) for k, v in obj.items()]
        body = self._pformat_pairs(pairs, level, "{", "}", ": ")
        if type(obj) is dict:
            return body
        return f"{type(obj).__name__}({body})"

    def _pformat_namespace(self, obj, level):
        return "namespace" + self._pformat_pairs(list(vars(obj).items()), level, "(", ")", "=")

    def _pformat_namedtuple(self, obj, level):
        pairs = list(zip(obj._fields, obj))
        return type(obj).__name__ + self._pformat_pairs(pairs, level, "(", ")", "=")

    def _pformat_dataclass(self, obj, level):
        pairs = [(f.name, getattr(obj, f.name)) for f in dataclasses.fields(obj) if f.repr]
        return type(obj).__name__ + self._pformat_pairs(pairs, level, "(", ")", "=")
