"""quill: an interactive Python REPL that survives the code it runs."""

__version__ = "0.1.0"
