"""
The evaluation worker.

The worker owns the variable scope and answers requests arriving on its
socket. Each statement runs in a freshly forked child so that a crash,
a hang or a fatal signal only ever takes a disposable process down:

- the child executes the statement and, when it succeeds, kills its
  parent and carries on as the worker, scope and all;
- when it fails, the parent is still there with the scope untouched and
  answers `failed`.

Completion requests that would have to run code are evaluated in a child
as well; the result comes back over a pipe.
"""

import ast
import json
import linecache
import logging
import os
import signal
import socket
import sys
import traceback
import types
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from quill import quill_protocol as protocol
from quill.quill_completer import Completer
from quill.quill_datatypes import BadRequest
from quill.quill_inspector import DumpInspector, Inspector
from quill.quill_introspect import HIDDEN_NAMES, RELATIONS
from quill.quill_macros import Macros, default_macros, is_deferred, strip_deferred

logger = logging.getLogger(__name__)

# Exit status of a child that died of an uncaught exception.
EXIT_ABNORMAL = 255

MAX_DEFERRED_PASSES = 16

SOURCE_NAME = "<quill>"

_NO_VALUE = object()

Hook = Union[str, Callable[["EvalWorker", Dict[str, Any]], Any]]


def exit_code(code: Any) -> int:
    """Map a SystemExit code onto a process exit status."""
    if code is None:
        return 0
    if isinstance(code, int):
        return code & 0xFF
    print(code, file=sys.stderr)
    return 1


def _user_traceback(tb):
    """Drop the worker's own frames from the front of a traceback."""
    while tb is not None and tb.tb_frame.f_code.co_filename != SOURCE_NAME:
        tb = tb.tb_next
    return tb


def _flush_std_streams():
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError) as e:
            logger.debug("cannot flush %r: %s", stream, e)


class EvalWorker:
    """Evaluates statements sent over `sock` against a persistent scope."""

    HANDLERS = {
        "evaluate": "handle_evaluate",
        "complete": "handle_complete",
        "apropos": "handle_apropos",
        "hint": "handle_lookup",
        "document": "handle_lookup",
        "locate": "handle_lookup",
        "who": "handle_who",
    }

    def __init__(self, sock: socket.socket, output=None):
        self.sock = sock
        self.output = output
        self.module = types.ModuleType("__main__")
        self.scope: Dict[str, Any] = self.module.__dict__
        self.exports: Dict[str, Any] = {}
        self.start_hooks: List[Hook] = []
        self.failure_hooks: List[Hook] = []
        self.inspector: Inspector = DumpInspector()
        self.macros: Macros = default_macros()
        self.cancelled = False
        self.child_pid: Optional[int] = None

    # =================================================================
    # Configuration
    # =================================================================

    def set_local(self, name: Union[str, Mapping[str, Any]], value: Any = None):
        """Export one binding, or a mapping of them, into the scope."""
        bindings = dict(name) if isinstance(name, Mapping) else {name: value}
        self.exports.update(bindings)
        self.scope.update(bindings)

    def set_start_hooks(self, hooks: List[Hook]):
        self.start_hooks = list(hooks)

    def set_failure_hooks(self, hooks: List[Hook]):
        self.failure_hooks = list(hooks)

    def set_inspector(self, inspector: Inspector):
        self.inspector = inspector

    def set_macros(self, macros: Macros):
        self.macros = macros

    @property
    def visible_scope(self) -> Dict[str, Any]:
        return {k: v for k, v in self.scope.items() if k not in HIDDEN_NAMES}

    def run_hooks(self, hooks: List[Hook]):
        """Run `hooks` in order against the current scope."""
        for hook in hooks:
            if isinstance(hook, str):
                exec(compile(hook, SOURCE_NAME, "exec"), self.scope)
            elif callable(hook):
                hook(self, self.visible_scope)
            else:
                raise TypeError(f"hooks must be code strings or callables, not {type(hook).__name__}")

    # =================================================================
    # Main loop
    # =================================================================

    def start(self):
        """Run the start hooks, signal readiness and serve until an exit."""
        sys.modules["__main__"] = self.module
        self.scope.update(self.exports)
        self.run_hooks(self.start_hooks)
        protocol.signal_ready(self.sock)

        while True:
            signal.signal(signal.SIGINT, signal.SIG_IGN)
            request = protocol.wait_for_request(self.sock)
            if request is None:
                continue
            logger.debug("request %r", request)
            if self.dispatch(request) == protocol.STATUS_EXITED:
                logger.debug("worker %d exiting", os.getpid())
                return

    def dispatch(self, request: dict) -> str:
        method = request.get("method")
        handler = self.HANDLERS.get(method) if isinstance(method, str) else None
        try:
            if handler is None:
                raise BadRequest(method)
            return getattr(self, handler)(request)
        except BadRequest as e:
            logger.error("%s", e)
            protocol.send_response(self.sock, request, protocol.STATUS_FAILED, {"error": str(e)})
            return protocol.STATUS_FAILED

    # =================================================================
    # Evaluation
    # =================================================================

    def handle_evaluate(self, request: dict) -> str:
        statement = request.get("body")
        if not isinstance(statement, str):
            raise BadRequest(request.get("method"))
        logger.debug("evaluate %r", statement)
        expanded = self.macros.expand(statement)

        worker_pid = os.getpid()
        self.cancelled = False
        self.child_pid = None
        # installed before the fork so an early Ctrl-C is never lost
        signal.signal(signal.SIGINT, self._interrupt)
        _flush_std_streams()

        pid = os.fork()
        if pid == 0:
            return self._evaluate_in_child(request, statement, expanded, worker_pid)

        self.child_pid = pid
        if self.cancelled:
            self._interrupt(signal.SIGINT, None)
        _, status = os.waitpid(pid, 0)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        code = os.waitstatus_to_exitcode(status)

        if self.cancelled or code == EXIT_ABNORMAL or code < 0:
            logger.warning("evaluation failed (exit %d%s)", code, ", cancelled" if self.cancelled else "")
            self._run_failure_hooks()
            protocol.send_response(self.sock, request, protocol.STATUS_FAILED)
            return protocol.STATUS_FAILED

        protocol.send_response(self.sock, request, protocol.STATUS_EXITED, code)
        return protocol.STATUS_EXITED

    def _interrupt(self, signum, frame):
        self.cancelled = True
        if self.child_pid is None:
            return
        try:
            os.kill(self.child_pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("child %d already gone", self.child_pid)

    def _run_failure_hooks(self):
        if not self.failure_hooks:
            return
        saved_scope, saved_exports = self.scope, self.exports
        self.scope, self.exports = dict(saved_scope), dict(saved_exports)
        try:
            self.run_hooks(self.failure_hooks)
        except Exception as e:
            logger.warning("failure hook raised %s", type(e).__name__)
            traceback.print_exc()
        finally:
            self.scope, self.exports = saved_scope, saved_exports

    def _evaluate_in_child(self, request: dict, statement: str, expanded: str, worker_pid: int) -> str:
        signal.signal(signal.SIGINT, signal.SIG_DFL)
        child_pid = os.getpid()
        try:
            self._execute(statement, expanded)
        except SystemExit as e:
            self._exit_child(exit_code(e.code))
        except BaseException as e:
            sys.excepthook(type(e), e, _user_traceback(e.__traceback__))
            self._exit_child(EXIT_ABNORMAL)

        if os.getpid() != child_pid:
            # the statement forked; only the original child takes over
            self._exit_child(0)

        _flush_std_streams()
        os.kill(worker_pid, signal.SIGKILL)
        protocol.send_response(self.sock, request, protocol.STATUS_OK)
        return protocol.STATUS_OK

    @staticmethod
    def _exit_child(code: int):
        _flush_std_streams()
        os._exit(code)

    def _execute(self, statement: str, expanded: str):
        value = self._run(expanded)
        passes = 0
        # a macro may produce source text to evaluate in a further pass
        while expanded != statement and is_deferred(value):
            passes += 1
            if passes > MAX_DEFERRED_PASSES:
                raise RecursionError(f"macro expansion did not settle after {MAX_DEFERRED_PASSES} passes")
            value = self._run(self.macros.expand(strip_deferred(value)))

        if value is not _NO_VALUE and value is not None:
            self.scope["_"] = value
            self._display(value)

    def _run(self, source: str) -> Any:
        """Execute `source`; return the value of a trailing expression, if any."""
        linecache.cache[SOURCE_NAME] = (len(source), None, source.splitlines(True), SOURCE_NAME)
        tree = ast.parse(source, SOURCE_NAME, "exec")
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            last = tree.body.pop()
            if tree.body:
                exec(compile(tree, SOURCE_NAME, "exec"), self.scope)
            return eval(compile(ast.Expression(last.value), SOURCE_NAME, "eval"), self.scope)
        exec(compile(tree, SOURCE_NAME, "exec"), self.scope)
        return _NO_VALUE

    def _display(self, value: Any):
        out = self.output or sys.stdout
        out.write(self.inspector.inspect(value) + "\n")
        out.flush()

    # =================================================================
    # Completion and lookups
    # =================================================================

    def _in_child(self, compute: Callable[[], Any]) -> Any:
        """Run `compute` in a throwaway child and return its JSON-able result."""
        read_fd, write_fd = os.pipe()
        self.cancelled = False
        self.child_pid = None
        signal.signal(signal.SIGINT, self._interrupt)
        _flush_std_streams()
        pid = os.fork()
        if pid == 0:
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            os.close(read_fd)
            code = 0
            try:
                sys.stdout = open(os.devnull, "w")
                payload = json.dumps(compute(), default=str).encode("utf-8")
                with os.fdopen(write_fd, "wb") as pipe:
                    pipe.write(payload)
            except Exception as e:
                logger.debug("lookup child failed: %s", e)
                code = EXIT_ABNORMAL
            finally:
                os._exit(code)

        os.close(write_fd)
        self.child_pid = pid
        if self.cancelled:
            self._interrupt(signal.SIGINT, None)
        try:
            with os.fdopen(read_fd, "rb") as pipe:
                data = pipe.read()
            _, status = os.waitpid(pid, 0)
        finally:
            signal.signal(signal.SIGINT, signal.SIG_IGN)
            self.child_pid = None
        if self.cancelled:
            logger.warning("lookup cancelled")
            return None
        if os.waitstatus_to_exitcode(status) != 0 or not data:
            return None
        return json.loads(data.decode("utf-8"))

    def _body(self, request: dict) -> dict:
        body = request.get("body")
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise BadRequest(request.get("method"))
        return body

    def handle_complete(self, request: dict) -> str:
        body = self._body(request)
        line = str(body.get("line", ""))
        cursor = body.get("cursorOffset")
        completer = Completer.for_scope(self.scope)
        if completer.needs_evaluation(line, cursor):
            result = self._in_child(lambda: completer.get_completions(line, cursor, evaluate=True))
        else:
            result = completer.get_completions(line, cursor, evaluate=False)
        protocol.send_response(self.sock, request, protocol.STATUS_OK, result)
        return protocol.STATUS_OK

    def handle_apropos(self, request: dict) -> str:
        body = self._body(request)
        completer = Completer.for_scope(self.scope)
        result = completer.apropos(body.get("filter"), body.get("kind"))
        protocol.send_response(self.sock, request, protocol.STATUS_OK, json.loads(json.dumps(result, default=str)))
        return protocol.STATUS_OK

    def handle_lookup(self, request: dict) -> str:
        body = self._body(request)
        line = str(body.get("line", ""))
        cursor = body.get("cursorOffset")
        completer = Completer.for_scope(self.scope)
        lookup = {
            "hint": completer.get_hint,
            "document": completer.get_documentation,
            "locate": completer.get_location,
        }[request["method"]]
        if completer.needs_doc_evaluation(line, cursor):
            result = self._in_child(lambda: lookup(line, cursor, evaluate=True))
        else:
            result = lookup(line, cursor, evaluate=False)
        protocol.send_response(self.sock, request, protocol.STATUS_OK, result)
        return protocol.STATUS_OK

    def handle_who(self, request: dict) -> str:
        body = self._body(request)
        relation = body.get("relation")
        name = body.get("name")
        if relation not in RELATIONS or not isinstance(name, str):
            raise BadRequest(request.get("method"))
        completer = Completer.for_scope(self.scope)
        result = getattr(completer, f"who_{relation}")(name)
        protocol.send_response(self.sock, request, protocol.STATUS_OK, json.loads(json.dumps(result, default=str)))
        return protocol.STATUS_OK
