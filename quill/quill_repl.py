"""
The REPL facade: one evaluation worker plus one session controller.
"""

import asyncio
import logging
import os
import platform
import socket
import sys
import traceback
from typing import Any, Mapping, Optional, Union

from quill import __version__
from quill.quill_config import QuillConfig
from quill.quill_datatypes import ConnectionBroken
from quill.quill_inspector import Inspector, make_inspector
from quill.quill_macros import Replacer, default_macros
from quill.quill_protocol import AsyncConnection
from quill.quill_session import LineSource, ReadlineSource, Session
from quill.quill_worker import EvalWorker, Hook

logger = logging.getLogger(__name__)


class Repl:
    """A tiny REPL for Python.

    Hooks are either code strings to exec() or callables taking the worker
    and a copy of the current bindings. A callable hook that needs to bind
    names in the REPL's scope calls `worker.set_local(name, value)`. Hooks
    run in the order they were added, and what each binds is visible to
    the next.

        repl = Repl()
        repl.on_start(lambda worker, names: worker.set_local("today", date.today()))
        repl.on_start("print('The date is', today)")
        repl.start()
    """

    def __init__(self, prompt: Optional[str] = None, history_file: Optional[str] = None,
                 config: Optional[QuillConfig] = None):
        config = config or QuillConfig()
        self.prompt = prompt if prompt is not None else config.prompt
        self.history_file = history_file or config.history_file
        self.exports = dict(config.locals)
        self.start_hooks = list(config.start_hooks)
        self.failure_hooks = list(config.failure_hooks)
        self.inspector = make_inspector(config.inspector)
        self.macros = default_macros()
        for spec in config.macros:
            self.macros.add(spec.pattern, spec.template)

    def on_start(self, hook: Hook):
        """Run `hook` in the REPL's scope when it starts."""
        self.start_hooks.append(hook)

    def on_failure(self, hook: Hook):
        """Run `hook` after a statement crashes, e.g. to reset a database connection."""
        self.failure_hooks.append(hook)

    def set_local(self, name: Union[str, Mapping[str, Any]], value: Any = None):
        if isinstance(name, Mapping):
            self.exports.update(name)
        else:
            self.exports[name] = value

    def set_prompt(self, prompt: str):
        self.prompt = prompt

    def set_inspector(self, inspector: Inspector):
        self.inspector = inspector

    def set_macro(self, pattern: str, replacer: Replacer):
        self.macros.add(pattern, replacer)

    def display_welcome(self):
        print(f"quill {__version__}")
        print(f"Python {platform.python_version()}")
        print(f"{'Exit':>16}: Control+D or exit()")
        print(f"{'Clear Line':>16}: Control+C")
        print(f"{'Past Results':>16}: Stored in _")
        print(f"{'Lookups':>16}: :doc, :apropos, :who")

    def _serve(self, sock: socket.socket):
        """Body of the worker process."""
        code = 0
        try:
            worker = EvalWorker(sock)
            worker.set_local(self.exports)
            worker.set_start_hooks(self.start_hooks)
            worker.set_failure_hooks(self.failure_hooks)
            worker.set_inspector(self.inspector)
            worker.set_macros(self.macros)
            worker.start()
        except ConnectionBroken as e:
            logger.debug("controller went away: %s", e)
        except BaseException:
            traceback.print_exc()
            code = 1
        finally:
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(code)

    async def run(self, line_source: Optional[LineSource] = None, welcome: bool = True,
                  stop_on_failure: bool = False) -> int:
        if welcome:
            self.display_welcome()
        sys.stdout.flush()
        sys.stderr.flush()

        controller_sock, worker_sock = socket.socketpair()
        pid = os.fork()
        if pid == 0:
            controller_sock.close()
            self._serve(worker_sock)

        worker_sock.close()
        connection = await AsyncConnection.open(controller_sock)
        session = Session(connection, line_source or ReadlineSource(self.history_file), self.prompt,
                          worker_pid=pid, stop_on_failure=stop_on_failure)
        try:
            return await session.run()
        finally:
            await connection.close()
            if session.worker_pid is not None:
                try:
                    os.waitpid(session.worker_pid, os.WNOHANG)
                except ChildProcessError:
                    logger.debug("worker %d already reaped", session.worker_pid)

    def start(self) -> int:
        """Run the REPL until the user exits."""
        return asyncio.run(self.run())
