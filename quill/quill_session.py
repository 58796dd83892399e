"""
The session controller: the side the user types into.

Lines come from a LineSource, accumulate in a buffer and are cut into
statements by the StatementScanner. Each statement is sent to the worker
as an `evaluate` request and the controller waits for the answer before
prompting again.
"""

import asyncio
import concurrent.futures
import logging
import os
import signal
import sys
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from quill import quill_protocol as protocol
from quill.quill_datatypes import ProtocolViolation, WorkerStartupError
from quill.quill_scanner import StatementScanner

logger = logging.getLogger(__name__)

# Sent in place of input once the line source is exhausted.
EOF_STATEMENT = "raise SystemExit(0)"

CONTINUATION_PROMPT = "*> "

COMPLETION_TIMEOUT = 5.0

Completion = Callable[[str, int, str], List[str]]


def only_comments(text: str) -> bool:
    """True when `text` holds nothing but blank and comment lines."""
    return all(not line.strip() or line.lstrip().startswith("#") for line in text.splitlines())


# --------------------------
# Line sources
# --------------------------

class LineSource(ABC):
    """Where input lines come from. Called from an executor thread."""

    @abstractmethod
    def next_line(self, prompt: str) -> Optional[str]:
        """Return the next line without its newline, or None at end of input."""

    def add_history(self, line: str):
        pass

    def save_history(self):
        pass

    def set_completer(self, complete: Completion):
        pass


class ReadlineSource(LineSource):
    """Interactive input through GNU readline, with history and tab completion."""

    # '.' stays part of the word so member access completes as one token
    DELIMITERS = " \t\n`~!@#$%^&*()-=+[{]}\\|;:'\",<>/?"

    def __init__(self, history_file: Optional[str] = None, history_length: int = 1000):
        import readline
        self.readline = readline
        self.history_file = os.path.expanduser(history_file) if history_file else None
        self._matches: List[str] = []
        readline.set_history_length(history_length)
        if self.history_file and os.path.exists(self.history_file):
            try:
                readline.read_history_file(self.history_file)
            except OSError as e:
                logger.warning("cannot read history from %s: %s", self.history_file, e)

    def next_line(self, prompt):
        try:
            return input(prompt)
        except EOFError:
            return None

    def add_history(self, line):
        # input() already records the line when readline is active
        pass

    def save_history(self):
        if not self.history_file:
            return
        try:
            self.readline.write_history_file(self.history_file)
        except OSError as e:
            logger.warning("cannot write history to %s: %s", self.history_file, e)

    def set_completer(self, complete):
        readline = self.readline

        def completer(text, state):
            if state == 0:
                line = readline.get_line_buffer()
                self._matches = complete(line, readline.get_endidx(), text)
            return self._matches[state] if state < len(self._matches) else None

        readline.set_completer_delims(self.DELIMITERS)
        readline.set_completer(completer)
        readline.parse_and_bind("tab: complete")


class StreamSource(LineSource):
    """Reads lines from a file object; used for scripts and tests."""

    def __init__(self, stream, echo: bool = False):
        self.stream = stream
        self.echo = echo
        self.history: List[str] = []

    def next_line(self, prompt):
        line = self.stream.readline()
        if line == "":
            return None
        line = line.rstrip("\n")
        if self.echo:
            print(prompt + line)
        return line

    def add_history(self, line):
        self.history.append(line)


# --------------------------
# Controller
# --------------------------

class Session:
    """Drives one worker from a LineSource until the worker exits."""

    def __init__(self, connection: protocol.AsyncConnection, line_source: LineSource,
                 prompt: str = "quill> ", scanner: Optional[StatementScanner] = None,
                 worker_pid: Optional[int] = None, stop_on_failure: bool = False):
        self.connection = connection
        self.line_source = line_source
        self.prompt = prompt
        self.scanner = scanner or StatementScanner()
        self.worker_pid = worker_pid
        self.stop_on_failure = stop_on_failure
        self._clear = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def clear(self):
        """Ctrl-C: drop whatever has been typed so far."""
        self._clear = True

    def prompt_for(self, lineno: int, buffer: str) -> str:
        text = self.prompt if not buffer else CONTINUATION_PROMPT.rjust(len(self.prompt))
        return f"[{lineno}] {text}"

    async def run(self) -> int:
        """Serve until the worker exits. Returns the process exit status."""
        self._loop = asyncio.get_running_loop()
        try:
            await self.connection.wait_ready()
        except (ProtocolViolation, WorkerStartupError) as e:
            print(f"quill: {e}", file=sys.stderr)
            return 1

        self.line_source.set_completer(self.complete)
        self._loop.add_signal_handler(signal.SIGINT, self.clear)
        try:
            return await self._read_eval_loop()
        except ProtocolViolation as e:
            print(f"quill: {e}", file=sys.stderr)
            return 1
        finally:
            self._loop.remove_signal_handler(signal.SIGINT)

    async def _read_eval_loop(self) -> int:
        buffer = ""
        lineno = 1
        while True:
            prompt = self.prompt_for(lineno, buffer)
            line = await self._loop.run_in_executor(None, self.line_source.next_line, prompt)

            if self._clear:
                self._clear = False
                buffer = ""

            if line is None:
                # Ctrl-D acts like exit
                buffer, line = "", EOF_STATEMENT
            elif line.strip():
                self.line_source.add_history(line)

            if not buffer and line.lstrip().startswith(":"):
                await self.meta_command(line.strip())
                continue

            statements, buffer = self.scanner.statements(buffer + line + "\n")
            if only_comments(buffer):
                buffer = ""
            if statements:
                lineno += 1

            for statement in statements:
                if not statement.strip():
                    continue
                response = await self.connection.request("evaluate", statement)
                self._reap_first_worker()
                status = response["status"]
                if status == protocol.STATUS_EXITED:
                    self.line_source.save_history()
                    return 0
                if status == protocol.STATUS_FAILED:
                    if self.stop_on_failure:
                        await self.connection.request("evaluate", EOF_STATEMENT + "\n")
                        return 1
                    break

    def _reap_first_worker(self):
        # later workers are orphans adopted (and reaped) by init
        if self.worker_pid is None:
            return
        try:
            pid, _ = os.waitpid(self.worker_pid, os.WNOHANG)
        except ChildProcessError:
            pid = self.worker_pid
        if pid:
            logger.debug("reaped worker %d", pid)
            self.worker_pid = None

    # --------------------------
    # Meta commands
    # --------------------------

    async def meta_command(self, line: str):
        match line[1:].split():
            case ["doc", name]:
                call = name if name.endswith("(") else name + "("
                response = await self.connection.request("document", {"line": call, "cursorOffset": len(call)})
                print(response.get("body") or f"No documentation for {name}")
            case ["apropos", *terms] if terms:
                response = await self.connection.request("apropos", {"filter": terms, "kind": None})
                for info in response.get("body") or []:
                    description = info.get("description") or ""
                    print(f"{info['name']:<32} {info['kind']:<16} {description}".rstrip())
            case ["who", relation, name]:
                response = await self.connection.request("who", {"relation": relation, "name": name})
                if response["status"] != protocol.STATUS_OK:
                    print(f"quill: {response['body']['error']}", file=sys.stderr)
                    return
                for info in response.get("body") or []:
                    print(info["name"])
            case _:
                print("usage: :doc <name> | :apropos <terms...> | :who <implements|extends|uses> <Name>",
                      file=sys.stderr)

    # --------------------------
    # Completion (called from the line-editing thread)
    # --------------------------

    def complete(self, line: str, cursor: int, word: str) -> List[str]:
        """Return the candidates replacing `word`, which ends at `cursor`."""
        if self._loop is None:
            return []
        body = {"line": line, "cursorOffset": cursor, "wordFragment": word}
        future = asyncio.run_coroutine_threadsafe(self.connection.request("complete", body), self._loop)
        try:
            response = future.result(COMPLETION_TIMEOUT)
        except (concurrent.futures.TimeoutError, ProtocolViolation) as e:
            # a late answer is still read by the connection and dropped
            logger.debug("completion request failed: %s", e)
            return []

        result = response.get("body")
        if response["status"] != protocol.STATUS_OK or not result:
            return []
        start = result["start"]
        word_start = cursor - len(word)
        if start >= word_start:
            lead = line[word_start:start]
            return [lead + c for c in result["completions"]]
        return [c[word_start - start:] for c in result["completions"]]
