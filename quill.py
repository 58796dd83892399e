import argparse
import asyncio
import sys
from pathlib import Path

from quill.quill_config import QuillConfig, configure_logging, load_config
from quill.quill_repl import Repl
from quill.quill_session import LineSource, ReadlineSource, StreamSource


def make_line_source(config: QuillConfig) -> LineSource:
    """The interactive input source; replaced in tests."""
    return ReadlineSource(config.history_file)


def parse_args(argv):
    parser = argparse.ArgumentParser(prog="quill", description="An interactive Python REPL.")
    parser.add_argument("script", nargs="?", help="run this file through the REPL instead of prompting")
    parser.add_argument("--config", help="YAML configuration file (default: $QUILL_CONFIG or ~/.quill.yaml)")
    return parser.parse_args(argv)


async def run_script_file(repl: Repl, file_path: str) -> int:
    """Feed a script through the worker non-interactively; stop at the first failure."""
    p = Path(file_path)
    try:
        stream = p.open(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    with stream:
        return await repl.run(StreamSource(stream), welcome=False, stop_on_failure=True)


async def main(argv=None) -> int:
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"quill: {e}", file=sys.stderr)
        return 1
    configure_logging(config)

    repl = Repl(config=config)
    if args.script:
        return await run_script_file(repl, args.script)
    return await repl.run(make_line_source(config))


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nExiting.")
