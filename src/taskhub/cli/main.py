# src/taskhub/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads tasks, optionally turns on GitHub sync,
then runs the console REPL until /exit, EOF, Ctrl+C or SIGTERM.
The task store is always closed (pending writes flushed) on the way out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading
from datetime import datetime

from ..cli.bootstrap import create_initial_state, enable_github_sync
from ..cli.commands import registry as command_registry
from ..config import get_settings
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

_EOF = None  # sentinel pushed by the stdin reader


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str | None]) -> threading.Thread:
    """
    Read stdin in a daemon thread.

    input() cannot be cancelled; a daemon thread does not keep the process alive
    once the loop has shut down.
    """

    def _run() -> None:
        while True:
            try:
                line = input()
            except (EOFError, KeyboardInterrupt):
                loop.call_soon_threadsafe(queue.put_nowait, _EOF)
                return
            loop.call_soon_threadsafe(queue.put_nowait, line)

    t = threading.Thread(target=_run, name="stdin-reader", daemon=True)
    t.start()
    return t


async def run_console_loop(state: AppState, stop: asyncio.Event) -> None:
    logger.info("Console started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.")

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_reader(loop, queue)

    stop_wait = asyncio.ensure_future(stop.wait())
    try:
        while True:
            get_line = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({get_line, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
            if get_line not in done:
                get_line.cancel()
                break

            line = get_line.result()
            if line is _EOF:
                logger.info("Console EOF received, exiting.")
                break

            user_input = line.strip()
            if not user_input:
                continue
            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = await command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Not a command. Use /help to list available commands."
            _print_ts(reply)
    finally:
        stop_wait.cancel()

    logger.info("Console finished.")


async def _amain(settings) -> None:
    state = create_initial_state(settings=settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        # Not available on Windows event loops.
        loop.add_signal_handler(signal.SIGTERM, stop.set)

    try:
        await state.task_store.initialize()
        enable_github_sync(state)
        await run_console_loop(state, stop)
    finally:
        try:
            await state.task_store.close()
        except Exception:
            logger.exception("Failed to flush tasks on shutdown.")
        logger.info("Bye.")


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_amain(settings))


if __name__ == "__main__":
    main()
